"""
sacn2artnet: sACN to Art-Net universe relay.

Receives DMX universes streamed over sACN (E1.31 multicast), remaps each
input universe to an output universe, and re-sends the channel data as
unicast Art-Net packets to the configured controllers.
"""

__version__ = "0.1.0"

from sacn2artnet.core.config import Settings, load_settings
from sacn2artnet.relay.coordinator import RelayCoordinator
from sacn2artnet.relay.mapping import MappingTable

__all__ = [
    "MappingTable",
    "RelayCoordinator",
    "Settings",
    "load_settings",
    "__version__",
]
