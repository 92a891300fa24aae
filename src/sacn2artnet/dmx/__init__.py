"""DMX transport helpers."""

from sacn2artnet.dmx.artnet import ARTNET_PORT, ArtNetEgress, build_artdmx_packet
from sacn2artnet.dmx.e131 import SacnIngress
from sacn2artnet.dmx.universe import DMX_CHANNEL_COUNT, DMXFrame, cap_channel_values

__all__ = [
    "ARTNET_PORT",
    "ArtNetEgress",
    "build_artdmx_packet",
    "SacnIngress",
    "DMX_CHANNEL_COUNT",
    "DMXFrame",
    "cap_channel_values",
]
