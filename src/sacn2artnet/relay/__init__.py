"""Universe routing and relay engine."""

from sacn2artnet.relay.coordinator import RelayCoordinator, RelayWorker, WorkerStatus
from sacn2artnet.relay.loop import RelayLoop, RelayState
from sacn2artnet.relay.mapping import MappingTable, RelayTarget

__all__ = [
    "MappingTable",
    "RelayTarget",
    "RelayLoop",
    "RelayState",
    "RelayCoordinator",
    "RelayWorker",
    "WorkerStatus",
]
