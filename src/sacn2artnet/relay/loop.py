"""
Relay Loop: receive sACN frames, look up their universe, send Art-Net.

States: INIT -> SUBSCRIBED -> RUNNING -> STOPPED. STOPPED is only reached
through a stop event or an exception escaping the loop; a relay otherwise
runs until the process ends.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Iterable, Optional, Protocol, Union

import structlog

from sacn2artnet.core.exceptions import EncodeError, ReceiveError, RelayError, SendError
from sacn2artnet.dmx.universe import DMXFrame, cap_channel_values
from sacn2artnet.relay.mapping import IPAddress, MappingTable

logger = structlog.get_logger()

# Log the first per-frame error and then every Nth one.
ERROR_LOG_INTERVAL = 100


class RelayState(Enum):
    INIT = "init"
    SUBSCRIBED = "subscribed"
    RUNNING = "running"
    STOPPED = "stopped"


class FrameIngress(Protocol):
    def listen(self, universes: Iterable[int]) -> None: ...

    def receive(self, timeout: Optional[float] = None) -> list[DMXFrame]: ...

    def close(self) -> None: ...


class FrameEgress(Protocol):
    def open(self) -> None: ...

    def send(self, destination: Union[str, IPAddress], universe: int, channel_values: bytes) -> None: ...

    def close(self) -> None: ...


class RelayLoop:
    """
    Forwards frames from one ingress to one egress through a mapping table.

    Per-packet and per-frame errors are logged and never leave run_once();
    only a failed subscription stops the loop.
    """

    def __init__(
        self,
        table: MappingTable,
        ingress: FrameIngress,
        egress: FrameEgress,
        name: str = "relay",
        receive_timeout: Optional[float] = 1.0,
    ):
        self.table = table
        self.ingress = ingress
        self.egress = egress
        self.name = name
        self.receive_timeout = receive_timeout
        self.state = RelayState.INIT

        # Stats
        self._frames_received = 0
        self._frames_forwarded = 0
        self._frames_unmapped = 0
        self._receive_errors = 0
        self._send_errors = 0

    def subscribe(self) -> None:
        """Listen on every input universe in the table. SubscriptionError propagates."""
        if self.state is not RelayState.INIT:
            return
        self.ingress.listen(self.table.input_universes)
        self.state = RelayState.SUBSCRIBED
        logger.info("Relay subscribed", relay=self.name, universes=sorted(self.table.input_universes))

    def run_once(self, timeout: Optional[float] = None) -> int:
        """Receive one packet and forward its frames. Returns frames forwarded."""
        try:
            frames = self.ingress.receive(timeout=timeout)
        except ReceiveError as e:
            self._receive_errors += 1
            self._log_error("Error receiving packet", e, self._receive_errors)
            return 0

        forwarded = 0
        for frame in frames:
            self._frames_received += 1
            target = self.table.lookup(frame.universe)
            if target is None:
                self._frames_unmapped += 1
                continue

            try:
                self.egress.send(
                    target.address,
                    target.universe,
                    cap_channel_values(frame.channel_values),
                )
            except (EncodeError, SendError) as e:
                self._send_errors += 1
                self._log_error(
                    "Unable to send to Art-Net node",
                    e,
                    self._send_errors,
                    universe=frame.universe,
                    destination=str(target),
                )
                continue

            forwarded += 1

        self._frames_forwarded += forwarded
        return forwarded

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Subscribe if needed, then relay until `stop_event` is set."""
        try:
            self.subscribe()
            self.egress.open()
            self.state = RelayState.RUNNING
            logger.info("Relay running", relay=self.name)

            while stop_event is None or not stop_event.is_set():
                self.run_once(timeout=self.receive_timeout)
        finally:
            self.close()

    def close(self) -> None:
        self.state = RelayState.STOPPED
        self.ingress.close()
        self.egress.close()
        logger.info("Relay stopped", relay=self.name, **self.get_stats())

    def _log_error(self, event: str, error: RelayError, count: int, **context: object) -> None:
        if count % ERROR_LOG_INTERVAL == 1:
            logger.error(event, relay=self.name, error=error.message, count=count, **context)

    def get_stats(self) -> dict:
        """Get relay statistics."""
        return {
            "state": self.state.value,
            "frames_received": self._frames_received,
            "frames_forwarded": self._frames_forwarded,
            "frames_unmapped": self._frames_unmapped,
            "receive_errors": self._receive_errors,
            "send_errors": self._send_errors,
        }
