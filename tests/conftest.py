from __future__ import annotations

import queue
import time
from typing import Iterable, Optional, Union

import pytest

from sacn2artnet.core.config import BindingConfig
from sacn2artnet.dmx.universe import DMXFrame


class FakeIngress:
    """In-memory stand-in for SacnIngress; thread safe."""

    def __init__(self, listen_error: Optional[Exception] = None):
        self.listen_error = listen_error
        self.listened: Optional[set[int]] = None
        self.closed = False
        self._batches: queue.Queue[Union[list[DMXFrame], Exception]] = queue.Queue()

    def feed(self, item: Union[list[DMXFrame], Exception]) -> None:
        self._batches.put(item)

    def listen(self, universes: Iterable[int]) -> None:
        if self.listen_error is not None:
            raise self.listen_error
        self.listened = set(universes)

    def receive(self, timeout: Optional[float] = None) -> list[DMXFrame]:
        try:
            item = self._batches.get(timeout=timeout if timeout else 0.01)
        except queue.Empty:
            return []
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class FakeEgress:
    """Records every send; optionally raises per output universe."""

    def __init__(self, errors: Optional[dict[int, Exception]] = None):
        self.errors = errors or {}
        self.sent: list[tuple[str, int, bytes]] = []
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def send(self, destination, universe: int, channel_values: bytes) -> None:
        error = self.errors.get(universe)
        if error is not None:
            raise error
        self.sent.append((str(destination), universe, bytes(channel_values)))

    def close(self) -> None:
        self.closed = True


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def binding(inputs: list[int], outputs: list[int], address: str = "10.0.0.5") -> BindingConfig:
    return BindingConfig(input_universes=inputs, output_universes=outputs, address=address)


@pytest.fixture
def fake_ingress() -> FakeIngress:
    return FakeIngress()


@pytest.fixture
def fake_egress() -> FakeEgress:
    return FakeEgress()
