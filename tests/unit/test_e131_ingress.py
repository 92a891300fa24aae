from __future__ import annotations

import socket
from collections import deque
from typing import Optional

import pytest
from sacn.messages.data_packet import DataPacket

from sacn2artnet.core.exceptions import ReceiveError, SubscriptionError
from sacn2artnet.dmx import e131
from sacn2artnet.dmx.e131 import SacnIngress, multicast_group


class _FakeSocket:
    """Mimics the parts of a UDP socket the ingress uses."""

    bind_error: Optional[OSError] = None
    join_errors: dict[str, OSError] = {}
    instances: list["_FakeSocket"] = []

    def __init__(self, family: int = socket.AF_INET, type: int = socket.SOCK_DGRAM, proto: int = 0):
        self.bound: Optional[tuple[str, int]] = None
        self.joined: list[str] = []
        self.left: list[str] = []
        self.reuse_addr = False
        self.timeout: Optional[float] = None
        self.closed = False
        self.datagrams: deque[bytes] = deque()
        _FakeSocket.instances.append(self)

    def setsockopt(self, level: int, option: int, value) -> None:
        if option == socket.SO_REUSEADDR:
            self.reuse_addr = bool(value)
        elif option == socket.IP_ADD_MEMBERSHIP:
            group = socket.inet_ntoa(value[:4])
            error = self.join_errors.get(group)
            if error is not None:
                raise error
            self.joined.append(group)
        elif option == socket.IP_DROP_MEMBERSHIP:
            self.left.append(socket.inet_ntoa(value[:4]))

    def bind(self, address: tuple[str, int]) -> None:
        if self.bind_error is not None:
            raise self.bind_error
        self.bound = address

    def settimeout(self, timeout: Optional[float]) -> None:
        self.timeout = timeout

    def recvfrom(self, size: int) -> tuple[bytes, tuple[str, int]]:
        if not self.datagrams:
            raise socket.timeout("timed out")
        return self.datagrams.popleft()[:size], ("10.0.0.1", 5568)

    def close(self) -> None:
        self.closed = True


def _e131(universe: int, values, sequence: int = 0) -> bytearray:
    packet = DataPacket(
        cid=tuple(range(16)),
        sourceName="console",
        universe=universe,
        dmxData=tuple(values),
        sequence=sequence,
    )
    return bytearray(packet.getBytes())


@pytest.fixture
def fake_socket(monkeypatch: pytest.MonkeyPatch) -> type[_FakeSocket]:
    monkeypatch.setattr(_FakeSocket, "bind_error", None)
    monkeypatch.setattr(_FakeSocket, "join_errors", {})
    monkeypatch.setattr(_FakeSocket, "instances", [])
    monkeypatch.setattr(e131.socket, "socket", _FakeSocket)
    return _FakeSocket


def test_multicast_group_uses_universe_high_and_low_bytes() -> None:
    assert multicast_group(1) == "239.255.0.1"
    assert multicast_group(0x0102) == "239.255.1.2"
    assert multicast_group(63999) == "239.255.249.255"


def test_listen_binds_and_joins_each_universe_once(fake_socket) -> None:
    ingress = SacnIngress(bind_address="192.168.1.2")

    ingress.listen([3, 1, 3, 2])

    sock = fake_socket.instances[0]
    assert sock.reuse_addr
    assert sock.bound == ("192.168.1.2", 5568)
    assert sock.joined == ["239.255.0.1", "239.255.0.2", "239.255.0.3"]
    assert ingress.listening
    assert ingress.universes == [1, 2, 3]


def test_listen_without_multicast_skips_group_membership(fake_socket) -> None:
    ingress = SacnIngress(multicast=False)

    ingress.listen([1])

    assert fake_socket.instances[0].joined == []


def test_universe_outside_sacn_range_is_rejected_before_binding(fake_socket) -> None:
    ingress = SacnIngress()

    with pytest.raises(SubscriptionError, match="outside"):
        ingress.listen([0, 1])

    assert fake_socket.instances == []
    assert not ingress.listening


def test_bind_failure_raises_subscription_error_and_closes_socket(fake_socket) -> None:
    fake_socket.bind_error = OSError(98, "Address already in use")
    ingress = SacnIngress()

    with pytest.raises(SubscriptionError, match="Address already in use") as excinfo:
        ingress.listen([1, 2])

    assert excinfo.value.universes == [1, 2]
    assert excinfo.value.recoverable is False
    assert fake_socket.instances[0].closed
    assert not ingress.listening


def test_join_failure_closes_socket(fake_socket) -> None:
    fake_socket.join_errors = {"239.255.0.2": OSError(19, "No such device")}
    ingress = SacnIngress()

    with pytest.raises(SubscriptionError, match="No such device"):
        ingress.listen([1, 2, 3])

    sock = fake_socket.instances[0]
    assert sock.joined == ["239.255.0.1"]
    assert sock.closed
    assert not ingress.listening

    # A later close() has nothing left to release.
    ingress.close()
    assert sock.left == []


def test_listen_twice_is_rejected(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])

    with pytest.raises(SubscriptionError):
        ingress.listen([2])


def test_receive_returns_decoded_frame(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])

    fake_socket.instances[0].datagrams.append(bytes(_e131(1, [10, 20, 30])))
    frames = ingress.receive(timeout=0.1)

    assert len(frames) == 1
    assert frames[0].universe == 1
    assert frames[0].channel_values[:3] == bytes([10, 20, 30])
    assert fake_socket.instances[0].timeout == 0.1


def test_identical_packets_are_each_delivered(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])
    sock = fake_socket.instances[0]

    for sequence in range(3):
        sock.datagrams.append(bytes(_e131(1, [1, 2, 3], sequence=sequence)))

    frames = [frame for _ in range(3) for frame in ingress.receive(timeout=0.1)]

    assert len(frames) == 3
    assert all(frame.channel_values[:3] == bytes([1, 2, 3]) for frame in frames)
    assert ingress.get_stats()["packets_received"] == 3


def test_receive_times_out_with_empty_batch(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])

    assert ingress.receive(timeout=0.01) == []


def test_packets_for_other_universes_are_ignored(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])

    fake_socket.instances[0].datagrams.append(bytes(_e131(9, [255])))

    assert ingress.receive(timeout=0.01) == []
    assert ingress.get_stats()["packets_ignored"] == 1


def test_undecodable_packet_surfaces_as_receive_error_then_recovers(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])
    sock = fake_socket.instances[0]

    sock.datagrams.append(b"garbage")
    sock.datagrams.append(bytes(_e131(1, [5, 6])))

    with pytest.raises(ReceiveError, match="undecodable"):
        ingress.receive(timeout=0.1)

    frames = ingress.receive(timeout=0.1)
    assert frames[0].channel_values[:2] == bytes([5, 6])
    assert ingress.get_stats()["decode_errors"] == 1


def test_alternate_start_code_packets_are_ignored(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])

    datagram = _e131(1, [255] * 512)
    datagram[125] = 0xDD
    fake_socket.instances[0].datagrams.append(bytes(datagram))

    assert ingress.receive(timeout=0.01) == []


def test_extended_packets_are_ignored(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([1])

    datagram = _e131(1, [1])
    datagram[18:22] = (0x00000008).to_bytes(4, "big")
    fake_socket.instances[0].datagrams.append(bytes(datagram))

    assert ingress.receive(timeout=0.01) == []
    assert ingress.get_stats()["decode_errors"] == 0


def test_receive_before_listen_raises_receive_error() -> None:
    with pytest.raises(ReceiveError):
        SacnIngress().receive(timeout=0)


def test_close_leaves_groups_and_is_idempotent(fake_socket) -> None:
    ingress = SacnIngress()
    ingress.listen([4, 5])
    sock = fake_socket.instances[0]

    ingress.close()
    ingress.close()

    assert sock.left == ["239.255.0.4", "239.255.0.5"]
    assert sock.closed
    assert not ingress.listening
