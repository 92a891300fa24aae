"""Art-Net packet helpers and unicast egress."""

from __future__ import annotations

import ipaddress
import socket
import struct
from typing import Union

import structlog

from sacn2artnet.core.exceptions import EncodeError, SendError
from sacn2artnet.dmx.universe import DMX_CHANNEL_COUNT, cap_channel_values

logger = structlog.get_logger()

ARTNET_PORT = 6454
ARTNET_HEADER = b"Art-Net\x00"
ARTNET_OPCODE_DMX = 0x5000
ARTNET_PROTOCOL_VERSION = 14
ARTNET_PORT_ADDRESS_MAX = 0x7FFF
ARTNET_MIN_DATA_LENGTH = 2

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def build_artdmx_packet(
    universe: int,
    dmx_data: bytes,
    sequence: int = 0,
    physical: int = 0,
) -> bytes:
    """
    Build an ArtDmx (OpOutput) packet.

    `universe` is the 15-bit port-address (net, sub-net, universe).
    Expects at most 512 channels of slot data without DMX start code. The
    data block is padded to an even length of at least 2 as Art-Net requires.
    """
    if not 0 <= universe <= ARTNET_PORT_ADDRESS_MAX:
        raise EncodeError(universe, "outside the 15-bit Art-Net port-address range")
    if len(dmx_data) > DMX_CHANNEL_COUNT:
        raise EncodeError(universe, f"ArtDmx payload too large: {len(dmx_data)} bytes")

    payload = bytes(dmx_data)
    if len(payload) < ARTNET_MIN_DATA_LENGTH:
        payload = payload.ljust(ARTNET_MIN_DATA_LENGTH, b"\x00")
    elif len(payload) % 2:
        payload += b"\x00"
    # Length is big-endian per Art-Net spec.
    length = len(payload)

    packet = bytearray()
    packet.extend(ARTNET_HEADER)
    packet.extend(struct.pack("<H", ARTNET_OPCODE_DMX))
    packet.extend(struct.pack(">H", ARTNET_PROTOCOL_VERSION))
    packet.extend(bytes([sequence & 0xFF, physical & 0xFF]))
    packet.extend(struct.pack("<H", universe))
    packet.extend(struct.pack(">H", length))
    packet.extend(payload)
    return bytes(packet)


class ArtNetEgress:
    """
    UDP unicast sender for ArtDmx packets.

    One egress belongs to one relay loop. Sockets are opened lazily per
    address family so IPv4 and IPv6 destinations can share an egress.
    """

    def __init__(
        self,
        port: int = ARTNET_PORT,
        bind_address: str = "",
        sequence: bool = False,
    ):
        self.port = port
        self.bind_address = bind_address
        self.sequence = sequence
        self._sockets: dict[int, socket.socket] = {}
        self._sequences: dict[tuple[str, int], int] = {}
        self._open = False

        # Stats
        self._packets_sent = 0
        self._errors = 0

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        for sock in self._sockets.values():
            sock.close()
        self._sockets.clear()
        self._open = False

    def __enter__(self) -> "ArtNetEgress":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(
        self,
        destination: Union[str, IPAddress],
        universe: int,
        channel_values: bytes,
    ) -> None:
        """
        Send one frame to `destination` on the Art-Net port.

        Raises EncodeError when the universe has no Art-Net port-address and
        SendError when the datagram cannot be sent.
        """
        if not self._open:
            raise RuntimeError("ArtNetEgress is not open")

        packet = build_artdmx_packet(
            universe=universe,
            dmx_data=cap_channel_values(channel_values),
            sequence=self._next_sequence(str(destination), universe),
        )

        target = f"{destination}:{self.port}"
        try:
            address = ipaddress.ip_address(str(destination))
            sock = self._socket_for(address.version)
            sock.sendto(packet, (str(address), self.port))
        except (OSError, ValueError) as e:
            self._errors += 1
            raise SendError(target, str(e)) from e

        self._packets_sent += 1

    def _next_sequence(self, destination: str, universe: int) -> int:
        if not self.sequence:
            return 0
        key = (destination, universe)
        # 1..255; 0 would tell the node to disable sequencing.
        value = self._sequences.get(key, 0) % 255 + 1
        self._sequences[key] = value
        return value

    def _socket_for(self, version: int) -> socket.socket:
        sock = self._sockets.get(version)
        if sock is not None:
            return sock

        family = socket.AF_INET6 if version == 6 else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind((self._bind_host(version), 0))
        except OSError:
            sock.close()
            raise
        self._sockets[version] = sock
        logger.debug("Art-Net socket opened", family=family.name, local=sock.getsockname())
        return sock

    def _bind_host(self, version: int) -> str:
        if self.bind_address:
            try:
                if ipaddress.ip_address(self.bind_address).version == version:
                    return self.bind_address
            except ValueError:
                logger.warning("Ignoring invalid Art-Net bind address", bind_address=self.bind_address)
        return "::" if version == 6 else "0.0.0.0"

    def get_stats(self) -> dict:
        """Get transmission statistics."""
        return {
            "packets_sent": self._packets_sent,
            "errors": self._errors,
            "sockets": sorted(self._sockets),
        }

