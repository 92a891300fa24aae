"""
sACN (E1.31) ingress.

Owns one UDP socket bound to the sACN port, joins the multicast group of
every subscribed universe and decodes each datagram with sacn's DataPacket.
Every data packet is delivered, including repeats of unchanged levels.
"""

from __future__ import annotations

import socket
import struct
from typing import Iterable, Optional

import structlog
from sacn.messages.data_packet import DataPacket  # type: ignore[import]

from sacn2artnet.core.config import SACN_PORT
from sacn2artnet.core.exceptions import ReceiveError, SubscriptionError
from sacn2artnet.dmx.universe import DMXFrame

logger = structlog.get_logger()

DMX_NULL_START_CODE = 0x00
SACN_UNIVERSE_MIN = 1
SACN_UNIVERSE_MAX = 63999
# Largest E1.31 datagram: 126 byte header + start code + 512 slots.
SACN_MAX_PACKET_SIZE = 638

VECTOR_ROOT_E131_EXTENDED = 0x00000008
ROOT_VECTOR_OFFSET = 18


def multicast_group(universe: int) -> str:
    """E1.31 multicast address for a universe: 239.255.<hi>.<lo>."""
    return f"239.255.{(universe >> 8) & 0xFF}.{universe & 0xFF}"


class SacnIngress:
    """
    Receives DMX frames for a fixed set of sACN universes.

    The ingress owns its socket for its whole lifetime. Datagrams for
    universes it did not subscribe to, extended packets (sync, discovery)
    and alternate start codes are skipped.
    """

    def __init__(
        self,
        bind_address: str = "0.0.0.0",
        bind_port: int = SACN_PORT,
        multicast: bool = True,
        name: str = "sacn",
    ):
        self.bind_address = bind_address
        self.bind_port = bind_port
        self.multicast = multicast
        self.name = name

        self._socket: Optional[socket.socket] = None
        self._universes: frozenset[int] = frozenset()
        self._joined: list[int] = []

        # Stats
        self._packets_received = 0
        self._packets_ignored = 0
        self._decode_errors = 0

    @property
    def listening(self) -> bool:
        return self._socket is not None

    @property
    def universes(self) -> list[int]:
        return sorted(self._universes)

    def listen(self, universes: Iterable[int]) -> None:
        """
        Subscribe to exactly `universes` and start receiving.

        Raises SubscriptionError if a universe is outside the sACN range, the
        socket cannot be bound or a multicast group cannot be joined. Nothing
        stays bound or joined after a failure.
        """
        wanted = sorted(set(universes))
        if self._socket is not None:
            raise SubscriptionError(wanted, "ingress is already listening")

        invalid = [u for u in wanted if not SACN_UNIVERSE_MIN <= u <= SACN_UNIVERSE_MAX]
        if invalid:
            raise SubscriptionError(
                wanted, f"universes {invalid} outside {SACN_UNIVERSE_MIN}-{SACN_UNIVERSE_MAX}"
            )

        logger.info(
            "Starting sACN receiver",
            ingress=self.name,
            bind=f"{self.bind_address}:{self.bind_port}",
            universes=wanted,
        )

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_address, self.bind_port))
            if self.multicast:
                interface = socket.inet_aton(self.bind_address or "0.0.0.0")
                for universe in wanted:
                    membership = struct.pack(
                        "4s4s", socket.inet_aton(multicast_group(universe)), interface
                    )
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
                    self._joined.append(universe)
        except OSError as e:
            self._joined = []
            sock.close()
            raise SubscriptionError(wanted, str(e)) from e

        self._socket = sock
        self._universes = frozenset(wanted)

    def receive(self, timeout: Optional[float] = None) -> list[DMXFrame]:
        """
        Block until one datagram arrives and return the frames it carries.

        Returns an empty list when `timeout` elapses first or the datagram
        holds nothing to relay. Raises ReceiveError for transport failures and
        undecodable packets.
        """
        if self._socket is None:
            raise ReceiveError("ingress is not listening")

        try:
            self._socket.settimeout(timeout)
            data, _ = self._socket.recvfrom(SACN_MAX_PACKET_SIZE)
        except (socket.timeout, BlockingIOError):
            return []
        except OSError as e:
            raise ReceiveError(str(e)) from e

        self._packets_received += 1
        return self._decode(data)

    def _decode(self, data: bytes) -> list[DMXFrame]:
        if len(data) >= ROOT_VECTOR_OFFSET + 4:
            (root_vector,) = struct.unpack_from("!I", data, ROOT_VECTOR_OFFSET)
            if root_vector == VECTOR_ROOT_E131_EXTENDED:
                self._packets_ignored += 1
                return []

        try:
            packet = DataPacket.make_data_packet(tuple(data))
        except (TypeError, ValueError, IndexError) as e:
            self._decode_errors += 1
            raise ReceiveError(f"undecodable sACN packet ({len(data)} bytes): {e}") from e

        if packet.universe not in self._universes:
            self._packets_ignored += 1
            return []
        if getattr(packet, "dmxStartCode", DMX_NULL_START_CODE) != DMX_NULL_START_CODE:
            self._packets_ignored += 1
            return []

        try:
            return [DMXFrame.from_values(packet.universe, packet.dmxData)]
        except (TypeError, ValueError) as e:
            self._decode_errors += 1
            raise ReceiveError(str(e), universe=packet.universe) from e

    def close(self) -> None:
        """Leave all multicast groups and close the socket."""
        sock, self._socket = self._socket, None
        if sock is None:
            return

        try:
            interface = socket.inet_aton(self.bind_address or "0.0.0.0")
            for universe in self._joined:
                membership = struct.pack(
                    "4s4s", socket.inet_aton(multicast_group(universe)), interface
                )
                try:
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, membership)
                except OSError as e:
                    logger.debug("Leaving multicast group failed", universe=universe, error=str(e))
        finally:
            self._joined = []
            sock.close()
        logger.info("sACN receiver stopped", ingress=self.name, **self.get_stats())

    def get_stats(self) -> dict:
        """Get receive statistics."""
        return {
            "packets_received": self._packets_received,
            "packets_ignored": self._packets_ignored,
            "decode_errors": self._decode_errors,
        }
