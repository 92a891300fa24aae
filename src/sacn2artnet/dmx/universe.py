"""Canonical DMX universe sizing and frame helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

DMX_CHANNEL_COUNT = 512
UNIVERSE_ID_MAX = 0xFFFF


@dataclass(frozen=True)
class DMXFrame:
    """One decoded universe's worth of channel values."""

    universe: int
    channel_values: bytes

    @classmethod
    def from_values(cls, universe: int, values: Iterable[int]) -> "DMXFrame":
        """
        Build a frame from decoded slot values.

        Raises ValueError for an out-of-range universe, too many slots,
        or values that are not bytes.
        """
        if not 0 <= universe <= UNIVERSE_ID_MAX:
            raise ValueError(f"universe {universe} is not a 16-bit id")
        data = bytes(values)
        if len(data) > DMX_CHANNEL_COUNT:
            raise ValueError(f"{len(data)} slots exceed a DMX universe")
        return cls(universe=universe, channel_values=data)

    def __len__(self) -> int:
        return len(self.channel_values)


def cap_channel_values(values: bytes) -> bytes:
    """Return at most the first 512 channel values."""
    return bytes(values[:DMX_CHANNEL_COUNT])
