"""Universe mapping table: input universe -> Art-Net relay target."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Optional, Protocol, Sequence, Union

import structlog

from sacn2artnet.core.exceptions import ConfigError

logger = structlog.get_logger()

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class Binding(Protocol):
    """Anything shaped like a `[[mapping]]` record (see BindingConfig)."""

    input_universes: Sequence[int]
    output_universes: Sequence[int]
    address: IPAddress


@dataclass(frozen=True)
class RelayTarget:
    """Where frames of one input universe are re-sent."""

    universe: int
    address: IPAddress

    def __str__(self) -> str:
        return f"{self.address} universe {self.universe}"


class MappingTable:
    """
    Immutable lookup from input universe to relay target.

    Built once with build(); there is no way to change it afterwards, so a
    table can be handed to any number of threads without locking.
    """

    def __init__(self, entries: dict[int, RelayTarget]):
        self._entries = MappingProxyType(dict(entries))
        self._input_universes = frozenset(self._entries)

    @classmethod
    def build(cls, bindings: Iterable[Binding]) -> "MappingTable":
        """
        Pair every input universe with its positional output universe.

        Raises ConfigError when a binding's input and output lists differ in
        length. An input universe bound more than once keeps the last target.
        """
        entries: dict[int, RelayTarget] = {}
        for index, binding in enumerate(bindings):
            inputs = list(binding.input_universes)
            outputs = list(binding.output_universes)
            if len(inputs) != len(outputs):
                raise ConfigError(
                    f"mapping #{index} ({binding.address}) has {len(inputs)} input "
                    f"and {len(outputs)} output universes"
                )

            for input_universe, output_universe in zip(inputs, outputs):
                target = RelayTarget(universe=output_universe, address=binding.address)
                previous = entries.get(input_universe)
                if previous is not None:
                    logger.warning(
                        "Duplicate input universe binding",
                        universe=input_universe,
                        previous=str(previous),
                        replacement=str(target),
                    )
                entries[input_universe] = target

        return cls(entries)

    def lookup(self, universe: int) -> Optional[RelayTarget]:
        """Return the target for `universe`, or None if it is not relayed."""
        return self._entries.get(universe)

    @property
    def input_universes(self) -> frozenset[int]:
        return self._input_universes

    def items(self) -> Iterator[tuple[int, RelayTarget]]:
        return iter(self._entries.items())

    def describe(self) -> list[str]:
        """Human-readable rows, one per entry."""
        return [f"{universe:>5} -> {target}" for universe, target in self._entries.items()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, universe: object) -> bool:
        return universe in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"MappingTable({dict(self._entries)!r})"
