"""
Custom Exceptions for sacn2artnet.

Fatal errors (configuration, subscription) stop a relay before or while it
starts. Everything raised per packet or per frame is recoverable: the relay
loop logs it and keeps going.
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base exception for all sacn2artnet errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(RelayError):
    """Invalid configuration, reported before any socket is opened."""

    def __init__(self, reason: str, source: Optional[str] = None):
        where = f" in {source}" if source else ""
        super().__init__(f"Configuration error{where}: {reason}", recoverable=False)
        self.reason = reason
        self.source = source


# =============================================================================
# Ingress Errors
# =============================================================================


class SubscriptionError(RelayError):
    """Could not bind the sACN socket or join the universes' multicast groups."""

    def __init__(self, universes: list[int], reason: str):
        universes_str = ", ".join(str(u) for u in universes) if universes else "none"
        super().__init__(
            f"Failed to subscribe to sACN universes [{universes_str}]: {reason}",
            recoverable=False,
        )
        self.universes = universes
        self.reason = reason


class ReceiveError(RelayError):
    """Inbound packet was lost or could not be decoded into a DMX frame."""

    def __init__(self, reason: str, universe: Optional[int] = None):
        super().__init__(f"sACN receive error: {reason}", recoverable=True)
        self.reason = reason
        self.universe = universe


# =============================================================================
# Egress Errors
# =============================================================================


class EncodeError(RelayError):
    """Frame cannot be represented as an Art-Net packet."""

    def __init__(self, universe: int, reason: str):
        super().__init__(f"Cannot encode Art-Net universe {universe}: {reason}", recoverable=True)
        self.universe = universe
        self.reason = reason


class SendError(RelayError):
    """Error during Art-Net datagram transmission."""

    def __init__(self, destination: str, reason: str):
        super().__init__(f"Art-Net send to {destination} failed: {reason}", recoverable=True)
        self.destination = destination
        self.reason = reason


TransportError = SendError
