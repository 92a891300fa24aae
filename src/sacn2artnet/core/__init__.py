"""Core system components for sacn2artnet."""

from sacn2artnet.core.config import BindingConfig, RelayMode, Settings, load_settings
from sacn2artnet.core.exceptions import (
    ConfigError,
    EncodeError,
    ReceiveError,
    RelayError,
    SendError,
    SubscriptionError,
    TransportError,
)

__all__ = [
    "BindingConfig",
    "RelayMode",
    "Settings",
    "load_settings",
    "RelayError",
    "ConfigError",
    "SubscriptionError",
    "ReceiveError",
    "EncodeError",
    "SendError",
    "TransportError",
]
