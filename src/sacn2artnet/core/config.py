"""
Configuration Management for sacn2artnet.

Uses Pydantic Settings for type-safe configuration with environment
variable support and TOML/YAML file loading.
"""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from sacn2artnet.core.exceptions import ConfigError

SACN_PORT = 5568
DEFAULT_CONFIG_PATH = Path("bindings.toml")

# sACN universe ids are 16-bit; tighter protocol ranges are checked by the codecs.
UniverseId = Annotated[int, Field(ge=0, le=0xFFFF)]


class RelayMode(str, Enum):
    """Concurrency architecture used by the coordinator."""

    PER_BINDING = "per-binding"
    SHARED = "shared"


class BindingConfig(BaseModel):
    """One `[[mapping]]` record: positional input -> output universes at an address."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    input_universes: List[UniverseId] = Field(alias="in")
    output_universes: List[UniverseId] = Field(alias="out")
    address: IPvAnyAddress


class SacnConfig(BaseModel):
    """sACN receive configuration."""
    bind_address: str = "0.0.0.0"
    bind_port: int = SACN_PORT
    multicast: bool = True  # False = unicast sources only
    receive_timeout_s: float = 1.0


class ArtNetConfig(BaseModel):
    """Art-Net transmit configuration."""
    bind_address: str = ""  # "" = any interface
    sequence: bool = False  # 0 disables sequencing on the receiving node


class Settings(BaseSettings):
    """
    Main application settings.

    Can be configured via:
    - Environment variables (prefixed with SACN2ARTNET_)
    - TOML or YAML config file
    - Direct instantiation
    """

    model_config = SettingsConfigDict(
        env_prefix="SACN2ARTNET_",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    mappings: List[BindingConfig] = Field(default_factory=list, alias="mapping")
    mode: RelayMode = RelayMode.PER_BINDING
    abort_on_worker_failure: bool = True
    worker_startup_timeout_s: float = Field(default=5.0, gt=0)

    sacn: SacnConfig = Field(default_factory=SacnConfig)
    artnet: ArtNetConfig = Field(default_factory=ArtNetConfig)

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_toml(cls, path: Path) -> "Settings":
        """Load settings from a TOML file."""
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> Dict[str, Any]:
        """Plain data in the file schema (`mapping`, `in`, `out`)."""
        return self.model_dump(mode="json", by_alias=True)


def load_settings(path: Path) -> Settings:
    """
    Load settings from a TOML or YAML file, chosen by suffix.

    Every failure (missing file, syntax, schema) is reported as ConfigError.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError("file not found", source=str(path))

    try:
        if path.suffix in (".yaml", ".yml"):
            return Settings.from_yaml(path)
        return Settings.from_toml(path)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e), source=str(path)) from e
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot parse file: {e}", source=str(path)) from e
    except TypeError as e:
        # Top-level document was not a table/mapping.
        raise ConfigError(f"unexpected document structure: {e}", source=str(path)) from e


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
