"""
Command-Line Interface for sacn2artnet.

Provides commands for running the relay and checking a bindings file.
"""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import click
import structlog

from sacn2artnet import __version__
from sacn2artnet.core.config import DEFAULT_CONFIG_PATH, RelayMode, Settings, load_settings
from sacn2artnet.core.exceptions import ConfigError, RelayError

logger = structlog.get_logger()


def _configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


def _load(ctx: click.Context) -> Settings:
    settings = load_settings(ctx.obj["config_path"])
    if ctx.obj["debug"]:
        settings = settings.model_copy(update={"debug": True, "log_level": "DEBUG"})
    _configure_logging(settings.log_level)
    return settings


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    type=click.Path(dir_okay=False),
    default=str(DEFAULT_CONFIG_PATH),
    show_default=True,
    help="Path to the bindings file (TOML or YAML)",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config: str) -> None:
    """
    sacn2artnet - sACN to Art-Net universe relay

    Receives DMX universes over sACN multicast and re-sends them as unicast
    Art-Net to the controllers listed in the bindings file.
    """
    ctx.ensure_object(dict)

    # Configure logging
    _configure_logging("DEBUG" if debug else "INFO")

    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config)


@cli.command()
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in RelayMode]),
    default=None,
    help="Concurrency model (overrides the config file)",
)
@click.option(
    "--keep-going",
    is_flag=True,
    help="Keep relaying when a per-binding worker fails to subscribe",
)
@click.pass_context
def run(ctx: click.Context, mode: Optional[str], keep_going: bool) -> None:
    """Run the relay until interrupted."""
    from sacn2artnet.relay.coordinator import RelayCoordinator

    try:
        settings = _load(ctx)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    overrides: dict[str, Any] = {}
    if mode is not None:
        overrides["mode"] = RelayMode(mode)
    if keep_going:
        overrides["abort_on_worker_failure"] = False
    if overrides:
        settings = settings.model_copy(update=overrides)

    coordinator = RelayCoordinator(settings)

    def _handle_sigterm(signum: int, frame: Any) -> None:
        logger.info("SIGTERM received, stopping relay")
        coordinator.stop(timeout=0)

    signal.signal(signal.SIGTERM, _handle_sigterm)

    click.echo(f"sacn2artnet v{__version__} ({RelayMode(settings.mode).value})")
    click.echo("Press Ctrl+C to stop.")

    try:
        coordinator.run()
    except RelayError as e:
        click.echo(f"Error: {e}", err=True)
        if settings.debug:
            raise
        sys.exit(1)


@cli.command()
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in RelayMode]),
    default=None,
    help="Concurrency model (overrides the config file)",
)
@click.pass_context
def check(ctx: click.Context, mode: Optional[str]) -> None:
    """Validate the bindings file and print the translation table."""
    from sacn2artnet.relay.coordinator import RelayCoordinator

    try:
        settings = _load(ctx)
        if mode is not None:
            settings = settings.model_copy(update={"mode": RelayMode(mode)})
        tables = RelayCoordinator(settings).build_tables()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    for name, table in tables.items():
        click.echo(f"[{name}] {len(table)} universe(s)")
        for row in table.describe():
            click.echo(f"  {row}")


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
