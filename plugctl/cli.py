"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import typer

from plugctl.core.config_loader import check_settings, load_settings
from plugctl.core.device_id import normalize_device_id
from plugctl.core.errors import PlugctlError
from plugctl.core.service import PowerSwitchService

app = typer.Typer(help="Network power switch control over the local broadcast network")


@app.command()
def main(
    device: str = typer.Argument(..., help="Hardware address of the power switch"),
    broadcast_port: int | None = typer.Option(
        None, "--broadcast-port", "-b", min=1, max=65535, help="Broadcast output on the given UDP port"
    ),
    timeout: int | None = typer.Option(None, "--timeout", "-t", min=0, help="Connection timeout in seconds"),
    listen_port: int | None = typer.Option(
        None, "--listen-port", "-u", min=1, max=65535, help="Listen for commands at the given UDP port"
    ),
    library: str | None = typer.Option(
        None, "--library", envvar="PLUGCTL_LIBRARY", help="Path to the liborvibo shared library"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Settings file (default: $XDG_CONFIG_HOME/plugctl/config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug diagnostics"),
) -> None:
    """Discover DEVICE, subscribe to it and read commands from stdin.

    Commands: on, off, p/ping (print state), q/quit.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        identifier = normalize_device_id(device)
        settings = load_settings(config).settings.with_overrides(
            broadcast_port=broadcast_port,
            listen_port=listen_port,
            timeout_s=float(timeout) if timeout is not None else None,
            library=library,
        )
        check_settings(settings, "options")
        service = PowerSwitchService(settings)
        code = service.run(identifier)
    except PlugctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    raise typer.Exit(code=code)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
