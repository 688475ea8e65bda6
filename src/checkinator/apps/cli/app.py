"""Command line entry point: serve the web UI and inspect leases and claims."""

from __future__ import annotations

import os
from pathlib import Path

import typer
import uvicorn

from checkinator.config import const
from checkinator.services.devices.store import SQLiteDeviceStore
from checkinator.services.errors import CheckinatorError
from checkinator.services.leases.reconciler import KeaLeaseFile
from checkinator.services.logging import setup_logging
from checkinator.services.presence import PresenceService
from checkinator.services.settings import Settings

app = typer.Typer(help="Checkinator: who is at the space, by claimed DHCP leases.")

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to checkinator.yaml", envvar=const.CONFIG_ENV)


def _settings(config: Path | None) -> Settings:
    try:
        settings = Settings.from_sources(config)
    except CheckinatorError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    setup_logging(settings.log_level, json_output=settings.log_json)
    return settings


@app.command("serve")
def serve(
    config: Path | None = _CONFIG_OPTION,
    host: str | None = typer.Option(None, "--host", help="Address to bind to"),
    port: int | None = typer.Option(None, "--port", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes (development)"),
):
    """Run the HTTP service."""
    settings = _settings(config)
    try:
        settings.validate()
        # Make sure the configured lease files are usable before accepting requests.
        KeaLeaseFile(settings.lease_paths).leases()
    except (CheckinatorError, OSError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)

    if config is not None:
        os.environ[const.CONFIG_ENV] = str(config)
    uvicorn.run(
        "checkinator.apps.api.server:create_app",
        factory=True,
        host=host or settings.listen_host,
        port=port or settings.listen_port,
        reload=reload,
        proxy_headers=True,
    )


@app.command("leases")
def leases(
    config: Path | None = _CONFIG_OPTION,
    show_all: bool = typer.Option(False, "--all", help="Include expired leases"),
):
    """Print the reconciled lease set."""
    settings = _settings(config)
    try:
        items = KeaLeaseFile(settings.lease_paths).leases()
    except OSError as exc:
        typer.echo(f"error: could not get leases: {exc}", err=True)
        raise typer.Exit(code=1)
    for lease in items:
        if not show_all and not lease.is_active():
            continue
        typer.echo(f"{lease.mac_address}  {str(lease.ip_address):<15}  {lease.expires_at.isoformat()}  {lease.hostname}")


@app.command("active")
def active(config: Path | None = _CONFIG_OPTION):
    """Print the users with a claimed device on the network."""
    settings = _settings(config)
    try:
        with SQLiteDeviceStore(settings.db_file) as store:
            users = PresenceService(KeaLeaseFile(settings.lease_paths), store).active_users()
    except (CheckinatorError, OSError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    for user in users:
        typer.echo(user)


@app.command("devices")
def devices(
    config: Path | None = _CONFIG_OPTION,
    user: str | None = typer.Option(None, "--user", "-u", help="Only devices managed by this user"),
):
    """List claimed devices."""
    settings = _settings(config)
    try:
        with SQLiteDeviceStore(settings.db_file) as store:
            items = store.get_devices_for_user(user) if user else store.all_devices()
    except CheckinatorError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    for device in items:
        typer.echo(f"{device.mac_address}  {device.user_nickname:<16}  {device.hostname}")


if __name__ == "__main__":
    app()
