"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from linkctl.api import Client
from linkctl.core.config import load_config
from linkctl.core.device_match import resolve_device
from linkctl.core.errors import LinkctlError
from linkctl.core.events import DataReceived
from linkctl.core.model import ReadResult

app = typer.Typer(help="Discover, connect and talk to LE and Classic Bluetooth devices")

_SCAN_GRACE_S = 2.0
_READ_FORMATS = ("hex", "uint8", "text")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to a linkctl YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    ctx.obj = {"config": config}


def _build_client(ctx: typer.Context) -> Client:
    config_path = (ctx.obj or {}).get("config")
    loaded = load_config(config_path)
    client = Client(config=loaded.config)
    for warning in client.runtime_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return client


def _format_read(result: ReadResult, fmt: str) -> str:
    if fmt == "uint8":
        return str(result.as_uint8())
    if fmt == "text":
        return result.as_text()
    return result.hex()


async def _wait_for_scan(client: Client, window_seconds: int) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + window_seconds + _SCAN_GRACE_S
    while client.scan_session.active and loop.time() < deadline:
        await asyncio.sleep(0.1)


@app.command("scan")
def scan(
    ctx: typer.Context,
    window: int | None = typer.Option(None, "--window", help="Scan window in seconds"),
) -> None:
    """Scan for LE devices and list them in discovery order."""

    async def _run(client: Client) -> None:
        async with client:
            session = await client.start_scan(window)
            await _wait_for_scan(client, session.window_seconds)
            devices = client.devices()
            if not devices:
                typer.echo("No Bluetooth devices found")
                return
            for device in devices:
                typer.echo(f"{device.id} {device.display_name} rssi={device.signal_strength}")

    try:
        asyncio.run(_run(_build_client(ctx)))
    except LinkctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("services")
def services(ctx: typer.Context, device: str = typer.Argument(..., help="LE device address")) -> None:
    """Connect to an LE device and list its characteristics."""

    async def _run(client: Client) -> None:
        async with client:
            await client.connect_or_toggle(device)
            descriptors = client.services(device)
            if not descriptors:
                typer.echo(f"No characteristics found on {device}")
                return
            typer.echo(f"Connected: {device}")
            for descriptor in descriptors:
                props = ", ".join(sorted(descriptor.properties))
                typer.echo(f"  {descriptor.service_id} {descriptor.characteristic_id} [{props}]")

    try:
        asyncio.run(_run(_build_client(ctx)))
    except LinkctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="LE device address"),
    service: str = typer.Argument(..., help="Service UUID"),
    characteristic: str = typer.Argument(..., help="Characteristic UUID"),
    fmt: str = typer.Option("hex", "--format", help="Output format: hex, uint8 or text"),
) -> None:
    """Read one characteristic, reconnecting once if the first read fails."""
    if fmt not in _READ_FORMATS:
        typer.echo(f"Error: unknown format '{fmt}'. Allowed: {', '.join(_READ_FORMATS)}", err=True)
        raise typer.Exit(code=1)

    async def _run(client: Client) -> None:
        async with client:
            await client.connect_or_toggle(device)
            result = await client.read_characteristic(device, service, characteristic)
            typer.echo(f"{device} {characteristic}: {_format_read(result, fmt)}")

    try:
        asyncio.run(_run(_build_client(ctx)))
    except (LinkctlError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("bonded")
def bonded(ctx: typer.Context) -> None:
    """List bonded (paired) Classic devices."""

    async def _run(client: Client) -> None:
        async with client:
            for device in await client.list_bonded_devices():
                typer.echo(f"{device.id} {device.display_name}")

    try:
        asyncio.run(_run(_build_client(ctx)))
    except LinkctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Bonded device address or partial name"),
    payload: str = typer.Argument(..., help="Text to write over the Classic link"),
) -> None:
    """Connect to a bonded Classic device and write a payload."""

    async def _run(client: Client) -> None:
        async with client:
            target = resolve_device(await client.list_bonded_devices(), device)
            await client.connect_classic(target.id)
            await client.write(payload)
            typer.echo(f"Sent {len(payload)} character(s) to {target.id} ({target.display_name})")

    try:
        asyncio.run(_run(_build_client(ctx)))
    except LinkctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("listen")
def listen(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Bonded device address or partial name"),
    seconds: float = typer.Option(10.0, "--seconds", help="How long to listen"),
) -> None:
    """Connect to a bonded Classic device and print received messages."""

    def _print(event: DataReceived) -> None:
        typer.echo(f"{event.device_id}: {event.data}")

    async def _run(client: Client) -> None:
        async with client:
            target = resolve_device(await client.list_bonded_devices(), device)
            with client.subscribe_data(_print):
                await client.connect_classic(target.id)
                typer.echo(f"Listening to {target.id} for {seconds:g}s")
                await asyncio.sleep(seconds)

    try:
        asyncio.run(_run(_build_client(ctx)))
    except LinkctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
