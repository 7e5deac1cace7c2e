"""
Command-line interface for the HomeSlice gateway client.
"""

from __future__ import annotations

import asyncio
import queue

import click

from homeslice.client.infrastructure.config_loader import ConfigLoader
from homeslice.common.config import Config
from homeslice.common.exceptions import GatewayError
from homeslice.common.models import ClientConfig

ALERT_POLL_SECONDS = 0.5


def _loader(
    endpoint: str | None = None,
    token: str | None = None,
    identity_dir: str | None = None,
    alert_sessions: tuple[str, ...] = (),
) -> ConfigLoader:
    return ConfigLoader(
        ClientConfig(
            gateway_url=endpoint,
            gateway_token=token,
            identity_dir=identity_dir,
            alert_session_keys=list(alert_sessions) or None,
        )
    )


@click.group()
def cli() -> None:
    """HomeSlice gateway client CLI"""


@cli.group()
def identity() -> None:
    """Inspect or reset the device identity"""


@identity.command("show")
@click.option("--identity-dir", default=None, help="Directory holding the device key")
def identity_show(identity_dir: str | None) -> None:
    """Print the device id and public key"""
    loader = _loader(identity_dir=identity_dir)
    manager = loader.build_identity()
    manager.initialize()
    click.echo(f"Device ID:  {manager.device_id()}")
    click.echo(f"Public key: {manager.public_key_base64()}")
    click.echo(f"Key file:   {loader.identity_key_path}")
    if not manager.is_persistent:
        click.echo("Warning: key store unavailable, identity is not persisted", err=True)


@identity.command("reset")
@click.option("--identity-dir", default=None, help="Directory holding the device key")
@click.confirmation_option(prompt="Reset the device identity? The gateway will see a new device.")
def identity_reset(identity_dir: str | None) -> None:
    """Delete the device key"""
    manager = _loader(identity_dir=identity_dir).build_identity()
    manager.reset()
    click.echo("Device identity reset")


@cli.command()
@click.argument("message")
@click.option("--endpoint", default=None, help="Gateway URL (default: HOMESLICE_GATEWAY_URL)")
@click.option("--token", default=None, help="Bearer token (default: HOMESLICE_GATEWAY_TOKEN)")
@click.option("--identity-dir", default=None, help="Directory holding the device key")
@click.option("--timeout", default=120.0, show_default=True, help="Seconds to wait for the reply")
def send(
    message: str,
    endpoint: str | None,
    token: str | None,
    identity_dir: str | None,
    timeout: float,
) -> None:
    """Send a chat message and print the reply"""

    async def run() -> str:
        client = _loader(endpoint, token, identity_dir).build_client()
        try:
            return await asyncio.wait_for(client.ask(message), timeout)
        finally:
            await client.disconnect()

    try:
        reply = asyncio.run(run())
    except asyncio.TimeoutError as err:
        msg = f"No reply within {timeout}s"
        raise click.ClickException(msg) from err
    except (GatewayError, ValueError) as err:
        raise click.ClickException(str(err)) from err
    click.echo(reply)


@cli.command()
@click.option("--endpoint", default=None, help="Gateway URL (default: HOMESLICE_GATEWAY_URL)")
@click.option("--token", default=None, help="Bearer token (default: HOMESLICE_GATEWAY_TOKEN)")
@click.option("--identity-dir", default=None, help="Directory holding the device key")
@click.option(
    "--session",
    "sessions",
    multiple=True,
    help="Alert session key, e.g. agent:main:telegram:123 (repeatable)",
)
def alerts(
    endpoint: str | None,
    token: str | None,
    identity_dir: str | None,
    sessions: tuple[str, ...],
) -> None:
    """Print alert messages as they arrive"""

    async def run() -> None:
        client = _loader(endpoint, token, identity_dir, sessions).build_client()
        try:
            await client.connect_for_alerts()
            while client.phase.in_progress or client.is_ready:
                try:
                    click.echo(client.alerts.get_nowait())
                except queue.Empty:
                    await asyncio.sleep(ALERT_POLL_SECONDS)
        finally:
            await client.disconnect()
        if client.last_error is not None:
            raise client.last_error

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("Stopped")
    except (GatewayError, ValueError) as err:
        raise click.ClickException(str(err)) from err


@cli.command("dev-gateway")
@click.option("--host", default=None, help="Host to bind (default: HOMESLICE_DEV_GATEWAY_HOST or 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Port to bind (default: HOMESLICE_DEV_GATEWAY_PORT or 18789)")
@click.option("--token", default=None, help="Require this bearer token from clients")
def dev_gateway(host: str | None, port: int | None, token: str | None) -> None:
    """Run the local development gateway"""
    from homeslice.server import start_server  # noqa: PLC0415

    start_server(Config(), token=token, host=host, port=port)


if __name__ == "__main__":
    cli()
