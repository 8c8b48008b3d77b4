"""CLI commands for clawwatch."""

import asyncio
import json
import platform
import signal
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from clawwatch import __version__, __logo__

app = typer.Typer(
    name="clawwatch",
    help=f"{__logo__} clawwatch - Apple Watch setup bot",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} clawwatch v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """clawwatch - Apple Watch setup bot."""
    pass


# ============================================================================
# Gateway / Server
# ============================================================================


@app.command()
def gateway(
    port: int = typer.Option(None, "--port", "-p", help="Gateway port"),
    host: str = typer.Option(None, "--host", help="Bind address"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Start the webhook and verification server."""
    from clawwatch.channels.telegram import TelegramGateway
    from clawwatch.config.loader import load_config
    from clawwatch.gateway.server import GatewayServer
    from clawwatch.pairing import PairingRegistry, PairingStore

    _configure_logging(verbose)
    config = load_config()
    if port is not None:
        config.gateway.port = port
    if host is not None:
        config.gateway.host = host

    if not config.bot_token:
        console.print("[red]Error: No bot token configured.[/red]")
        console.print("Set CLAWWATCH_BOT_TOKEN or botToken in ~/.clawwatch/config.json")
        raise typer.Exit(1)

    registry = PairingRegistry(ttl_ms=config.code_ttl_ms)
    server = GatewayServer(
        config=config,
        registry=registry,
        gateway=TelegramGateway(config.bot_token),
        store=PairingStore(config.store_path),
    )

    console.print(f"{__logo__} Starting gateway on port {config.gateway.port}...")

    async def run():
        shutdown_event = asyncio.Event()

        if platform.system() == "Windows":
            # Windows asyncio doesn't support loop.add_signal_handler
            signal.signal(signal.SIGINT, lambda s, f: shutdown_event.set())
            signal.signal(signal.SIGTERM, lambda s, f: shutdown_event.set())
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, shutdown_event.set)

        try:
            await server.start()
            console.print(f"[green]✓[/green] Listening on http://{config.gateway.host}:{config.gateway.port}")
            await shutdown_event.wait()
        finally:
            console.print("[dim]Cleaning up...[/dim]")
            await server.stop()
            console.print("[green]✓[/green] Shutdown complete")

    asyncio.run(run())


# ============================================================================
# Pairing
# ============================================================================

pairing_app = typer.Typer(help="Paired watches")
app.add_typer(pairing_app, name="pairing")


def _open_store():
    from clawwatch.config.loader import load_config
    from clawwatch.pairing import PairingStore

    return PairingStore(load_config().store_path)


@pairing_app.command("list")
def pairing_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List watches that completed pairing."""
    devices = _open_store().list_pairings()

    if json_output:
        data = [
            {
                "owner_id": d.owner_id,
                "chat_id": d.chat_id,
                "username": d.username,
                "first_name": d.first_name,
                "paired_at": d.paired_at,
            }
            for d in devices
        ]
        console.print(json.dumps({"pairings": data}, indent=2))
        return

    if not devices:
        console.print("[dim]No paired watches.[/dim]")
        return

    table = Table(title="Paired Watches")
    table.add_column("User ID", style="cyan")
    table.add_column("Chat ID")
    table.add_column("Name")
    table.add_column("Paired")

    for d in devices:
        name = d.first_name or ""
        if d.username:
            name = f"{name} (@{d.username})".strip()
        table.add_row(d.owner_id, d.chat_id, name, d.paired_at[:19])

    console.print(table)


@pairing_app.command("revoke")
def pairing_revoke(
    user_id: str = typer.Argument(..., help="User ID to revoke"),
):
    """Revoke a watch's session."""
    if _open_store().revoke(user_id):
        console.print(f"[green]✓[/green] Revoked pairing for {user_id}")
    else:
        console.print(f"[yellow]User {user_id} has no paired watch[/yellow]")


# ============================================================================
# Webhook
# ============================================================================

webhook_app = typer.Typer(help="Telegram webhook registration")
app.add_typer(webhook_app, name="webhook")


def _run_with_bot(action):
    from clawwatch.channels.telegram import TelegramGateway
    from clawwatch.config.loader import load_config
    from clawwatch.pairing import DeliveryError

    config = load_config()
    if not config.bot_token:
        console.print("[red]Error: No bot token configured.[/red]")
        raise typer.Exit(1)

    async def run():
        telegram = TelegramGateway(config.bot_token)
        await telegram.start()
        try:
            return await action(telegram, config)
        finally:
            await telegram.stop()

    try:
        return asyncio.run(run())
    except DeliveryError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@webhook_app.command("set")
def webhook_set(
    url: str = typer.Argument(..., help="Public URL of /api/webhook"),
):
    """Register the webhook URL with Telegram."""
    async def action(telegram, config):
        return await telegram.set_webhook(url, secret_token=config.webhook_secret)

    if _run_with_bot(action):
        console.print(f"[green]✓[/green] Webhook set to {url}")
    else:
        console.print("[yellow]Telegram did not accept the webhook[/yellow]")
        raise typer.Exit(1)


@webhook_app.command("delete")
def webhook_delete():
    """Remove the webhook registration."""
    async def action(telegram, config):
        return await telegram.delete_webhook()

    if _run_with_bot(action):
        console.print("[green]✓[/green] Webhook removed")
    else:
        console.print("[yellow]Telegram did not remove the webhook[/yellow]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
