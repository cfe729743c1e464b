"""Command-line interface for contact-relay.

Usage:
    contact-relay serve --config /etc/contact-relay/config.ini
    contact-relay clients --config config.ini
    contact-relay clients --config config.ini --json
    contact-relay check-config --config config.ini
"""

from __future__ import annotations

import json
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from contact_relay import __version__
from contact_relay.config_loader import AppConfig, ConfigError, load_app_config

console = Console()
err_console = Console(stderr=True)

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    envvar="CRL_CONFIG",
    default="config.ini",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Path to the INI configuration file.",
)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def _load(config_path: str) -> AppConfig:
    try:
        return load_app_config(config_path)
    except (FileNotFoundError, ConfigError) as exc:
        print_error(str(exc))
        raise SystemExit(1)


@click.group()
@click.version_option(__version__)
def main() -> None:
    """contact-relay: multi-tenant contact form relay."""


@main.command("serve")
@config_option
@click.option("--host", "-h", default=None, help="Host to bind to (default: from config).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: from config).")
def serve(config_path: str, host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP server."""
    import uvicorn

    from contact_relay.server import create_server_app

    config = _load(config_path)
    app = create_server_app(config_path)
    uvicorn.run(app, host=host or config.host, port=port or config.port)


@main.command("clients")
@config_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def list_clients(config_path: str, as_json: bool) -> None:
    """List the configured clients (realms)."""
    config = _load(config_path)

    if as_json:
        print_json([c.model_dump() for c in config.clients])
        return

    if not config.clients:
        console.print("[dim]No clients configured.[/dim]")
        return

    table = Table(title="Clients")
    table.add_column("Realm", style="cyan")
    table.add_column("Name")
    table.add_column("Recipients")
    table.add_column("Webhook")
    for client in config.clients:
        table.add_row(
            client.public_key,
            client.name or "-",
            ", ".join(client.recipients) or "-",
            client.webhook_url or "-",
        )
    console.print(table)


@main.command("check-config")
@config_option
def check_config(config_path: str) -> None:
    """Validate a configuration file and summarize it."""
    config = _load(config_path)
    print_success(f"{config_path} is valid")
    console.print(f"  clients: {len(config.clients)}")
    console.print(f"  handlers: {', '.join(config.handlers) or '(none)'}")
    console.print(
        f"  rate limit: {config.rate_limit_policy} "
        f"{config.rate_limit} per {config.rate_limit_window:g}s"
    )
    console.print(f"  honeypot field: {config.honeypot_field}")
