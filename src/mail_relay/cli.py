"""Command-line interface for the mail relay.

Usage:
    mail-relay serve --port 3000
    mail-relay stats
    mail-relay send dest@example.com --subject "Hello"
    mail-relay bulk recipients.txt --subject "Newsletter"
    mail-relay reset
    mail-relay refresh

Client commands talk to a running instance; ``--url`` and ``--token``
default to ``MR_URL`` and ``MR_API_TOKEN``.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

import click
import requests
from rich.console import Console
from rich.table import Table

from . import __version__
from .client import RelayClient, RelayClientError

console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def read_recipients(path: Path) -> list[str]:
    """Read one address per line, skipping blanks and ``#`` comments."""
    lines = (line.strip() for line in path.read_text(encoding="utf-8").splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def _call(ctx: click.Context, method: str, *args: Any, **kwargs: Any) -> Any:
    client: RelayClient = ctx.obj["client"]
    try:
        return getattr(client, method)(*args, **kwargs)
    except RelayClientError as e:
        if ctx.obj["as_json"] and isinstance(e.payload, dict):
            print_json(e.payload)
        print_error(str(e))
        sys.exit(1)
    except requests.RequestException as e:
        print_error(f"Cannot reach {client.url}: {e}")
        sys.exit(1)


def _usage_table(details: list[dict[str, Any]]) -> Table:
    table = Table(title="WebApp Usage")
    table.add_column("WebApp", style="cyan", justify="right")
    table.add_column("Usage", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Status")
    for entry in details:
        status = "[red]limited[/red]" if entry["is_limited"] else "[green]available[/green]"
        table.add_row(
            str(entry["webapp"]),
            str(entry["usage"]),
            str(entry["limit"]),
            entry["percentage"],
            str(entry["remaining"]),
            status,
        )
    return table


@click.group()
@click.version_option(__version__)
@click.option("--url", envvar="MR_URL", default="http://localhost:3000", show_default=True,
              help="Base URL of the relay instance.")
@click.option("--token", envvar="MR_API_TOKEN", default=None, help="API token (X-API-Token).")
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON.")
@click.pass_context
def main(ctx: click.Context, url: str, token: Optional[str], as_json: bool) -> None:
    """Quota-aware mail relay over web app endpoints."""
    ctx.ensure_object(dict)
    ctx.obj["client"] = RelayClient(url, token=token)
    ctx.obj["as_json"] = as_json


@main.command("serve")
@click.option("--host", "-h", default=None, help="Host to bind to (default: MR_HOST or 0.0.0.0).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: MR_PORT or 3000).")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to config.ini.")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development.")
def serve(host: Optional[str], port: Optional[int], config_path: Optional[str], reload: bool) -> None:
    """Run the relay HTTP server."""
    import uvicorn

    from .config_loader import load_settings

    if config_path:
        os.environ["MR_CONFIG"] = config_path
    settings = load_settings(config_path)
    host = host or settings.host
    port = port or settings.port

    console.print("\n[bold cyan]Starting mail relay[/bold cyan]")
    console.print(f"  Listen:      {host}:{port}")
    console.print(f"  Daily limit: {settings.daily_limit} per WebApp")
    console.print()

    uvicorn.run(
        "mail_relay.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@main.command("stats")
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show usage statistics."""
    result = _call(ctx, "stats")
    if ctx.obj["as_json"]:
        print_json(result)
        return

    data = result["stats"]
    console.print(f"[bold]WebApps:[/bold] {data['total_webapps']} "
                  f"([green]{data['available_apps']} available[/green], "
                  f"[red]{data['rate_limited_apps']} limited[/red])")
    console.print(f"[bold]Sent:[/bold] {data['total_sent']}  [bold]Failed:[/bold] {data['total_failed']}")
    console.print(f"[bold]Daily limit:[/bold] {data['daily_limit']}  [bold]Last reset:[/bold] {data['last_reset']}")
    if data["webapp_details"]:
        console.print(_usage_table(data["webapp_details"]))
    else:
        console.print("[dim]No usage data yet.[/dim]")


@main.command("send")
@click.argument("to")
@click.option("--subject", "-s", default=None, help="Subject (default: configured template).")
@click.option("--from", "from_name", default=None, help="Sender name (default: configured sender).")
@click.pass_context
def send(ctx: click.Context, to: str, subject: Optional[str], from_name: Optional[str]) -> None:
    """Send one email."""
    result = _call(ctx, "send", to, subject=subject, from_name=from_name)
    if ctx.obj["as_json"]:
        print_json(result)
        return
    data = result["data"]
    print_success(
        f"Sent to {data['to']} via WebApp #{data['webapp_used']} "
        f"({data['webapp_usage']}/{data['webapp_limit']})"
    )


@main.command("bulk")
@click.argument("recipients", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--subject", "-s", default=None, help="Subject (default: configured template).")
@click.option("--from", "from_name", default=None, help="Sender name (default: configured sender).")
@click.pass_context
def bulk(ctx: click.Context, recipients: Path, subject: Optional[str], from_name: Optional[str]) -> None:
    """Send one email to every address listed in RECIPIENTS (one per line)."""
    emails = read_recipients(recipients)
    if not emails:
        print_error(f"No addresses found in {recipients}")
        sys.exit(1)
    result = _call(ctx, "bulk", emails, subject=subject, from_name=from_name)
    if ctx.obj["as_json"]:
        print_json(result)
        return

    summary = result["summary"]
    table = Table(title="Distribution")
    table.add_column("WebApp", style="cyan", justify="right")
    table.add_column("Assigned", justify="right")
    table.add_column("Usage", justify="right")
    for entry in result["distribution"]:
        table.add_row(str(entry["webapp"]), str(entry["emails_assigned"]),
                      f"{entry['current_usage']}/{entry['limit']}")
    console.print(table)
    console.print(f"[bold]Total:[/bold] {summary['total']}  [green]sent {summary['sent']}[/green]  "
                  f"[red]failed {summary['failed']}[/red]  "
                  f"[yellow]undistributed {summary['undistributed']}[/yellow]  ({summary['success_rate']})")
    for item in result["results"]:
        if item["status"] != "sent":
            console.print(f"  [dim]{item['status']}:[/dim] {item['email']} - {item.get('error', '')}")


@main.command("reset")
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Reset usage counters on the relay."""
    result = _call(ctx, "reset")
    if ctx.obj["as_json"]:
        print_json(result)
        return
    print_success(result.get("message", "Usage counters reset"))


@main.command("refresh")
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Reload the WebApp URL list on the relay."""
    result = _call(ctx, "refresh")
    if ctx.obj["as_json"]:
        print_json(result)
        return
    print_success(f"Loaded {result['urls_loaded']} WebApp URLs")


if __name__ == "__main__":
    main()
