"""CLI commands for scan hosts."""

from __future__ import annotations

import click

from vscan.cli.client import api_call
from vscan.cli.output import console, provision_table, sessions_table


@click.group("hosts")
def hosts_cmd() -> None:
    """Scan host sessions and scanner provisioning."""


@hosts_cmd.command("connect")
@click.option("--address", required=True, help="Host name or IP")
@click.option("--port", default=22, show_default=True)
@click.option("--username", required=True)
@click.option("--password", prompt=True, hide_input=True, help="SSH password, also used for sudo")
@click.pass_context
def hosts_connect(ctx: click.Context, address: str, port: int, username: str, password: str) -> None:
    """Open a pooled SSH session to a scan host."""
    session = api_call(
        ctx,
        "POST",
        "/hosts/connect",
        json={"address": address, "port": port, "username": username, "secret": password},
    )
    console.print(f"[green]✓[/green] Connected to [bold]{session['host']}[/bold] as {session['username']}")


@hosts_cmd.command("status")
@click.argument("address", required=False)
@click.pass_context
def hosts_status(ctx: click.Context, address: str | None) -> None:
    """Show pooled sessions (or probe a single ADDRESS)."""
    if address:
        sessions = [api_call(ctx, "GET", f"/hosts/{address}/status")]
    else:
        sessions = api_call(ctx, "GET", "/hosts/sessions")
    console.print(sessions_table(sessions))


@hosts_cmd.command("provision")
@click.argument("address")
@click.option("--scanners", default="trivy,grype", show_default=True, help="Comma-separated scanner names")
@click.pass_context
def hosts_provision(ctx: click.Context, address: str, scanners: str) -> None:
    """Install or upgrade scanners on ADDRESS and refresh their databases."""
    scanner_list = [s.strip() for s in scanners.split(",") if s.strip()]
    with console.status(f"[dim]Provisioning {address}…[/dim]"):
        results = api_call(
            ctx, "POST", f"/hosts/{address}/provision", json={"scanners": scanner_list}, timeout=1800
        )
    console.print(provision_table(results))
