"""CLI commands for browsing vulnerabilities."""

from __future__ import annotations

import click

from vscan.cli.client import api_call
from vscan.cli.output import console, vulns_table
from vscan.models.vulnerability import VULNERABILITY_STATUSES


@click.group("vulns")
def vulns_cmd() -> None:
    """Vulnerability findings."""


@vulns_cmd.command("list")
@click.option("--search", default=None, help="Finding id or package name substring")
@click.option(
    "--severity",
    type=click.Choice(["CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN"], case_sensitive=False),
    default=None,
)
@click.option("--item", "item_name", default=None, help="Backup item name")
@click.option("--scanner", "scanner_type", default=None)
@click.option("--status", type=click.Choice(VULNERABILITY_STATUSES), default=None)
@click.option("--kev", "in_kev", is_flag=True, default=False, help="Only known-exploited vulnerabilities")
@click.option("--limit", default=50, show_default=True)
@click.pass_context
def vulns_list(
    ctx: click.Context,
    search: str | None,
    severity: str | None,
    item_name: str | None,
    scanner_type: str | None,
    status: str | None,
    in_kev: bool,
    limit: int,
) -> None:
    """List vulnerabilities, most recently seen first."""
    params = {
        "search": search,
        "severity": severity.upper() if severity else None,
        "item_name": item_name,
        "scanner_type": scanner_type,
        "status": status,
        "in_kev": "true" if in_kev else None,
        "limit": limit,
    }
    data = api_call(ctx, "GET", "/vulnerabilities", params={k: v for k, v in params.items() if v is not None})
    console.print(vulns_table(data["items"], data["total"]))


@vulns_cmd.command("set-status")
@click.argument("vulnerability_id")
@click.argument("status", type=click.Choice(VULNERABILITY_STATUSES))
@click.pass_context
def vulns_set_status(ctx: click.Context, vulnerability_id: str, status: str) -> None:
    """Set the review STATUS of a vulnerability."""
    vuln = api_call(ctx, "PATCH", f"/vulnerabilities/{vulnerability_id}", json={"status": status})
    console.print(f"[green]✓[/green] {vuln['finding_id']} ({vuln['package_name']}) → [bold]{vuln['status']}[/bold]")
