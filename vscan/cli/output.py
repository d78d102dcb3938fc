"""Rich output helpers — tables and status display."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

console = Console()


def status_style(status: str) -> str:
    return {
        "completed": "green",
        "finished": "green",
        "connected": "green",
        "mounted": "green",
        "running": "yellow",
        "in_progress": "yellow",
        "cancelling": "yellow",
        "pending": "dim",
        "disconnected": "dim",
        "cancelled": "dim",
        "failed": "red",
        "error": "red",
    }.get(status, "white")


def severity_style(severity: str) -> str:
    return {
        "CRITICAL": "bold red",
        "HIGH": "red",
        "MEDIUM": "yellow",
        "LOW": "cyan",
    }.get(severity, "dim")


def fmt_date(iso: str | None) -> str:
    if not iso:
        return "—"
    try:
        dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso


def scans_table(items: list[dict[str, Any]]) -> Table:
    table = Table(
        title=f"Scans ({len(items)})",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Item")
    table.add_column("Scanner")
    table.add_column("Status")
    table.add_column("Crit", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Started", style="dim")
    table.add_column("Error")

    for s in items:
        status = s.get("status", "?")
        table.add_row(
            str(s.get("id", ""))[:8] + "…",
            s.get("item_name", ""),
            s.get("scanner_type", ""),
            Text(status, style=status_style(status)),
            str(s.get("critical_count", 0)),
            str(s.get("high_count", 0)),
            str(s.get("total_count", 0)),
            fmt_date(s.get("started_at")),
            s.get("error_msg") or "",
        )
    return table


def batch_table(result: dict[str, Any]) -> Table:
    table = Table(
        title=f"Batch {result.get('batch_id', '')[:8]}… on {result.get('host', '')}",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Item", style="bold")
    table.add_column("Status")
    table.add_column("Scans")
    table.add_column("Error")

    for item in result.get("items", []):
        status = item.get("status", "?")
        scans = ", ".join(
            f"{s['scanner']}={s['status']}({s.get('findings', 0)})" for s in item.get("scans", [])
        )
        error = item.get("error") or next((s["error"] for s in item.get("scans", []) if s.get("error")), None)
        table.add_row(
            item.get("item_name", ""),
            Text(status, style=status_style(status)),
            scans or "—",
            f"{error['kind']}: {error['message']}" if error else "",
        )
    return table


def vulns_table(items: list[dict[str, Any]], total: int) -> Table:
    table = Table(
        title=f"Vulnerabilities ({len(items)} of {total})",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Finding", style="bold", no_wrap=True)
    table.add_column("Severity")
    table.add_column("Package")
    table.add_column("Installed")
    table.add_column("Fixed")
    table.add_column("Item")
    table.add_column("KEV", justify="center")
    table.add_column("Status")
    table.add_column("Last seen", style="dim")

    for v in items:
        severity = v.get("severity", "UNKNOWN")
        kev_text = Text("✓", style="red") if v.get("in_kev") else Text("—", style="dim")
        table.add_row(
            str(v.get("id", ""))[:8] + "…",
            v.get("finding_id", ""),
            Text(severity, style=severity_style(severity)),
            v.get("package_name", ""),
            v.get("installed_version") or "—",
            v.get("fixed_version") or "—",
            v.get("item_name", ""),
            kev_text,
            v.get("status", ""),
            fmt_date(v.get("last_seen")),
        )
    return table


def sessions_table(items: list[dict[str, Any]]) -> Table:
    table = Table(
        title=f"Host sessions ({len(items)})",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Host", style="bold")
    table.add_column("User")
    table.add_column("Status")
    table.add_column("Alive", justify="center")
    table.add_column("Scanners")

    for s in items:
        status = s.get("status", "?")
        alive = Text("✓", style="green") if s.get("alive") else Text("✗", style="red")
        scanners = ", ".join(
            f"{name} {entry.get('version') or '?'}" for name, entry in (s.get("inventory") or {}).items()
        )
        table.add_row(
            f"{s.get('host')}:{s.get('port')}",
            s.get("username", ""),
            Text(status, style=status_style(status)),
            alive,
            scanners or "—",
        )
    return table


def provision_table(items: list[dict[str, Any]]) -> Table:
    table = Table(title="Scanner provisioning", header_style="bold cyan", border_style="dim")
    table.add_column("Scanner", style="bold")
    table.add_column("Version")
    table.add_column("Latest", style="dim")
    table.add_column("DB updated", style="dim")
    table.add_column("Actions")

    for s in items:
        table.add_row(
            s.get("scanner", ""),
            s.get("version") or "—",
            s.get("latest_version") or "—",
            fmt_date(s.get("database_updated_at")),
            ", ".join(s.get("actions") or []) or Text("none", style="dim"),
        )
    return table
