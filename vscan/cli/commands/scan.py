"""CLI commands for running scan batches."""

from __future__ import annotations

import time

import click
from rich.text import Text

from vscan.cli.client import api_call
from vscan.cli.output import batch_table, console, scans_table, status_style


def _parse_item(value: str) -> dict:
    """``NAME:RESTORE_POINT_ID[:disk1,disk2]``"""
    parts = value.split(":", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise click.BadParameter(f"expected NAME:RESTORE_POINT_ID[:DISKS], got {value!r}")
    disks = [d.strip() for d in parts[2].split(",") if d.strip()] if len(parts) == 3 else []
    return {"item_name": parts[0], "restore_point_id": parts[1], "disk_names": disks}


@click.group("scan")
def scan_cmd() -> None:
    """Backup scanning operations."""


@scan_cmd.command("run")
@click.option("--host", required=True, help="Connected scan host address")
@click.option(
    "--item",
    "items",
    multiple=True,
    required=True,
    help="Backup item as NAME:RESTORE_POINT_ID[:disk1,disk2] (repeatable)",
)
@click.option("--scanners", default="trivy", show_default=True, help="Comma-separated scanner names")
@click.option("--keep-mounted", is_flag=True, default=False, help="Leave backup content mounted afterwards")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Wait for the batch to finish before returning",
)
@click.option(
    "--poll-interval",
    default=5,
    show_default=True,
    help="Polling interval in seconds when --wait is set",
)
@click.pass_context
def scan_run(
    ctx: click.Context,
    host: str,
    items: tuple[str, ...],
    scanners: str,
    keep_mounted: bool,
    wait: bool,
    poll_interval: int,
) -> None:
    """Mount backup items on HOST and scan them.

    Example:

        vscan scan run --host 10.0.0.5 --item web01:6f1c...:Disk1 --scanners trivy,grype
    """
    scanner_list = [s.strip() for s in scanners.split(",") if s.strip()]
    payload = {
        "host": host,
        "items": [_parse_item(i) for i in items],
        "scanners": scanner_list,
        "keep_mounted": keep_mounted,
    }

    console.print(f"[bold cyan]Starting scan batch[/bold cyan] on [bold]{host}[/bold]")
    console.print(f"  Items:    [dim]{', '.join(i['item_name'] for i in payload['items'])}[/dim]")
    console.print(f"  Scanners: [dim]{', '.join(scanner_list)}[/dim]")

    accepted = api_call(ctx, "POST", "/scans", json=payload, timeout=15)
    batch_id = accepted["batch_id"]
    console.print(f"  Batch ID: [dim]{batch_id}[/dim]")

    if not wait:
        return

    with console.status("[dim]Waiting for batch to complete…[/dim]") as spinner:
        while True:
            time.sleep(poll_interval)
            batch = api_call(ctx, "GET", f"/scans/batches/{batch_id}", timeout=10)
            state = batch.get("state", "?")
            spinner.update(f"[dim]Batch state: {state}[/dim]")
            if state not in ("running", "cancelling"):
                break

    console.print("\n[bold]Batch finished[/bold] — ", end="")
    console.print(Text(state, style=status_style(state)))
    if batch.get("result"):
        console.print(batch_table(batch["result"]))


@scan_cmd.command("cancel")
@click.argument("batch_id")
@click.pass_context
def scan_cancel(ctx: click.Context, batch_id: str) -> None:
    """Cancel a running batch (the current item finishes its current step)."""
    api_call(ctx, "POST", f"/scans/batches/{batch_id}/cancel")
    console.print(f"[yellow]Cancelling[/yellow] batch {batch_id}")


@scan_cmd.command("list")
@click.option("--item", "item_name", default=None, help="Only scans of this backup item")
@click.option("--batch", "batch_id", default=None, help="Only scans of this batch")
@click.option("--limit", default=20, show_default=True)
@click.pass_context
def scan_list(ctx: click.Context, item_name: str | None, batch_id: str | None, limit: int) -> None:
    """List recent scans."""
    params: dict = {"limit": limit}
    if item_name:
        params["item_name"] = item_name
    if batch_id:
        params["batch_id"] = batch_id
    data = api_call(ctx, "GET", "/scans", params=params)
    console.print(scans_table(data["items"]))
