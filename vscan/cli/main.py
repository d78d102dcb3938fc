"""vscan CLI entry point — `vscan` command group."""

from __future__ import annotations

import click

from vscan.cli.commands.hosts import hosts_cmd
from vscan.cli.commands.scan import scan_cmd
from vscan.cli.commands.vulns import vulns_cmd


@click.group()
@click.version_option(package_name="vscan")
@click.option(
    "--api-url",
    default="http://localhost:8000",
    envvar="VSCAN_API_URL",
    show_default=True,
    help="Base URL of the vscan API server",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """Scan backup snapshots for vulnerable packages.

    \b
    Typical session:
      vscan hosts connect --address 10.0.0.5 --username scan
      vscan hosts provision 10.0.0.5 --scanners trivy
      vscan scan run --host 10.0.0.5 --item web01:<restore-point-id>
      vscan vulns list --severity CRITICAL --kev
    """
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url.rstrip("/")


cli.add_command(scan_cmd)
cli.add_command(vulns_cmd)
cli.add_command(hosts_cmd)


@cli.command("serve")
@click.option("--host", default=None, help="Bind host (defaults to APP_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (defaults to APP_PORT)")
@click.option("--reload", is_flag=True, default=False, help="Restart on code changes")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    from vscan.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "vscan.api.app:app",
        host=host or settings.app_host,
        port=port or settings.app_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    cli()
