"""Thin httpx wrapper used by the CLI commands."""

from __future__ import annotations

from typing import Any

import click
import httpx

from vscan.cli.output import console


def api_call(ctx: click.Context, method: str, path: str, *, timeout: float = 30, **kwargs: Any) -> Any:
    """Call the API and return the decoded JSON body; exits the CLI on errors."""
    api_url: str = ctx.obj["api_url"]
    try:
        r = httpx.request(method, f"{api_url}/api/v1{path}", timeout=timeout, **kwargs)
        r.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]Cannot connect to API at {api_url}.[/red]")
        raise SystemExit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]API error {e.response.status_code}:[/red] {_error_text(e.response)}")
        raise SystemExit(1)
    if r.status_code == 204 or not r.content:
        return None
    return r.json()


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return f"{error.get('kind')}: {error.get('message')}"
        if "detail" in body:
            return str(body["detail"])
    return response.text
