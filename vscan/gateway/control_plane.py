"""Control-plane gateway — the only way scripts reach the backup server.

Responsibilities:
  * reject scripts that use operations outside a fixed allow-list,
  * keep one logged-in PowerShell session and probe it after idle periods,
  * retry a request on transient transport errors, reconnecting with the
    last-known credentials, up to a fixed number of attempts.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from vscan.core.crypto import decrypt, encrypt
from vscan.core.errors import (
    CommandTimeoutError,
    ControlPlaneError,
    SessionNotConnectedError,
    TransientRemoteError,
    UnauthorizedOperationError,
    VScanError,
)
from vscan.core.logging import get_logger
from vscan.gateway import scripts
from vscan.gateway.framing import FramedResult, parse_framed_result
from vscan.gateway.powershell import PowerShellProcess, PowerShellRunner
from vscan.models.base import utcnow

logger = get_logger(__name__)

ALLOWED_OPERATIONS = frozenset(
    name.lower()
    for name in (
        # Backup server operations
        "Connect-VBRServer",
        "Disconnect-VBRServer",
        "Get-VBRServerSession",
        "Get-VBRBackupServerInfo",
        "Get-VBRServer",
        "Get-VBRBackup",
        "Get-VBRRestorePoint",
        "Get-VBRCredentials",
        "Publish-VBRBackupContent",
        "Unpublish-VBRBackupContent",
        "Get-VBRPublishedBackupContentSession",
        "Get-VBRPublishedBackupContentInfo",
        # Side-effect-free built-ins
        "Get-Module",
        "Import-Module",
        "Write-Output",
        "Write-Host",
        "Write-Error",
        "Write-Warning",
        "ConvertTo-Json",
        "ConvertTo-SecureString",
        "New-Object",
        "Select-Object",
        "Where-Object",
        "ForEach-Object",
        "Sort-Object",
        "Group-Object",
        "Measure-Object",
        "Get-Date",
    )
)

_SINGLE_QUOTED = re.compile(r"'(?:[^']|'')*'")
_DOUBLE_QUOTED = re.compile(r'"(?:[^"`]|`.)*"', re.DOTALL)
_COMMAND_TOKEN = re.compile(r"(?<![\w$.-])([A-Za-z]+-[A-Za-z][A-Za-z0-9]*)\b")


def find_operations(script: str) -> set[str]:
    """Return every ``Verb-Noun`` command token used by *script*."""
    stripped = _SINGLE_QUOTED.sub("''", script)
    # Double-quoted strings only execute code through $( ... ) subexpressions
    stripped = _DOUBLE_QUOTED.sub(
        lambda m: m.group(0) if "$(" in m.group(0) else '""', stripped
    )
    return {m.group(1) for m in _COMMAND_TOKEN.finditer(stripped)}


def check_allowed(script: str) -> None:
    denied = sorted(op for op in find_operations(script) if op.lower() not in ALLOWED_OPERATIONS)
    if denied:
        raise UnauthorizedOperationError(
            f"Operation not permitted: {', '.join(denied)}", details={"operations": denied}
        )


@dataclass
class ControlPlaneCredentials:
    server: str
    port: int
    username: str
    password_enc: str

    @classmethod
    def from_plain(cls, server: str, port: int, username: str, password: str) -> "ControlPlaneCredentials":
        return cls(server=server, port=port, username=username, password_enc=encrypt(password))

    def script(self) -> str:
        return scripts.connect_script(self.server, self.port, self.username, decrypt(self.password_enc))


class ControlPlaneGateway:
    """Serialized, allow-listed access to the backup server."""

    def __init__(
        self,
        runner_factory: Callable[[], PowerShellRunner] | None = None,
        *,
        max_attempts: int = 3,
        session_timeout: float = 300.0,
        request_timeout: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner_factory = runner_factory or PowerShellProcess
        self.max_attempts = max_attempts
        self.session_timeout = session_timeout
        self.request_timeout = request_timeout
        self._clock = clock

        self._runner: PowerShellRunner | None = None
        self._credentials: ControlPlaneCredentials | None = None
        self._last_command_at: float | None = None
        self.server_info: dict[str, Any] = {}
        self.connected_at: datetime | None = None
        self._lock = asyncio.Lock()

    # ── Session management ───────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._credentials is not None and self._runner is not None

    @property
    def credentials(self) -> ControlPlaneCredentials | None:
        return self._credentials

    async def connect(self, server: str, username: str, password: str, port: int = 9392) -> dict[str, Any]:
        """Log in and remember the credentials for later reconnects."""
        credentials = ControlPlaneCredentials.from_plain(server, port, username, password)
        async with self._lock:
            await self._dispose_runner()
            info = await self._login(credentials)
            self._credentials = credentials
        return info

    async def restore(self, credentials: ControlPlaneCredentials) -> dict[str, Any]:
        """Reconnect with previously persisted credentials."""
        async with self._lock:
            await self._dispose_runner()
            info = await self._login(credentials)
            self._credentials = credentials
        return info

    async def disconnect(self) -> None:
        async with self._lock:
            await self._disconnect()

    async def _disconnect(self) -> None:
        if self._runner is not None:
            try:
                output = await self._runner.run(
                    scripts.wrap_script(scripts.disconnect_script()), self.request_timeout
                )
                parse_framed_result(output)
            except VScanError as exc:
                logger.warning("Control-plane disconnect failed", error=str(exc))
        await self._dispose_runner()
        self._credentials = None
        self.server_info = {}
        self.connected_at = None
        logger.info("Control-plane session closed")

    def status(self) -> dict[str, Any]:
        creds = self._credentials
        return {
            "connected": self.is_connected,
            "server": creds.server if creds else None,
            "port": creds.port if creds else None,
            "username": creds.username if creds else None,
            "server_info": self.server_info,
            "connected_at": self.connected_at,
        }

    async def close(self) -> None:
        async with self._lock:
            await self._dispose_runner()

    async def _login(self, credentials: ControlPlaneCredentials) -> dict[str, Any]:
        runner = self._runner_factory()
        self._runner = runner
        try:
            output = await runner.run(scripts.wrap_script(credentials.script()), self.request_timeout)
            result = parse_framed_result(output)
        except VScanError:
            await self._dispose_runner()
            raise
        if not result.success:
            await self._dispose_runner()
            raise ControlPlaneError(result.error or "Connection refused", details=result.details)
        self._last_command_at = self._clock()
        self.server_info = result.data or {}
        self.connected_at = utcnow()
        logger.info("Control-plane session established", server=credentials.server, port=credentials.port)
        return self.server_info

    async def _dispose_runner(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.close()

    async def _ensure_session(self) -> PowerShellRunner:
        if self._credentials is None:
            raise SessionNotConnectedError("Control plane is not connected")
        if self._runner is None:
            await self._login(self._credentials)
        elif self._session_expired():
            if not await self._probe():
                logger.info("Control-plane session expired, reconnecting")
                await self._dispose_runner()
                await self._login(self._credentials)
        return self._runner

    def _session_expired(self) -> bool:
        if self._last_command_at is None:
            return True
        return self._clock() - self._last_command_at >= self.session_timeout

    async def _probe(self) -> bool:
        try:
            output = await self._runner.run(scripts.wrap_script(scripts.probe_script()), self.request_timeout)
            alive = parse_framed_result(output).success
        except VScanError as exc:
            logger.info("Control-plane liveness probe failed", error=str(exc))
            return False
        if alive:
            self._last_command_at = self._clock()
        return alive

    # ── Requests ─────────────────────────────────────────────────────────────

    async def execute(self, script: str) -> str:
        """Run an allow-listed script and return its raw output."""
        check_allowed(script)
        wrapped = scripts.wrap_script(script)
        last_error: TransientRemoteError | None = None

        async with self._lock:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    runner = await self._ensure_session()
                    output = await runner.run(wrapped, self.request_timeout)
                    self._last_command_at = self._clock()
                    return output
                except TransientRemoteError as exc:
                    last_error = exc
                    logger.warning(
                        "Transient control-plane error",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=str(exc),
                    )
                    await self._dispose_runner()
                except CommandTimeoutError:
                    # The runner killed its process; the next request must log in again
                    await self._dispose_runner()
                    raise

        raise TransientRemoteError(
            f"Control-plane request failed after {self.max_attempts} attempts: {last_error}",
            details={"attempts": self.max_attempts},
        )

    async def call(self, script: str) -> FramedResult:
        """Run a script and decode its frame; ``success: false`` raises :class:`ControlPlaneError`."""
        result = parse_framed_result(await self.execute(script))
        if not result.success:
            raise ControlPlaneError(result.error or "Control-plane operation failed", details=result.details)
        return result

    # ── Inventory ────────────────────────────────────────────────────────────

    async def list_items(self, search: str | None = None) -> list[dict[str, Any]]:
        return _as_list((await self.call(scripts.list_items_script(search))).data)

    async def list_restore_points(self, item_name: str) -> list[dict[str, Any]]:
        return _as_list((await self.call(scripts.list_restore_points_script(item_name))).data)

    async def list_disks(self, restore_point_id: str) -> list[dict[str, Any]]:
        return _as_list((await self.call(scripts.list_disks_script(restore_point_id))).data)


def _as_list(data: Any) -> list[dict[str, Any]]:
    # ConvertTo-Json collapses single-element arrays into an object
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)
