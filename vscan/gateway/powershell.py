"""Long-lived PowerShell process used as the control-plane transport."""

from __future__ import annotations

import asyncio
import base64
import uuid
from typing import Protocol

from vscan.core.errors import CommandTimeoutError, TransientRemoteError
from vscan.core.logging import get_logger

logger = get_logger(__name__)


class PowerShellRunner(Protocol):
    """Anything able to run one script and return its stdout."""

    async def run(self, script: str, timeout: float) -> str: ...

    async def close(self) -> None: ...


class PowerShellProcess:
    """One ``pwsh`` process reading commands from stdin.

    Each request is sent as a single base64-encoded ``Invoke-Expression`` line
    followed by a line printing a per-request end marker, so multi-line
    scripts never leave the interpreter waiting for continuation input.
    """

    def __init__(self, executable: str = "pwsh") -> None:
        self.executable = executable
        self._proc: asyncio.subprocess.Process | None = None
        self._lock = asyncio.Lock()

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def _ensure_started(self) -> asyncio.subprocess.Process:
        if self.alive:
            return self._proc
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.executable,
                "-NoLogo",
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy",
                "Bypass",
                "-Command",
                "-",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise TransientRemoteError(f"Cannot start {self.executable}: {exc}") from exc
        logger.info("PowerShell process started", pid=self._proc.pid)
        return self._proc

    async def run(self, script: str, timeout: float) -> str:
        async with self._lock:
            proc = await self._ensure_started()
            marker = f"__VSCAN_END_{uuid.uuid4().hex}__"
            encoded = base64.b64encode(script.encode("utf-8")).decode("ascii")
            command = (
                "Invoke-Expression ([System.Text.Encoding]::UTF8.GetString("
                f"[System.Convert]::FromBase64String('{encoded}')))\n"
                f"Write-Output '{marker}'\n"
            )
            try:
                proc.stdin.write(command.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                await self._kill()
                raise TransientRemoteError("PowerShell process is not accepting input") from exc

            try:
                return await asyncio.wait_for(self._read_until(proc, marker), timeout=timeout)
            except asyncio.TimeoutError as exc:
                await self._kill()
                raise CommandTimeoutError(f"Control-plane request timed out after {timeout}s") from exc

    async def _read_until(self, proc: asyncio.subprocess.Process, marker: str) -> str:
        lines: list[str] = []
        while True:
            raw = await proc.stdout.readline()
            if not raw:
                await self._kill()
                raise TransientRemoteError("PowerShell process exited")
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.strip() == marker:
                return "\n".join(lines)
            lines.append(line)

    async def _kill(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        proc.kill()
        try:
            await asyncio.wait_for(proc.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("PowerShell process did not exit after kill", pid=proc.pid)

    async def close(self) -> None:
        async with self._lock:
            await self._kill()
