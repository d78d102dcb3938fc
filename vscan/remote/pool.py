"""Pool of long-lived SSH sessions to scan hosts.

One session per host. Commands on a host run one at a time in issuance
order (per-host ``asyncio.Lock``); hosts are independent of each other.
Two background mechanisms keep the pool healthy:

  * a keep-alive task per session probes it every ``keepalive_interval`` and
    reconnects up to ``max_reconnect_attempts`` times before evicting it,
  * a sweep task every ``sweep_interval`` evicts sessions that fail a probe
    or have been idle longer than ``idle_timeout``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import asyncssh

from vscan.core.crypto import decrypt, encrypt
from vscan.core.errors import (
    AuthenticationError,
    CommandTimeoutError,
    PasswordPromptError,
    RemoteCommandError,
    SessionNotConnectedError,
    TransientRemoteError,
    VScanError,
)
from vscan.core.logging import get_logger
from vscan.models.base import utcnow
from vscan.remote.prompt import PromptAction, PromptResponder, strip_prompts

logger = get_logger(__name__)

StatusSink = Callable[[str, str, str | None], Awaitable[None]]

PROBE_COMMAND = "echo ping"


@dataclass
class HostSession:
    host: str
    port: int
    username: str
    secret_enc: str
    connection: Any = None
    status: str = "disconnected"
    last_activity: float = 0.0
    connected_at: datetime | None = None
    # scanner name -> {"installed": bool, "version": str | None, ...}
    inventory: dict[str, dict[str, Any]] = field(default_factory=dict)
    keepalive_task: asyncio.Task | None = field(default=None, repr=False)
    probing: bool = False

    @property
    def secret(self) -> str:
        return decrypt(self.secret_enc)

    def same_credentials(self, username: str, secret: str, port: int) -> bool:
        return self.username == username and self.port == port and self.secret == secret


class SessionPool:
    def __init__(
        self,
        *,
        connector: Callable[..., Awaitable[Any]] | None = None,
        status_sink: StatusSink | None = None,
        connect_timeout: float = 10.0,
        command_timeout: float = 30.0,
        probe_timeout: float = 5.0,
        keepalive_interval: float = 60.0,
        sweep_interval: float = 300.0,
        idle_timeout: float = 1800.0,
        max_reconnect_attempts: int = 3,
        max_password_attempts: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._connector = connector or asyncssh.connect
        self._status_sink = status_sink
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.probe_timeout = probe_timeout
        self.keepalive_interval = keepalive_interval
        self.sweep_interval = sweep_interval
        self.idle_timeout = idle_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.max_password_attempts = max_password_attempts
        self._clock = clock

        self._sessions: dict[str, HostSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._sweep_task: asyncio.Task | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="ssh-pool-sweep")

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        for session in list(self._sessions.values()):
            async with self._host_lock(session.host):
                await self._evict(session, reason="pool closed")

    # ── Public API ───────────────────────────────────────────────────────────

    def get(self, host: str) -> HostSession | None:
        return self._sessions.get(host)

    def sessions(self) -> list[HostSession]:
        return list(self._sessions.values())

    async def connect(self, host: str, username: str, secret: str, port: int = 22) -> HostSession:
        """Open (or reuse) the session for *host*."""
        async with self._host_lock(host):
            existing = self._sessions.get(host)
            if existing is not None:
                if existing.status == "connected" and existing.same_credentials(username, secret, port):
                    existing.last_activity = self._clock()
                    return existing
                await self._evict(existing, reason="replaced", notify=False)

            session = HostSession(host=host, port=port, username=username, secret_enc=encrypt(secret))
            try:
                await self._open(session)
            except VScanError as exc:
                await self._notify(host, "error", str(exc))
                raise
            self._sessions[host] = session
            session.keepalive_task = asyncio.create_task(
                self._keepalive_loop(host), name=f"ssh-keepalive-{host}"
            )
        await self._notify(host, "connected", None)
        return session

    async def disconnect(self, host: str) -> bool:
        async with self._host_lock(host):
            session = self._sessions.get(host)
            if session is None:
                return False
            await self._evict(session, reason="requested")
            return True

    async def is_alive(self, host: str) -> bool:
        session = self._sessions.get(host)
        if session is None or session.status != "connected":
            return False
        async with self._host_lock(host):
            return await self._probe(session)

    async def execute(
        self,
        host: str,
        command: str,
        *,
        timeout: float | None = None,
        silent: bool = False,
        check: bool = True,
    ) -> str:
        """Run *command* on *host* and return its (prompt-stripped) output.

        Raises:
            SessionNotConnectedError: no session for the host.
            CommandTimeoutError: the command exceeded its timeout.
            RemoteCommandError: non-zero exit status while ``check`` is set.
        """
        async with self._host_lock(host):
            session = self._sessions.get(host)
            if session is None or session.status != "connected":
                raise SessionNotConnectedError(f"No active session for {host}")
            if not silent:
                logger.debug("Remote command", host=host, command=command)
            try:
                output, exit_status = await self._run(session, command, timeout or self.command_timeout)
            finally:
                session.last_activity = self._clock()

        if check and exit_status not in (0, None):
            if not silent:
                logger.warning("Remote command failed", host=host, command=command, exit_status=exit_status)
            raise RemoteCommandError(
                f"Command exited with status {exit_status}",
                details={"command": command, "output": output[-2000:]},
                exit_status=exit_status,
            )
        return output

    async def check_host(self, host: str) -> bool:
        """Run one keep-alive cycle for *host*.

        Returns ``True`` when the session is healthy (or busy), ``False`` when it
        was evicted after exhausting its reconnect attempts.
        """
        session = self._sessions.get(host)
        if session is None:
            return False
        lock = self._host_lock(host)
        if lock.locked() or session.probing:
            return True

        async with lock:
            if self._sessions.get(host) is not session:
                return False
            session.probing = True
            try:
                if await self._probe(session):
                    return True
                logger.warning("Keep-alive probe failed", host=host)
                for attempt in range(1, self.max_reconnect_attempts + 1):
                    try:
                        await self._reopen(session)
                        if await self._probe(session):
                            logger.info("Session re-established", host=host, attempt=attempt)
                            return True
                    except VScanError as exc:
                        logger.warning("Reconnect failed", host=host, attempt=attempt, error=str(exc))
                await self._evict(
                    session, reason=f"unreachable after {self.max_reconnect_attempts} reconnect attempts"
                )
                return False
            finally:
                session.probing = False

    async def sweep(self) -> list[str]:
        """Evict sessions that are idle or fail a probe; return the evicted hosts."""
        evicted: list[str] = []
        now = self._clock()
        for host, session in list(self._sessions.items()):
            lock = self._host_lock(host)
            if lock.locked():
                continue
            async with lock:
                if self._sessions.get(host) is not session:
                    continue
                if now - session.last_activity > self.idle_timeout:
                    await self._evict(session, reason="idle timeout")
                    evicted.append(host)
                elif not await self._probe(session):
                    await self._evict(session, reason="probe failed")
                    evicted.append(host)
        if evicted:
            logger.info("Session sweep evicted hosts", hosts=evicted)
        return evicted

    # ── Internals ────────────────────────────────────────────────────────────

    def _host_lock(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = self._locks[host] = asyncio.Lock()
        return lock

    async def _open(self, session: HostSession) -> None:
        try:
            session.connection = await asyncio.wait_for(
                self._connector(
                    session.host,
                    port=session.port,
                    username=session.username,
                    password=session.secret,
                    known_hosts=None,
                ),
                timeout=self.connect_timeout,
            )
        except asyncssh.PermissionDenied as exc:
            raise AuthenticationError(f"Authentication failed for {session.username}@{session.host}") from exc
        except asyncio.TimeoutError as exc:
            raise TransientRemoteError(f"Connection to {session.host} timed out") from exc
        except (asyncssh.Error, OSError) as exc:
            raise TransientRemoteError(f"Cannot connect to {session.host}: {exc}") from exc
        session.status = "connected"
        session.last_activity = self._clock()
        session.connected_at = utcnow()
        logger.info("SSH session opened", host=session.host, username=session.username)

    async def _reopen(self, session: HostSession) -> None:
        await self._close_connection(session)
        await self._open(session)

    async def _close_connection(self, session: HostSession) -> None:
        conn, session.connection = session.connection, None
        session.status = "disconnected"
        if conn is None:
            return
        try:
            conn.close()
            await asyncio.wait_for(conn.wait_closed(), timeout=self.probe_timeout)
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as exc:
            logger.debug("Error while closing SSH connection", host=session.host, error=str(exc))

    async def _evict(self, session: HostSession, reason: str, notify: bool = True) -> None:
        task = session.keepalive_task
        session.keepalive_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await self._close_connection(session)
        if self._sessions.get(session.host) is session:
            del self._sessions[session.host]
        logger.info("SSH session evicted", host=session.host, reason=reason)
        if notify:
            await self._notify(session.host, "disconnected", reason)

    async def _probe(self, session: HostSession) -> bool:
        if session.connection is None:
            return False
        try:
            output, status = await self._run(session, PROBE_COMMAND, self.probe_timeout)
        except VScanError:
            return False
        return status in (0, None) and "ping" in output

    async def _run(self, session: HostSession, command: str, timeout: float) -> tuple[str, int | None]:
        if session.connection is None:
            raise SessionNotConnectedError(f"No active session for {session.host}")
        try:
            process = await session.connection.create_process(command, term_type="dumb")
        except (asyncssh.Error, OSError) as exc:
            raise TransientRemoteError(f"Cannot start command on {session.host}: {exc}") from exc

        responder = PromptResponder(self.max_password_attempts)
        try:
            return await asyncio.wait_for(self._drive(session, process, responder), timeout=timeout)
        except asyncio.TimeoutError as exc:
            process.close()
            raise CommandTimeoutError(
                f"Command timed out after {timeout}s on {session.host}",
                details={"command": command},
            ) from exc
        except (asyncssh.Error, OSError) as exc:
            process.close()
            raise TransientRemoteError(f"Session to {session.host} failed: {exc}") from exc

    async def _drive(
        self, session: HostSession, process: Any, responder: PromptResponder
    ) -> tuple[str, int | None]:
        chunks: list[str] = []
        while True:
            chunk = await process.stdout.read(4096)
            if not chunk:
                break
            chunks.append(chunk)
            action = responder.feed(chunk)
            if action is PromptAction.RESPOND:
                process.stdin.write(session.secret + "\n")
            elif action is PromptAction.FAIL:
                process.close()
                raise PasswordPromptError(
                    f"Password rejected {responder.attempts} times on {session.host}"
                )
        completed = await process.wait()
        return strip_prompts("".join(chunks), responder.answered), completed.exit_status

    async def _notify(self, host: str, status: str, error: str | None) -> None:
        if self._status_sink is None:
            return
        try:
            await self._status_sink(host, status, error)
        except Exception:
            logger.exception("Host status sink failed", host=host, status=status)

    async def _keepalive_loop(self, host: str) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            if host not in self._sessions:
                return
            try:
                if not await self.check_host(host):
                    return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Keep-alive error, will retry next cycle", host=host)

    async def _sweep_loop(self) -> None:
        logger.info("SSH session sweep started", interval=self.sweep_interval)
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Session sweep error, will retry next cycle")
