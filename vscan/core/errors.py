"""Error taxonomy shared by every component.

Each error carries a stable ``kind`` string so callers (API, batch runner)
can report failures structurally instead of matching on messages.
"""

from __future__ import annotations

from typing import Any


class VScanError(Exception):
    """Base class for all orchestration errors."""

    kind: str = "error"

    def __init__(
        self,
        kind: str | None = None,
        message: str = "",
        details: Any = None,
    ) -> None:
        if kind is not None:
            self.kind = kind
        self.message = message or self.kind
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class _KindedError(VScanError):
    def __init__(self, message: str = "", details: Any = None) -> None:
        super().__init__(None, message, details)


class TransientRemoteError(_KindedError):
    """Remote process or session went away; the request may be retried."""

    kind = "transient_remote"


class CommandTimeoutError(_KindedError):
    kind = "command_timeout"


class VerificationTimeoutError(_KindedError):
    kind = "verification_timeout"


class UnauthorizedOperationError(_KindedError):
    kind = "unauthorized_operation"


class UnsupportedPlatformError(_KindedError):
    kind = "unsupported_platform"


class ScanParseError(_KindedError):
    kind = "parse_failure"


class FramingError(ScanParseError):
    """Framed control-plane result is missing or not valid JSON."""


class PersistenceError(_KindedError):
    kind = "persistence_failure"


class ControlPlaneError(_KindedError):
    """The control plane answered with ``success: false``."""

    kind = "control_plane"


class SessionNotConnectedError(_KindedError):
    kind = "not_connected"


class AuthenticationError(_KindedError):
    kind = "authentication"


class PasswordPromptError(_KindedError):
    kind = "password_prompt"


class RemoteCommandError(_KindedError):
    """A remote command exited with a non-zero status."""

    kind = "remote_command"

    def __init__(self, message: str = "", details: Any = None, exit_status: int | None = None) -> None:
        super().__init__(message, details)
        self.exit_status = exit_status


class ProvisioningError(_KindedError):
    kind = "provisioning"


class JobNotFoundError(_KindedError):
    kind = "job_not_found"


class JobCancelledError(_KindedError):
    kind = "cancelled"


class InternalError(_KindedError):
    """Unexpected non-vscan exception raised while processing an item."""

    kind = "internal"

    @classmethod
    def wrap(cls, exc: BaseException) -> "InternalError":
        return cls(f"{type(exc).__name__}: {exc}", details={"exception": type(exc).__name__})
