"""Scanner plugin contract — every supported vulnerability scanner implements this.

A scanner plugin only builds shell commands and interprets their output; the
commands themselves run on the scan host through the session pool.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar


class OsFamily(str, Enum):
    DEBIAN = "debian"
    RHEL = "rhel"


@dataclass
class ScannerMetadata:
    name: str               # Unique slug (e.g. "trivy")
    display_name: str
    repository: str         # GitHub "owner/repo" publishing releases
    description: str
    binary: str             # Absolute path, sudo's secure_path may omit /usr/local/bin


@dataclass
class DatabaseStatus:
    stale: bool
    updated_at: datetime | None = None
    next_update: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)


class Scanner(ABC):
    """Abstract base class for scanner plugins.

    Subclass this, set the ``metadata`` class variable, and implement the
    command builders. The registry auto-discovers any concrete subclass found
    in ``vscan/scanners/*.py``.
    """

    metadata: ClassVar[ScannerMetadata]

    def __init__(self, cache_root: str = "/tmp/vscan", db_max_age: timedelta = timedelta(hours=24)) -> None:
        self.cache_root = cache_root.rstrip("/")
        self.db_max_age = db_max_age

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def cache_dir(self) -> str:
        """Database directory private to this tool, outside the system default cache."""
        return f"{self.cache_root}/{self.metadata.name}-db"

    @abstractmethod
    def version_command(self) -> str: ...

    @abstractmethod
    def parse_version(self, output: str) -> str | None:
        """Return the installed version, or ``None`` when the tool is absent."""

    @abstractmethod
    def install_commands(self, os_family: OsFamily, version: str) -> list[str]:
        """Commands installing exactly *version* on the given OS family."""

    @abstractmethod
    def db_status_command(self) -> str: ...

    @abstractmethod
    def parse_db_status(self, output: str, now: datetime) -> DatabaseStatus: ...

    @abstractmethod
    def db_update_command(self) -> str: ...

    @abstractmethod
    def scan_command(self, target: str, output_file: str) -> str:
        """Command scanning *target* and writing a JSON report to *output_file*."""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if not getattr(cls, "__abstractmethods__", None):
            if not hasattr(cls, "metadata"):
                raise TypeError(
                    f"Scanner {cls.__name__} must define a 'metadata' class variable."
                )
