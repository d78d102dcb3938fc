"""Scanner registry — auto-discovers and registers all Scanner subclasses."""

import importlib
import pkgutil
from datetime import timedelta
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING

from vscan.core.logging import get_logger

if TYPE_CHECKING:
    from vscan.scanners.base import Scanner

logger = get_logger(__name__)

# Modules in vscan/scanners that hold shared code rather than plugins
_NON_PLUGIN_MODULES = {"base", "reports"}


class ScannerRegistry:
    """Registry of discovered scanner plugins.

    Usage:
        registry = ScannerRegistry(cache_root="/tmp/vscan")
        registry.discover()
        trivy = registry.create("trivy")
    """

    def __init__(self, cache_root: str = "/tmp/vscan", db_max_age: timedelta = timedelta(hours=24)) -> None:
        self.cache_root = cache_root
        self.db_max_age = db_max_age
        self._scanners: dict[str, type["Scanner"]] = {}
        self._discovered = False

    def discover(self, package: str = "vscan.scanners") -> None:
        """Import every plugin module of *package* and register its concrete Scanner subclasses."""
        from vscan.scanners.base import Scanner  # avoid circular import

        plugin_dir = Path(__file__).parent.parent / "scanners"
        for module_info in pkgutil.iter_modules([str(plugin_dir)]):
            if module_info.name in _NON_PLUGIN_MODULES:
                continue
            module_name = f"{package}.{module_info.name}"
            try:
                mod = importlib.import_module(module_name)
            except Exception as exc:
                logger.warning("Failed to import scanner plugin", module=module_name, error=str(exc))
                continue
            for cls in _concrete_subclasses(mod, Scanner):
                self._register(cls)

        self._discovered = True
        logger.info("Scanner discovery complete", scanners=self.names())

    def _register(self, cls: type["Scanner"]) -> None:
        name = cls.metadata.name
        current = self._scanners.get(name)
        if current is not None and current is not cls:
            logger.warning("Duplicate scanner name, keeping first", name=name, kept=current.__name__, skipped=cls.__name__)
            return
        self._scanners[name] = cls

    def get(self, name: str) -> type["Scanner"] | None:
        return self._scanners.get(name)

    def create(self, name: str) -> "Scanner":
        cls = self.get(name)
        if cls is None:
            raise KeyError(f"Unknown scanner: {name}")
        return cls(cache_root=self.cache_root, db_max_age=self.db_max_age)

    def all(self) -> dict[str, type["Scanner"]]:
        return dict(self._scanners)

    def names(self) -> list[str]:
        return sorted(self._scanners)

    @property
    def is_discovered(self) -> bool:
        return self._discovered


def _concrete_subclasses(mod: ModuleType, base: type) -> list[type]:
    found = []
    for value in vars(mod).values():
        if isinstance(value, type) and issubclass(value, base) and value is not base:
            if not getattr(value, "__abstractmethods__", None):
                found.append(value)
    return found
