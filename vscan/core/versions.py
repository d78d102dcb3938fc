"""Dotted version comparison used to decide scanner upgrades."""

from __future__ import annotations

import re

_NUMERIC = re.compile(r"\d+")


def _components(version: str) -> list[int]:
    version = version.strip()
    if version[:1] in ("v", "V"):
        version = version[1:]
    # Drop build / pre-release suffixes: "0.50.1-rc1" -> "0.50.1"
    version = re.split(r"[-+ ]", version, maxsplit=1)[0]
    parts: list[int] = []
    for chunk in version.split("."):
        match = _NUMERIC.match(chunk)
        parts.append(int(match.group()) if match else 0)
    return parts


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1. Missing components count as zero, so "2" == "2.0.0"."""
    a, b = _components(left), _components(right)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_newer(candidate: str, current: str) -> bool:
    return compare_versions(candidate, current) > 0
