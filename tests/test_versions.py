"""Tests for core/versions.py."""

import pytest

from vscan.core.versions import compare_versions, is_newer


@pytest.mark.parametrize(
    "left, right, expected",
    [
        ("1.2.0", "1.10.0", -1),
        ("2", "2.0.0", 0),
        ("1.2.3", "1.2", 1),
        ("v0.50.1", "0.50.1", 0),
        ("0.51.0-rc1", "0.50.9", 1),
    ],
)
def test_compare_versions(left, right, expected):
    assert compare_versions(left, right) == expected


def test_is_newer():
    assert is_newer("0.74.0", "0.73.2")
    assert not is_newer("0.73.2", "0.73.2")
    assert not is_newer("0.9", "0.10")
