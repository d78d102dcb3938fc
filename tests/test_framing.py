"""Tests for the STARTJSON/ENDJSON result frames."""

import pytest

from vscan.core.errors import FramingError
from vscan.gateway.framing import extract_framed_json, parse_framed_result


def test_frame_surrounded_by_noise():
    output = 'WARNING: banner\r\nSTARTJSON\r\n{"success":true,"data":{"x":1}}\r\nENDJSON\r\nPS> '
    assert extract_framed_json(output) == {"success": True, "data": {"x": 1}}


def test_first_frame_wins():
    output = 'STARTJSON\n{"n":1}\nENDJSON\nSTARTJSON\n{"n":2}\nENDJSON\n'
    assert extract_framed_json(output) == {"n": 1}


def test_missing_frame():
    with pytest.raises(FramingError, match="not found"):
        extract_framed_json("Connect-VBRServer : access denied\n")


def test_empty_frame():
    with pytest.raises(FramingError, match="empty"):
        extract_framed_json("STARTJSON\n\nENDJSON")


def test_malformed_frame():
    with pytest.raises(FramingError, match="Malformed") as exc_info:
        extract_framed_json('STARTJSON\n{"success": tru\nENDJSON')
    assert exc_info.value.kind == "parse_failure"


def test_parse_failure_result():
    result = parse_framed_result(
        'STARTJSON\n{"success":false,"error":"Session not found","details":{"code":"session_not_found"}}\nENDJSON'
    )
    assert result.success is False
    assert result.error == "Session not found"
    assert result.details == {"code": "session_not_found"}


def test_frame_without_success_key():
    with pytest.raises(FramingError):
        parse_framed_result("STARTJSON\n[1, 2]\nENDJSON")
