"""Framed JSON results returned by control-plane scripts.

Scripts print their result between ``STARTJSON`` and ``ENDJSON`` lines; any
other output (module banners, warnings, progress) around the frame is noise.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from vscan.core.errors import FramingError

START_SENTINEL = "STARTJSON"
END_SENTINEL = "ENDJSON"

_FRAME_RE = re.compile(r"STARTJSON\s*([\s\S]*?)\s*ENDJSON")


@dataclass
class FramedResult:
    success: bool
    data: Any = None
    error: str | None = None
    details: Any = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


def extract_framed_json(text: str) -> Any:
    """Return the decoded JSON value of the first frame in *text*."""
    if text is None:
        raise FramingError("No output received")
    normalized = text.replace("\r\n", "\n")
    match = _FRAME_RE.search(normalized)
    if not match:
        raise FramingError(
            "Result frame not found in output",
            details={"output_tail": normalized[-500:]},
        )
    payload = match.group(1).strip()
    if not payload:
        raise FramingError("Result frame is empty")
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise FramingError(f"Malformed JSON in result frame: {exc.msg}", details={"payload": payload[:500]}) from exc


def parse_framed_result(text: str) -> FramedResult:
    """Decode a frame into a :class:`FramedResult` (``success`` + ``data`` or ``error``)."""
    value = extract_framed_json(text)
    if not isinstance(value, dict) or "success" not in value:
        raise FramingError("Result frame is not a {success, ...} object")
    return FramedResult(
        success=bool(value.get("success")),
        data=value.get("data"),
        error=value.get("error"),
        details=value.get("details"),
        raw=value,
    )
