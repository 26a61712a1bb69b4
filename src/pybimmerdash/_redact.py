"""Helpers for safe debug logging.

Frames are logged as hex and may be long; VINs identify a single car and are
masked down to the manufacturer and model code before they reach a log line.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset({"vin", "ip", "adapter_address"})


def frame_for_log(frame: bytes | bytearray | memoryview | None, *, max_bytes: int = 48) -> str:
    """Return *frame* as spaced uppercase hex, truncated after *max_bytes*."""
    if frame is None:
        return "<none>"
    data = bytes(frame)
    text = data[:max_bytes].hex(" ").upper()
    if len(data) > max_bytes:
        return f"{text} …<+{len(data) - max_bytes}b>"
    return text


def redact_vin(vin: str | None) -> str:
    """Keep WMI and model code (first 7 characters), mask the serial part."""
    if not vin:
        return ""
    head = vin[:7]
    return head + "*" * max(0, len(vin) - len(head))


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return frame_for_log(value)

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower() == "vin" and isinstance(v, str):
                redacted[key] = redact_vin(v)
            elif key.lower() in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
