"""Diagnostic trouble code model."""

from __future__ import annotations

import re

from pydantic import field_validator

from pybimmerdash.models._base import DashBaseModel

_CODE_RE = re.compile(r"^[0-9a-f]{6}$")


class DtcRecord(DashBaseModel):
    """One stored fault: a 3-byte code rendered as 6 lowercase hex digits."""

    code: str
    description: str | None = None
    """Human-readable text from the external lookup, ``None`` when unknown."""

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        code = value.strip().lower()
        if not _CODE_RE.match(code):
            raise ValueError(f"DTC code must be 6 hex digits, got {value!r}")
        return code

    @property
    def display_code(self) -> str:
        return self.code.upper()
