"""Protocol code enum base.

Lives outside :mod:`pybimmerdash.models` so the codec can use it without
importing the model package, whose parameter descriptors depend on the codec.
"""

from __future__ import annotations

import enum


class DashEnum(enum.IntEnum):
    """Base for protocol code enums.

    Every subclass **must** define ``UNKNOWN = -1``.
    Codes without a mapped member resolve to ``UNKNOWN`` instead of
    raising ``ValueError``.
    """

    @classmethod
    def _missing_(cls, value: object) -> DashEnum:
        if hasattr(cls, "UNKNOWN"):
            unknown: DashEnum = cls.UNKNOWN  # type: ignore[attr-defined]
            return unknown
        return next(iter(cls))
