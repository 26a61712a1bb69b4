"""Base model and enum for engine data models.

Every model inherits from :class:`DashBaseModel` which provides:

* ``alias_generator=to_camel`` so the camelCase keys of the persisted
  layout/preset format map to snake_case fields.
* ``frozen=True``: descriptors and snapshots are values, updates go through
  ``model_copy(update=...)``.

Code enums inherit from :class:`DashEnum` (see :mod:`pybimmerdash._enum`)
which adds an ``UNKNOWN`` member at ``-1`` and a ``_missing_`` hook that
returns ``UNKNOWN`` for any value without a mapped member.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from pybimmerdash._enum import DashEnum

__all__ = ["DashBaseModel", "DashEnum"]


class DashBaseModel(BaseModel):
    """Base for immutable engine models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
