"""Results of user-initiated engine operations.

These are returned instead of raised: a failed DTC read or connection test
is a normal outcome for the caller to display.
"""

from __future__ import annotations

from pybimmerdash.models._base import DashBaseModel
from pybimmerdash.models.dtc import DtcRecord


class DtcResult(DashBaseModel):
    """Outcome of a DTC read or clear."""

    ok: bool
    records: tuple[DtcRecord, ...] = ()
    message: str = ""


class ConnectionTestResult(DashBaseModel):
    """Outcome of a routing-activation probe against an adapter."""

    ok: bool
    host: str = ""
    port: int = 0
    message: str = ""
    response_hex: str | None = None
