"""Engine events.

Everything the engine tells the outside world (connection changes, decoded
values, identification, DTC lists) is published as one of these immutable
events. The UI layer subscribes; it never reaches into engine internals.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from pybimmerdash.models.connection import ConnectionState
from pybimmerdash.models.dtc import DtcRecord
from pybimmerdash.models.layout import GaugeRole, GaugeSlot
from pybimmerdash.models.vehicle import VehicleIdentity


class EventKind(StrEnum):
    CONNECTION_STATE_CHANGED = "connection_state_changed"
    VALUE_UPDATED = "value_updated"
    CYLINDER_CORRECTION_UPDATED = "cylinder_correction_updated"
    VEHICLE_IDENTITY_UPDATED = "vehicle_identity_updated"
    DTC_LIST_UPDATED = "dtc_list_updated"


class EngineEvent(BaseModel):
    """Common envelope of all engine events."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConnectionStateChanged(EngineEvent):
    kind: Literal[EventKind.CONNECTION_STATE_CHANGED] = EventKind.CONNECTION_STATE_CHANGED
    previous: ConnectionState
    current: ConnectionState
    reason: str = ""


class ValueUpdated(EngineEvent):
    kind: Literal[EventKind.VALUE_UPDATED] = EventKind.VALUE_UPDATED
    slot: GaugeSlot
    role: GaugeRole
    parameter_id: str
    value: float
    peak: float | None = None
    """Running maximum; only tracked for primary readouts."""


class CylinderCorrectionUpdated(EngineEvent):
    kind: Literal[EventKind.CYLINDER_CORRECTION_UPDATED] = EventKind.CYLINDER_CORRECTION_UPDATED
    cylinder: int
    """1-based cylinder number."""
    correction: float
    worst: float
    worst_cylinder: int
    """1-based, ``0`` while no retard has been seen."""


class VehicleIdentityUpdated(EngineEvent):
    kind: Literal[EventKind.VEHICLE_IDENTITY_UPDATED] = EventKind.VEHICLE_IDENTITY_UPDATED
    identity: VehicleIdentity


class DtcListUpdated(EngineEvent):
    kind: Literal[EventKind.DTC_LIST_UPDATED] = EventKind.DTC_LIST_UPDATED
    records: tuple[DtcRecord, ...] = ()
