"""In-memory telemetry store.

This is the only component that holds decoded engine outputs. The router
writes into it; the client exposes read-only views and events built from it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from pybimmerdash._constants import DEFAULT_CYLINDER_COUNT, MAX_CYLINDERS
from pybimmerdash.models.dtc import DtcRecord
from pybimmerdash.models.layout import GaugeRole, GaugeSlot
from pybimmerdash.models.vehicle import VehicleIdentity


class GaugeReading(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: float | None = None
    peak: float | None = None


class TelemetryStore:
    """Current values, peaks, cylinder corrections, identity and DTCs."""

    def __init__(self, *, cylinder_count: int = DEFAULT_CYLINDER_COUNT) -> None:
        self._readings: dict[tuple[GaugeSlot, GaugeRole], GaugeReading] = {}
        self._corrections: list[float] = [0.0] * cylinder_count
        self._worst: float = 0.0
        self._worst_cylinder: int = 0
        self._identity = VehicleIdentity()
        self._dtcs: tuple[DtcRecord, ...] = ()

    # ------------------------------------------------------------------
    # Gauges
    # ------------------------------------------------------------------

    def update_gauge(self, slot: GaugeSlot, role: GaugeRole, value: float) -> GaugeReading:
        """Store a decoded value; primary readouts also track ``max(peak, value)``."""
        reading = self._readings.setdefault((slot, role), GaugeReading())
        reading.value = value
        if role is GaugeRole.PRIMARY:
            reading.peak = value if reading.peak is None else max(reading.peak, value)
        return reading.model_copy()

    def reading(self, slot: GaugeSlot, role: GaugeRole = GaugeRole.PRIMARY) -> GaugeReading:
        reading = self._readings.get((slot, role))
        return reading.model_copy() if reading is not None else GaugeReading()

    def clear_slot(self, slot: GaugeSlot) -> None:
        """Forget values and peaks of *slot* (its assignment changed)."""
        for role in GaugeRole:
            self._readings.pop((slot, role), None)

    def reset_peaks(self) -> None:
        for reading in self._readings.values():
            reading.peak = reading.value if reading.peak is not None else None

    # ------------------------------------------------------------------
    # Cylinder timing corrections
    # ------------------------------------------------------------------

    @property
    def cylinder_count(self) -> int:
        return len(self._corrections)

    @property
    def corrections(self) -> tuple[float, ...]:
        return tuple(self._corrections)

    @property
    def worst_correction(self) -> tuple[float, int]:
        """Most negative correction seen and its 1-based cylinder (``0`` if none)."""
        return self._worst, self._worst_cylinder

    def resize_cylinders(self, count: int) -> None:
        if not 1 <= count <= MAX_CYLINDERS:
            raise ValueError(f"cylinder count out of range: {count}")
        self._corrections = [0.0] * count
        if self._worst_cylinder > count:
            self.reset_worst_correction()

    def record_cylinder(self, index: int, correction: float) -> bool:
        """Store a correction for 0-based *index*.

        Returns ``False`` (and stores nothing) when the index is beyond the
        current cylinder count, e.g. a late response after a resize.
        """
        if not 0 <= index < len(self._corrections):
            return False
        self._corrections[index] = correction
        if correction < self._worst:
            self._worst = correction
            self._worst_cylinder = index + 1
        return True

    def reset_worst_correction(self) -> None:
        self._worst = 0.0
        self._worst_cylinder = 0

    # ------------------------------------------------------------------
    # Identity / DTCs
    # ------------------------------------------------------------------

    @property
    def identity(self) -> VehicleIdentity:
        return self._identity

    def set_identity(self, identity: VehicleIdentity) -> None:
        self._identity = identity

    @property
    def dtcs(self) -> tuple[DtcRecord, ...]:
        return self._dtcs

    def replace_dtcs(self, records: tuple[DtcRecord, ...]) -> None:
        self._dtcs = tuple(records)

    def clear_dtcs(self) -> None:
        self._dtcs = ()

    def reset_session(self, *, cylinder_count: int = DEFAULT_CYLINDER_COUNT) -> None:
        """Drop per-connection data. Gauge peaks survive a reconnect."""
        self._identity = VehicleIdentity()
        self._corrections = [0.0] * cylinder_count
        self.reset_worst_correction()
