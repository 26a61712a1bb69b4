"""Vehicle identification model."""

from __future__ import annotations

import datetime as dt

from pybimmerdash.models._base import DashBaseModel


class VehicleIdentity(DashBaseModel):
    """Identification data collected by the one-shot requests after connect.

    Built incrementally (one ``model_copy(update=...)`` per response) and
    reset to empty on disconnect. Unanswered fields stay ``None``.
    """

    vin: str = ""
    """Vehicle Identification Number (17 characters)."""
    manufacturer: str = ""
    """Derived from the VIN world manufacturer identifier."""
    model_code: str = ""
    """VIN characters 4-7."""
    model: str = ""
    """Model name from the external model table."""
    cylinder_count: int | None = None
    mileage_km: int | None = None
    production_date: dt.date | None = None
    flash_cycles: int | None = None
    oil_service_due_km: int | None = None
    oil_service_due_date: dt.date | None = None

    @property
    def is_empty(self) -> bool:
        return self == VehicleIdentity()

    @property
    def oil_service_remaining_km(self) -> int | None:
        """Distance until oil service, negative when overdue."""
        if self.oil_service_due_km is None or self.mileage_km is None:
            return None
        return self.oil_service_due_km - self.mileage_km
