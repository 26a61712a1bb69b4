"""Dashboard layout models.

A layout has no behavior of its own; it decides which parameters the
scheduler requests and which responses the router accepts.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from pybimmerdash.models._base import DashBaseModel


class GaugeSlot(StrEnum):
    LEFT = "left"
    RIGHT = "right"


class GaugeRole(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class GaugeAssignment(DashBaseModel):
    """Primary parameter plus optional secondary readout for one slot.

    Persisted as ``{"mainParamId": ..., "subParamId": ...}``; a missing or
    null ``subParamId`` means single-gauge mode.
    """

    main_param_id: str = "boost"
    sub_param_id: str | None = None


class DashboardLayout(DashBaseModel):
    """Left and right gauge assignments."""

    left_gauge: GaugeAssignment = Field(default_factory=GaugeAssignment)
    right_gauge: GaugeAssignment = Field(default_factory=lambda: GaugeAssignment(main_param_id="timing_all"))

    def assignment(self, slot: GaugeSlot) -> GaugeAssignment:
        return self.left_gauge if slot is GaugeSlot.LEFT else self.right_gauge


DEFAULT_LAYOUT = DashboardLayout(
    left_gauge=GaugeAssignment(main_param_id="boost", sub_param_id="iat"),
    right_gauge=GaugeAssignment(main_param_id="timing_all"),
)

#: Presets that ship with the application and cannot be overwritten.
BUILTIN_PRESETS: dict[str, DashboardLayout] = {
    "Performance": DashboardLayout(
        left_gauge=GaugeAssignment(main_param_id="boost", sub_param_id="iat"),
        right_gauge=GaugeAssignment(main_param_id="timing_all", sub_param_id="coolant"),
    ),
    "Track": DashboardLayout(
        left_gauge=GaugeAssignment(main_param_id="oil_temp", sub_param_id="coolant"),
        right_gauge=GaugeAssignment(main_param_id="boost", sub_param_id="iat"),
    ),
    "Tuner": DashboardLayout(
        left_gauge=GaugeAssignment(main_param_id="timing_all", sub_param_id="throttle"),
        right_gauge=GaugeAssignment(main_param_id="boost", sub_param_id="iat"),
    ),
}

USER_PRESET_NAMES: tuple[str, ...] = ("User 1", "User 2", "User 3")
