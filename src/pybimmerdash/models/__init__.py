"""Data models for the vehicle communication engine."""

from pybimmerdash.models._base import DashBaseModel, DashEnum
from pybimmerdash.models.connection import ConnectionState
from pybimmerdash.models.dtc import DtcRecord
from pybimmerdash.models.layout import (
    BUILTIN_PRESETS,
    DEFAULT_LAYOUT,
    USER_PRESET_NAMES,
    DashboardLayout,
    GaugeAssignment,
    GaugeRole,
    GaugeSlot,
)
from pybimmerdash.models.parameter import Parameter, ParameterKind
from pybimmerdash.models.results import ConnectionTestResult, DtcResult
from pybimmerdash.models.vehicle import VehicleIdentity

__all__ = [
    "BUILTIN_PRESETS",
    "ConnectionState",
    "ConnectionTestResult",
    "DEFAULT_LAYOUT",
    "DashBaseModel",
    "DashEnum",
    "DashboardLayout",
    "DtcRecord",
    "DtcResult",
    "GaugeAssignment",
    "GaugeRole",
    "GaugeSlot",
    "Parameter",
    "ParameterKind",
    "USER_PRESET_NAMES",
    "VehicleIdentity",
]
