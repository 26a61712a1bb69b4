"""pybimmerdash - Async DoIP/UDS telemetry engine for BMW dashboards."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pybimmerdash")
except PackageNotFoundError:
    __version__ = "0+local"
from pybimmerdash.client import VehicleClient
from pybimmerdash.config import EngineConfig
from pybimmerdash.discovery import discover_adapter, probe_adapter
from pybimmerdash.exceptions import (
    ConnectionLost,
    ConnectRefused,
    ConnectTimeout,
    DashConfigError,
    DashDecodeError,
    DashError,
    DashProtocolError,
    DashTransportError,
)
from pybimmerdash.models import (
    BUILTIN_PRESETS,
    DEFAULT_LAYOUT,
    ConnectionState,
    ConnectionTestResult,
    DashboardLayout,
    DtcRecord,
    DtcResult,
    GaugeAssignment,
    GaugeRole,
    GaugeSlot,
    Parameter,
    ParameterKind,
    VehicleIdentity,
)
from pybimmerdash.registry import DEFAULT_REGISTRY, ParameterRegistry
from pybimmerdash.settings import DashSettings, SettingsStore
from pybimmerdash.state.events import (
    ConnectionStateChanged,
    CylinderCorrectionUpdated,
    DtcListUpdated,
    EngineEvent,
    EventKind,
    ValueUpdated,
    VehicleIdentityUpdated,
)

__all__ = [
    "__version__",
    "BUILTIN_PRESETS",
    "ConnectRefused",
    "ConnectTimeout",
    "ConnectionLost",
    "ConnectionState",
    "ConnectionStateChanged",
    "ConnectionTestResult",
    "CylinderCorrectionUpdated",
    "DEFAULT_LAYOUT",
    "DEFAULT_REGISTRY",
    "DashConfigError",
    "DashDecodeError",
    "DashError",
    "DashProtocolError",
    "DashSettings",
    "DashTransportError",
    "DashboardLayout",
    "DtcListUpdated",
    "DtcRecord",
    "DtcResult",
    "EngineConfig",
    "EngineEvent",
    "EventKind",
    "GaugeAssignment",
    "GaugeRole",
    "GaugeSlot",
    "Parameter",
    "ParameterKind",
    "ParameterRegistry",
    "SettingsStore",
    "ValueUpdated",
    "VehicleClient",
    "VehicleIdentity",
    "VehicleIdentityUpdated",
    "discover_adapter",
    "probe_adapter",
]
