"""Engine configuration for pybimmerdash."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pybimmerdash._constants import (
    BASE_TICK_SECONDS,
    BATTERY_SAVE_EVERY_TICKS,
    BATTERY_SAVE_ZERO_RPM_SAMPLES,
    DEFAULT_ADAPTER_HOST,
    DEFAULT_CYLINDER_COUNT,
    DOIP_PORT,
    KEEP_ALIVE_MAX_FAILURES,
    SUPPORTED_CYLINDER_COUNTS,
    THERMAL_EVERY_TICKS,
)
from pybimmerdash.exceptions import DashConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class EngineConfig:
    """Vehicle communication engine configuration.

    Parameters
    ----------
    host : str
        Adapter IPv4 address used when ``connect()`` is called without one.
    port : int
        DoIP TCP port of the adapter.
    connect_timeout : float
        Seconds to wait for the TCP connection to be accepted.
    tick_interval : float
        Base polling tick in seconds (100 ms).
    thermal_every_ticks : int
        Thermal parameters and RPM are requested on every Nth tick.
    battery_save_every_ticks : int
        While battery saving, only every Nth tick does any work.
    battery_save_zero_rpm_samples : int
        Consecutive zero-RPM samples required to enter battery saving.
    keep_alive_interval : float
        Seconds between keep-alive frames.
    keep_alive_max_failures : int
        Consecutive keep-alive send failures that trigger a reconnect.
    send_timeout : float
        Seconds a single frame write may take before it counts as failed.
    auto_reconnect : bool
        Schedule a reconnect attempt after the keep-alive limit is reached.
    reconnect_delay : float
        Seconds between the teardown and the reconnect attempt.
    require_routing_activation : bool
        Only declare the session connected once a routing activation
        response was received. Off by default: the activation response is
        informational and many adapters never send it.
    activation_timeout : float
        Seconds to wait for the routing activation response when gating
        (and in the connection test).
    identification_timeout : float
        Seconds after connect during which identification responses are
        accepted. Fields that did not answer keep their previous value.
    dtc_response_timeout : float
        Seconds to wait for a DTC list after a read request.
    dtc_clear_settle : float
        Seconds to wait after a clear request before the list is cleared
        locally when the ECU sends no positive response.
    default_cylinder_count : int
        Cylinder count assumed until the VIN has been decoded.
    frame_trace_enabled : bool
        Log every frame sent/received at DEBUG level.
    """

    host: str = DEFAULT_ADAPTER_HOST
    port: int = DOIP_PORT
    connect_timeout: float = 3.0
    tick_interval: float = BASE_TICK_SECONDS
    thermal_every_ticks: int = THERMAL_EVERY_TICKS
    battery_save_every_ticks: int = BATTERY_SAVE_EVERY_TICKS
    battery_save_zero_rpm_samples: int = BATTERY_SAVE_ZERO_RPM_SAMPLES
    keep_alive_interval: float = 2.0
    keep_alive_max_failures: int = KEEP_ALIVE_MAX_FAILURES
    send_timeout: float = 1.0
    auto_reconnect: bool = True
    reconnect_delay: float = 5.0
    require_routing_activation: bool = False
    activation_timeout: float = 1.0
    identification_timeout: float = 5.0
    dtc_response_timeout: float = 2.0
    dtc_clear_settle: float = 0.5
    default_cylinder_count: int = DEFAULT_CYLINDER_COUNT
    frame_trace_enabled: bool = False

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise DashConfigError(f"tick_interval must be positive, got {self.tick_interval}")
        if self.thermal_every_ticks < 1 or self.battery_save_every_ticks < 1:
            raise DashConfigError("tick cadences must be at least 1")
        if self.keep_alive_max_failures < 1:
            raise DashConfigError("keep_alive_max_failures must be at least 1")
        if self.default_cylinder_count not in SUPPORTED_CYLINDER_COUNTS:
            raise DashConfigError(
                f"default_cylinder_count must be one of {SUPPORTED_CYLINDER_COUNTS}, got {self.default_cylinder_count}"
            )
        if not 0 < self.port < 65536:
            raise DashConfigError(f"port out of range: {self.port}")

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """Create configuration from environment variables.

        Reads optional ``DASH_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        EngineConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        host = env.get("DASH_HOST")
        if host is not None:
            config_kwargs["host"] = host.strip()

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "DASH_PORT": ("port", int),
            "DASH_CONNECT_TIMEOUT": ("connect_timeout", float),
            "DASH_KEEP_ALIVE_INTERVAL": ("keep_alive_interval", float),
            "DASH_RECONNECT_DELAY": ("reconnect_delay", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise DashConfigError(f"{env_key} is not a valid {cast.__name__}: {val!r}") from exc

        _ENV_BOOL_MAP: dict[str, tuple[str, bool]] = {
            "DASH_AUTO_RECONNECT": ("auto_reconnect", True),
            "DASH_REQUIRE_ROUTING_ACTIVATION": ("require_routing_activation", False),
            "DASH_FRAME_TRACE_ENABLED": ("frame_trace_enabled", False),
        }
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
