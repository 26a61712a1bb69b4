"""Persisted user settings: adapter address, gauge layout and user presets.

The JSON format is flat for the adapter and the active layout and nests the
presets in the camelCase layout shape::

    {
      "ip": "192.168.16.103",
      "port": 13400,
      "left_id": "boost", "left_sub_id": "iat",
      "right_id": "timing_all", "right_sub_id": null,
      "user_presets": {"User 1": {"leftGauge": {"mainParamId": "oil_temp", "subParamId": null}, ...}}
    }
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pybimmerdash._constants import DEFAULT_ADAPTER_HOST, DOIP_PORT
from pybimmerdash.config import EngineConfig
from pybimmerdash.exceptions import DashConfigError
from pybimmerdash.models.layout import (
    BUILTIN_PRESETS,
    DEFAULT_LAYOUT,
    USER_PRESET_NAMES,
    DashboardLayout,
    GaugeAssignment,
)

_logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "settings_v3.json"


class DashSettings(BaseModel):
    """Settings document. Immutable; use the ``with_*`` helpers to derive changes."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    ip: str = DEFAULT_ADAPTER_HOST
    port: int = DOIP_PORT
    left_id: str = DEFAULT_LAYOUT.left_gauge.main_param_id
    left_sub_id: str | None = DEFAULT_LAYOUT.left_gauge.sub_param_id
    right_id: str = DEFAULT_LAYOUT.right_gauge.main_param_id
    right_sub_id: str | None = DEFAULT_LAYOUT.right_gauge.sub_param_id
    user_presets: dict[str, DashboardLayout] = Field(default_factory=dict)

    @property
    def layout(self) -> DashboardLayout:
        return DashboardLayout(
            left_gauge=GaugeAssignment(main_param_id=self.left_id, sub_param_id=self.left_sub_id),
            right_gauge=GaugeAssignment(main_param_id=self.right_id, sub_param_id=self.right_sub_id),
        )

    def with_layout(self, layout: DashboardLayout) -> DashSettings:
        return self.model_copy(
            update={
                "left_id": layout.left_gauge.main_param_id,
                "left_sub_id": layout.left_gauge.sub_param_id,
                "right_id": layout.right_gauge.main_param_id,
                "right_sub_id": layout.right_gauge.sub_param_id,
            }
        )

    def with_adapter(self, host: str, port: int | None = None) -> DashSettings:
        return self.model_copy(update={"ip": host.strip(), "port": port or self.port})

    def with_user_preset(self, name: str, layout: DashboardLayout) -> DashSettings:
        """Store *layout* under one of the user preset slots.

        Built-in presets are read-only; any name outside ``User 1..3`` is
        rejected with :class:`DashConfigError`.
        """
        if name not in USER_PRESET_NAMES:
            raise DashConfigError(f"{name!r} is not a user preset slot")
        return self.model_copy(update={"user_presets": {**self.user_presets, name: layout}})

    def presets(self) -> dict[str, DashboardLayout]:
        """Built-in presets followed by the saved user presets."""
        merged = dict(BUILTIN_PRESETS)
        merged.update((name, layout) for name, layout in self.user_presets.items() if name in USER_PRESET_NAMES)
        return merged

    def engine_config(self, **overrides: Any) -> EngineConfig:
        """Environment-derived :class:`EngineConfig` targeting the saved adapter."""
        values: dict[str, Any] = {"host": self.ip, "port": self.port}
        values.update(overrides)
        return EngineConfig.from_env(**values)


class SettingsStore:
    """Loads and saves :class:`DashSettings` as a JSON file."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> DashSettings:
        """Return the stored settings, or defaults when missing or unreadable."""
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return DashSettings()
        except OSError as exc:
            _logger.warning("Settings file %s could not be read: %s", self._path, exc)
            return DashSettings()
        try:
            return DashSettings.model_validate_json(raw)
        except ValidationError as exc:
            _logger.warning("Settings file %s is invalid, using defaults: %s", self._path, exc.errors()[:1])
            return DashSettings()

    def save(self, settings: DashSettings) -> None:
        """Write *settings* atomically (temporary file + rename)."""
        payload = settings.model_dump_json(by_alias=True, indent=2)
        tmp = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise DashConfigError(f"Could not save settings to {self._path}: {exc}") from exc
        _logger.debug("Settings saved to %s", self._path)
