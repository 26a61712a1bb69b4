"""Telemetry parameter descriptors."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum

from pydantic import Field, field_validator

from pybimmerdash import _codec
from pybimmerdash._constants import THERMAL_DIDS, format_did
from pybimmerdash.exceptions import DashDecodeError
from pybimmerdash.models._base import DashBaseModel


class ParameterKind(StrEnum):
    """Decoding rule selector."""

    NONE = "none"
    TEMPERATURE = "temperature"
    BOOST = "boost"
    THROTTLE = "throttle"
    TIMING_CORRECTION = "timing_correction"
    RPM = "rpm"


_DECODERS: dict[ParameterKind, Callable[[bytes], float | int]] = {
    ParameterKind.TEMPERATURE: _codec.decode_temperature,
    ParameterKind.BOOST: _codec.decode_boost,
    ParameterKind.THROTTLE: _codec.decode_throttle,
    ParameterKind.TIMING_CORRECTION: _codec.decode_timing_correction,
    ParameterKind.RPM: _codec.decode_rpm,
}


class Parameter(DashBaseModel):
    """Immutable description of one readable value.

    Defined once at process start (see :mod:`pybimmerdash.registry`).
    """

    id: str
    """Stable key, also used in the persisted layout."""
    label: str = ""
    unit: str = ""
    did: int | None = None
    """Two-byte data identifier, ``None`` for the "no display" entry."""
    kind: ParameterKind = ParameterKind.NONE
    min_value: float = 0.0
    max_value: float = 0.0
    show_red_zone: bool = False
    secondary: Parameter | None = None
    """Linked parameter shown as the sub readout by default."""
    round_robin: bool = Field(default=False)
    """Served by the per-cylinder round robin instead of direct polling."""

    @field_validator("did")
    @classmethod
    def _check_did(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 0xFFFF:
            raise ValueError(f"data identifier out of range: {value}")
        return value

    @property
    def request_identifier(self) -> str:
        """Data identifier as four hex digits, ``""`` when not requestable."""
        return format_did(self.did) if self.did is not None else ""

    @property
    def range(self) -> tuple[float, float]:
        return (self.min_value, self.max_value)

    @property
    def is_requestable(self) -> bool:
        return self.did is not None and self.kind is not ParameterKind.NONE

    @property
    def is_thermal(self) -> bool:
        return self.did in THERMAL_DIDS

    def decode(self, payload: bytes) -> float:
        """Convert a response payload to this parameter's value.

        Raises :class:`DashDecodeError` when the payload is too short or the
        parameter has no decoding rule.
        """
        decoder = _DECODERS.get(self.kind)
        if decoder is None:
            raise DashDecodeError(f"parameter {self.id!r} has no decoding rule", did=self.did)
        try:
            return float(decoder(payload))
        except DashDecodeError as exc:
            raise DashDecodeError(f"{self.id}: {exc}", did=self.did) from exc
