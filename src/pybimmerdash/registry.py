"""Static catalog of telemetry parameters.

Parameters are defined once at import time and never mutated. Lookups
return ``None`` for unknown ids instead of raising.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from pybimmerdash._constants import (
    DID_COOLANT,
    DID_CYLINDER_TIMING_BASE,
    DID_GEARBOX_TEMP,
    DID_INTAKE_AIR,
    DID_OIL_TEMP,
    DID_RPM,
    MAX_CYLINDERS,
)
from pybimmerdash.models.layout import DashboardLayout, GaugeRole, GaugeSlot
from pybimmerdash.models.parameter import Parameter, ParameterKind

NONE_PARAMETER = Parameter(id="none", label="NO DISPLAY")

_IAT = Parameter(
    id="iat",
    label="INTAKE",
    unit="°C",
    did=DID_INTAKE_AIR,
    kind=ParameterKind.TEMPERATURE,
    min_value=0,
    max_value=100,
)

DEFAULT_PARAMETERS: tuple[Parameter, ...] = (
    NONE_PARAMETER,
    Parameter(
        id="oil_temp",
        label="OIL TEMP",
        unit="°C",
        did=DID_OIL_TEMP,
        kind=ParameterKind.TEMPERATURE,
        min_value=60,
        max_value=160,
        show_red_zone=True,
    ),
    Parameter(
        id="boost",
        label="BOOST",
        unit="BAR",
        did=0xD906,
        kind=ParameterKind.BOOST,
        min_value=0,
        max_value=2.0,
        secondary=_IAT,
    ),
    Parameter(
        id="timing_all",
        label="TIMING",
        unit="°KW",
        did=DID_CYLINDER_TIMING_BASE,
        kind=ParameterKind.TIMING_CORRECTION,
        min_value=-10,
        max_value=0,
        round_robin=True,
    ),
    Parameter(
        id="coolant",
        label="WATER",
        unit="°C",
        did=DID_COOLANT,
        kind=ParameterKind.TEMPERATURE,
        min_value=60,
        max_value=160,
        show_red_zone=True,
    ),
    _IAT,
    Parameter(
        id="throttle",
        label="THROTTLE",
        unit="%",
        did=0xF40E,
        kind=ParameterKind.THROTTLE,
        min_value=0,
        max_value=100,
    ),
    Parameter(
        id="gearbox_temp",
        label="GEARBOX",
        unit="°C",
        did=DID_GEARBOX_TEMP,
        kind=ParameterKind.TEMPERATURE,
        min_value=40,
        max_value=140,
        show_red_zone=True,
    ),
    Parameter(
        id="rpm",
        label="RPM",
        unit="1/min",
        did=DID_RPM,
        kind=ParameterKind.RPM,
        min_value=0,
        max_value=8000,
    ),
)


def cylinder_timing_did(index: int) -> int:
    """Identifier of the timing correction for 0-based cylinder *index*."""
    if not 0 <= index < MAX_CYLINDERS:
        raise ValueError(f"cylinder index out of range: {index}")
    return DID_CYLINDER_TIMING_BASE + index


def cylinder_index_for_did(did: int) -> int | None:
    """0-based cylinder index for a timing correction identifier, else ``None``."""
    index = did - DID_CYLINDER_TIMING_BASE
    if 0 <= index < MAX_CYLINDERS:
        return index
    return None


@dataclass(frozen=True)
class GaugeBinding:
    """A layout entry resolved to its :class:`Parameter`."""

    slot: GaugeSlot
    role: GaugeRole
    parameter: Parameter


class ParameterRegistry:
    """Lookup of parameters by id."""

    def __init__(self, parameters: Iterable[Parameter] = DEFAULT_PARAMETERS) -> None:
        self._by_id: dict[str, Parameter] = {}
        for parameter in parameters:
            if parameter.id in self._by_id:
                raise ValueError(f"duplicate parameter id: {parameter.id}")
            self._by_id[parameter.id] = parameter

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, parameter_id: object) -> bool:
        return parameter_id in self._by_id

    def get(self, parameter_id: str | None) -> Parameter | None:
        if parameter_id is None:
            return None
        return self._by_id.get(parameter_id)

    def bindings(self, layout: DashboardLayout) -> list[GaugeBinding]:
        """Resolve a layout into bindings, in routing priority order.

        Order is left primary, right primary, left secondary, right
        secondary. Unknown ids and the "none" entry are skipped.
        """
        order = (
            (GaugeSlot.LEFT, GaugeRole.PRIMARY, layout.left_gauge.main_param_id),
            (GaugeSlot.RIGHT, GaugeRole.PRIMARY, layout.right_gauge.main_param_id),
            (GaugeSlot.LEFT, GaugeRole.SECONDARY, layout.left_gauge.sub_param_id),
            (GaugeSlot.RIGHT, GaugeRole.SECONDARY, layout.right_gauge.sub_param_id),
        )
        bindings: list[GaugeBinding] = []
        for slot, role, parameter_id in order:
            parameter = self.get(parameter_id)
            if parameter is None or not parameter.is_requestable:
                continue
            bindings.append(GaugeBinding(slot=slot, role=role, parameter=parameter))
        return bindings


DEFAULT_REGISTRY = ParameterRegistry()
