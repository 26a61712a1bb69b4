"""Response demultiplexing.

Each decoded envelope is routed to exactly one consumer. Data responses are
matched in this order, first match wins:

1. a pending identification identifier
2. RPM (battery-save detection; an RPM gauge still gets the value)
3. the active gauge bindings (left primary, right primary, left secondary,
   right secondary)
4. a per-cylinder timing identifier

Everything else is dropped. Only identifiers the current layout or the
identification workflow subscribe to produce values, so a late response to
a request from a previous layout cannot reach the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import StrEnum

from pybimmerdash._codec import ResponseEnvelope, ResponseKind, decode_rpm, decode_timing_correction
from pybimmerdash._constants import DID_RPM, format_did
from pybimmerdash._redact import redact_for_log
from pybimmerdash._scheduler import BatterySaveMonitor
from pybimmerdash._workflow import DtcWorkflow, IdentificationWorkflow
from pybimmerdash.exceptions import DashDecodeError
from pybimmerdash.registry import GaugeBinding, cylinder_index_for_did
from pybimmerdash.state.events import (
    CylinderCorrectionUpdated,
    DtcListUpdated,
    EngineEvent,
    ValueUpdated,
    VehicleIdentityUpdated,
)
from pybimmerdash.state.store import TelemetryStore

_logger = logging.getLogger(__name__)


class RouteOutcome(StrEnum):
    IDENTIFICATION = "identification"
    RPM = "rpm"
    GAUGE = "gauge"
    CYLINDER = "cylinder"
    DTC_LIST = "dtc_list"
    DTC_CLEARED = "dtc_cleared"
    SESSION = "session"
    DECODE_FAILED = "decode_failed"
    DROPPED = "dropped"


class ResponseRouter:
    """Feeds decoded responses into the store and workflows."""

    def __init__(
        self,
        store: TelemetryStore,
        *,
        bindings: Callable[[], Sequence[GaugeBinding]],
        identification: IdentificationWorkflow,
        dtc: DtcWorkflow,
        battery: BatterySaveMonitor,
        emit: Callable[[EngineEvent], None],
        on_battery_save: Callable[[bool], None] | None = None,
    ) -> None:
        self._store = store
        self._bindings = bindings
        self._identification = identification
        self._dtc = dtc
        self._battery = battery
        self._emit = emit
        self._on_battery_save = on_battery_save

    def handle(self, envelope: ResponseEnvelope) -> RouteOutcome:
        kind = envelope.kind
        if kind is ResponseKind.DATA and envelope.did is not None:
            return self._route_data(envelope.did, envelope.payload)
        if kind is ResponseKind.DTC_LIST:
            records = self._dtc.handle_list(envelope.dtc_codes)
            self._store.replace_dtcs(records)
            _logger.info("DTC list replaced: %d code(s)", len(records))
            self._emit(DtcListUpdated(records=records))
            return RouteOutcome.DTC_LIST
        if kind is ResponseKind.DTC_CLEARED:
            self._dtc.handle_cleared()
            return RouteOutcome.DTC_CLEARED
        if kind in (ResponseKind.ROUTING_ACTIVATION, ResponseKind.KEEP_ALIVE_ACK):
            return RouteOutcome.SESSION
        if kind is ResponseKind.NEGATIVE:
            _logger.debug(
                "Negative response to service 0x%02X: %s",
                envelope.requested_service or 0,
                envelope.nrc.name if envelope.nrc is not None else "?",
            )
        else:
            _logger.debug("Dropped %s frame: %s", kind, envelope.reason)
        return RouteOutcome.DROPPED

    def _route_data(self, did: int, payload: bytes) -> RouteOutcome:
        if self._identification.is_pending(did):
            return self._route_identification(did, payload)

        if did == DID_RPM:
            self._feed_rpm(payload)

        for binding in self._bindings():
            if binding.parameter.did != did or binding.parameter.round_robin:
                continue
            try:
                value = binding.parameter.decode(payload)
            except DashDecodeError as exc:
                _logger.debug("No update for %s: %s", binding.parameter.id, exc)
                return RouteOutcome.DECODE_FAILED
            reading = self._store.update_gauge(binding.slot, binding.role, value)
            self._emit(
                ValueUpdated(
                    slot=binding.slot,
                    role=binding.role,
                    parameter_id=binding.parameter.id,
                    value=value,
                    peak=reading.peak,
                )
            )
            return RouteOutcome.GAUGE

        if did == DID_RPM:
            return RouteOutcome.RPM

        index = cylinder_index_for_did(did)
        if index is not None:
            return self._route_cylinder(index, payload)

        _logger.debug("Dropped unsubscribed response %s", format_did(did))
        return RouteOutcome.DROPPED

    def _route_identification(self, did: int, payload: bytes) -> RouteOutcome:
        identity = self._identification.handle(did, payload, self._store.identity)
        if identity is None:
            return RouteOutcome.DECODE_FAILED
        self._store.set_identity(identity)
        count = identity.cylinder_count
        if count is not None and count != self._store.cylinder_count:
            _logger.info("Cylinder count set to %d", count)
            self._store.resize_cylinders(count)
        _logger.debug("Vehicle identity: %s", redact_for_log(identity.model_dump(exclude_none=True)))
        self._emit(VehicleIdentityUpdated(identity=identity))
        return RouteOutcome.IDENTIFICATION

    def _feed_rpm(self, payload: bytes) -> None:
        try:
            rpm = decode_rpm(payload)
        except DashDecodeError as exc:
            _logger.debug("RPM sample ignored: %s", exc)
            return
        if not self._battery.record_rpm(rpm):
            return
        _logger.info("Battery saving %s", "active" if self._battery.active else "off")
        if self._on_battery_save is not None:
            self._on_battery_save(self._battery.active)

    def _route_cylinder(self, index: int, payload: bytes) -> RouteOutcome:
        try:
            correction = decode_timing_correction(payload)
        except DashDecodeError as exc:
            _logger.debug("No update for cylinder %d: %s", index + 1, exc)
            return RouteOutcome.DECODE_FAILED
        if not self._store.record_cylinder(index, correction):
            _logger.debug("Dropped correction for cylinder %d (engine has %d)", index + 1, self._store.cylinder_count)
            return RouteOutcome.DROPPED
        worst, worst_cylinder = self._store.worst_correction
        self._emit(
            CylinderCorrectionUpdated(
                cylinder=index + 1,
                correction=correction,
                worst=worst,
                worst_cylinder=worst_cylinder,
            )
        )
        return RouteOutcome.CYLINDER
