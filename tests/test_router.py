from __future__ import annotations

import logging

import pytest

from pybimmerdash._codec import (
    decode_response,
    encode_clear_response,
    encode_data_response,
    encode_dtc_response,
    encode_negative_response,
)
from pybimmerdash._constants import DID_MILEAGE, DID_RPM, DID_VIN
from pybimmerdash._router import ResponseRouter, RouteOutcome
from pybimmerdash._scheduler import BatterySaveMonitor
from pybimmerdash._workflow import DtcWorkflow, IdentificationWorkflow
from pybimmerdash.config import EngineConfig
from pybimmerdash.models.layout import DashboardLayout, GaugeAssignment, GaugeRole, GaugeSlot
from pybimmerdash.registry import DEFAULT_REGISTRY, GaugeBinding
from pybimmerdash.state.events import (
    CylinderCorrectionUpdated,
    DtcListUpdated,
    EngineEvent,
    ValueUpdated,
    VehicleIdentityUpdated,
)
from pybimmerdash.state.store import TelemetryStore


class _Harness:
    def __init__(self, layout: DashboardLayout, *, battery_threshold: int = 300) -> None:
        self.store = TelemetryStore(cylinder_count=6)
        self.events: list[EngineEvent] = []
        self.battery_changes: list[bool] = []
        self.bindings: list[GaugeBinding] = DEFAULT_REGISTRY.bindings(layout)
        self.identification = IdentificationWorkflow(model_names={"8E9C": "BMW 320i (F30)"})
        self.dtc = DtcWorkflow(EngineConfig(), descriptions={"4a1b2c": "Boost pressure too low"})
        self.battery = BatterySaveMonitor(threshold=battery_threshold)
        self.router = ResponseRouter(
            self.store,
            bindings=lambda: self.bindings,
            identification=self.identification,
            dtc=self.dtc,
            battery=self.battery,
            emit=self.events.append,
            on_battery_save=self.battery_changes.append,
        )

    def set_layout(self, layout: DashboardLayout) -> None:
        self.bindings = DEFAULT_REGISTRY.bindings(layout)

    def feed(self, frame: bytes) -> RouteOutcome:
        return self.router.handle(decode_response(frame))


def _layout(left: str, left_sub: str | None = None, right: str = "timing_all", right_sub: str | None = None):
    return DashboardLayout(
        left_gauge=GaugeAssignment(main_param_id=left, sub_param_id=left_sub),
        right_gauge=GaugeAssignment(main_param_id=right, sub_param_id=right_sub),
    )


def test_gauge_value_and_peak_are_tracked() -> None:
    harness = _Harness(_layout("oil_temp"))

    assert harness.feed(encode_data_response(0xF45C, b"\x78")) is RouteOutcome.GAUGE
    harness.feed(encode_data_response(0xF45C, b"\x6e"))

    reading = harness.store.reading(GaugeSlot.LEFT)
    assert reading.value == 70.0
    assert reading.peak == 80.0
    last = harness.events[-1]
    assert isinstance(last, ValueUpdated)
    assert last.parameter_id == "oil_temp"
    assert last.peak == 80.0


def test_secondary_readout_has_no_peak() -> None:
    harness = _Harness(_layout("boost", "iat"))

    harness.feed(encode_data_response(0xF40F, b"\x41"))

    reading = harness.store.reading(GaugeSlot.LEFT, GaugeRole.SECONDARY)
    assert reading.value == 25.0
    assert reading.peak is None


def test_duplicate_assignment_first_match_wins() -> None:
    harness = _Harness(_layout("coolant", right="coolant"))

    harness.feed(encode_data_response(0xF405, b"\x82"))

    assert harness.store.reading(GaugeSlot.LEFT).value == 90.0
    assert harness.store.reading(GaugeSlot.RIGHT).value is None
    assert len([e for e in harness.events if isinstance(e, ValueUpdated)]) == 1


def test_response_from_previous_layout_is_discarded() -> None:
    harness = _Harness(_layout("oil_temp"))
    harness.set_layout(_layout("boost"))

    outcome = harness.feed(encode_data_response(0xF45C, b"\x78"))

    assert outcome is RouteOutcome.DROPPED
    assert harness.store.reading(GaugeSlot.LEFT).value is None
    assert harness.events == []


def test_short_payload_is_no_update() -> None:
    harness = _Harness(_layout("boost"))

    frame = encode_data_response(0xD906, b"\x04")

    assert harness.feed(frame) is RouteOutcome.DECODE_FAILED
    assert harness.store.reading(GaugeSlot.LEFT).value is None


def test_cylinder_correction_updates_worst_tracker() -> None:
    harness = _Harness(_layout("boost"))

    harness.feed(encode_data_response(0xD011, bytes([120])))
    harness.feed(encode_data_response(0xD013, bytes([110])))
    harness.feed(encode_data_response(0xD012, bytes([125])))

    assert harness.store.corrections[:3] == (-0.8, -0.3, -1.8)
    assert harness.store.worst_correction == (-1.8, 3)
    event = harness.events[-1]
    assert isinstance(event, CylinderCorrectionUpdated)
    assert event.cylinder == 2
    assert event.worst_cylinder == 3


def test_correction_beyond_cylinder_count_is_dropped() -> None:
    harness = _Harness(_layout("boost"))
    harness.store.resize_cylinders(4)

    outcome = harness.feed(encode_data_response(0xD016, bytes([100])))

    assert outcome is RouteOutcome.DROPPED
    assert harness.store.worst_correction == (0.0, 0)


def test_identification_only_while_pending() -> None:
    harness = _Harness(_layout("boost"))
    vin_frame = encode_data_response(DID_VIN, b"WBA8E9C50GK123456")

    assert harness.feed(vin_frame) is RouteOutcome.DROPPED

    harness.identification.start()
    assert harness.feed(vin_frame) is RouteOutcome.IDENTIFICATION

    identity = harness.store.identity
    assert identity.vin == "WBA8E9C50GK123456"
    assert identity.manufacturer == "BMW"
    assert identity.model == "BMW 320i (F30)"
    assert identity.cylinder_count == 4
    assert harness.store.cylinder_count == 4
    assert isinstance(harness.events[-1], VehicleIdentityUpdated)


def test_identification_fields_accumulate() -> None:
    harness = _Harness(_layout("boost"))
    harness.identification.start()

    harness.feed(encode_data_response(DID_VIN, b"WMWXR31090TL12345"))
    harness.feed(encode_data_response(DID_MILEAGE, bytes([0x01, 0xE2, 0x40])))

    identity = harness.store.identity
    assert identity.manufacturer == "MINI"
    assert identity.model == "BMW (Code: XR31)"
    assert identity.mileage_km == 123_456


def test_identity_debug_log_masks_the_vin(caplog: pytest.LogCaptureFixture) -> None:
    harness = _Harness(_layout("boost"))
    harness.identification.start()

    with caplog.at_level(logging.DEBUG, logger="pybimmerdash._router"):
        harness.feed(encode_data_response(DID_VIN, b"WBA8E9C50GK123456"))

    assert "WBA8E9C**********" in caplog.text
    assert "WBA8E9C50GK123456" not in caplog.text


def test_rpm_feeds_battery_save_detection() -> None:
    harness = _Harness(_layout("boost"), battery_threshold=2)
    zero = encode_data_response(DID_RPM, b"\x00\x00")

    assert harness.feed(zero) is RouteOutcome.RPM
    harness.feed(zero)
    assert harness.battery_changes == [True]

    harness.feed(encode_data_response(DID_RPM, b"\x20\x03"))
    assert harness.battery_changes == [True, False]


def test_rpm_gauge_still_receives_value() -> None:
    harness = _Harness(_layout("rpm"))

    assert harness.feed(encode_data_response(DID_RPM, b"\x20\x03")) is RouteOutcome.GAUGE
    assert harness.store.reading(GaugeSlot.LEFT).value == 800.0
    assert harness.battery.zero_samples == 0


def test_dtc_list_replaces_store_and_adds_descriptions() -> None:
    harness = _Harness(_layout("boost"))

    assert harness.feed(encode_dtc_response(["4a1b2c", "00ff10"])) is RouteOutcome.DTC_LIST

    assert [r.code for r in harness.store.dtcs] == ["4a1b2c", "00ff10"]
    assert harness.store.dtcs[0].description == "Boost pressure too low"
    assert harness.store.dtcs[1].description is None
    assert isinstance(harness.events[-1], DtcListUpdated)


def test_session_and_negative_frames_do_not_touch_state() -> None:
    harness = _Harness(_layout("boost"))

    assert harness.feed(encode_clear_response()) is RouteOutcome.DTC_CLEARED
    assert harness.feed(encode_negative_response(0x22, 0x31)) is RouteOutcome.DROPPED
    assert harness.feed(b"\x02\xfd") is RouteOutcome.DROPPED
    assert harness.events == []
