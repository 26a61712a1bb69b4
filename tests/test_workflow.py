from __future__ import annotations

import asyncio
import datetime as dt
import gc
import logging

import pytest

from pybimmerdash._codec import encode_clear_dtc, encode_read_dtc, encode_read_request
from pybimmerdash._constants import DID_MILEAGE, DID_OIL_SERVICE, DID_PRODUCTION_DATE, DID_VIN
from pybimmerdash._workflow import (
    IDENTIFICATION_DIDS,
    DtcWorkflow,
    IdentificationWorkflow,
    cylinders_for_model,
    describe_vin,
    manufacturer_for_vin,
)
from pybimmerdash.config import EngineConfig
from pybimmerdash.exceptions import ConnectionLost
from pybimmerdash.models.vehicle import VehicleIdentity


class _Wire:
    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.fail = False

    async def send(self, frame: bytes) -> None:
        if self.fail:
            raise ConnectionLost("send failed")
        self.sent.append(frame)


def _config(**overrides: float) -> EngineConfig:
    return EngineConfig(**{"dtc_response_timeout": 0.05, "dtc_clear_settle": 0.05, **overrides})


# ------------------------------------------------------------------
# VIN derivations
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    ("vin", "expected"),
    [("WBA8E9C50GK123456", "BMW"), ("5UXKR0C58E0H12345", "BMW"), ("WMWXR31090TL12345", "MINI"), ("JN1AZ000", "Unknown")],
)
def test_manufacturer_from_world_manufacturer_identifier(vin: str, expected: str) -> None:
    assert manufacturer_for_vin(vin) == expected


@pytest.mark.parametrize(
    ("model", "cylinders"),
    [("BMW 320i (F30)", 4), ("BMW M2 Competition", 6), ("MINI Cooper S", 4), ("BMW (Code: ZZZZ)", 6)],
)
def test_cylinder_count_from_model_name(model: str, cylinders: int) -> None:
    assert cylinders_for_model(model) == cylinders


def test_describe_vin_falls_back_to_model_code() -> None:
    fields = describe_vin("WBA1234567", {})

    assert fields["model_code"] == "1234"
    assert fields["model"] == "BMW (Code: 1234)"
    assert fields["cylinder_count"] == 6


def test_describe_short_vin_only_yields_manufacturer() -> None:
    assert describe_vin("WBA12", {}) == {"vin": "WBA12", "manufacturer": "BMW"}


# ------------------------------------------------------------------
# Identification
# ------------------------------------------------------------------


def test_identification_start_requests_all_fields_in_order() -> None:
    workflow = IdentificationWorkflow()

    frames = workflow.start()

    assert frames == [encode_read_request(did) for did in IDENTIFICATION_DIDS]
    assert workflow.pending == frozenset(IDENTIFICATION_DIDS)


def test_identification_builds_identity_incrementally() -> None:
    workflow = IdentificationWorkflow(model_names={"8E9C": "BMW 320i (F30)"})
    workflow.start()
    identity = VehicleIdentity()

    identity = workflow.handle(DID_VIN, b"WBA8E9C50GK123456", identity) or identity
    identity = workflow.handle(DID_PRODUCTION_DATE, bytes([16, 4, 12]), identity) or identity
    identity = workflow.handle(DID_MILEAGE, bytes([0x00, 0xC3, 0x50]), identity) or identity
    identity = workflow.handle(DID_OIL_SERVICE, bytes([0x01, 0x11, 0x70]), identity) or identity

    assert identity.model == "BMW 320i (F30)"
    assert identity.cylinder_count == 4
    assert identity.production_date == dt.date(2016, 4, 12)
    assert identity.mileage_km == 50_000
    assert identity.oil_service_due_km == 70_000
    assert identity.oil_service_remaining_km == 20_000
    assert identity.flash_cycles is None


def test_identification_answers_are_accepted_once() -> None:
    workflow = IdentificationWorkflow()
    workflow.start()

    assert workflow.handle(DID_MILEAGE, bytes([0, 0, 1]), VehicleIdentity()) is not None
    assert workflow.handle(DID_MILEAGE, bytes([0, 0, 2]), VehicleIdentity()) is None


def test_undecodable_identification_keeps_previous_value() -> None:
    workflow = IdentificationWorkflow()
    workflow.start()
    previous = VehicleIdentity(mileage_km=10)

    assert workflow.handle(DID_MILEAGE, b"\x01", previous) is None
    assert previous.mileage_km == 10


def test_identification_expiry_reports_unanswered_fields() -> None:
    workflow = IdentificationWorkflow()
    workflow.start()
    workflow.handle(DID_MILEAGE, bytes([0, 0, 1]), VehicleIdentity())

    unanswered = workflow.expire()

    assert DID_MILEAGE not in unanswered
    assert DID_VIN in unanswered
    assert workflow.pending == frozenset()
    assert not workflow.is_pending(DID_VIN)


# ------------------------------------------------------------------
# DTC read
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dtc_read_completes_with_described_records() -> None:
    wire = _Wire()
    workflow = DtcWorkflow(_config(dtc_response_timeout=1.0), descriptions={"4a1b2c": "Boost pressure too low"})

    task = asyncio.create_task(workflow.read(wire.send))
    await asyncio.sleep(0)
    assert workflow.reading
    workflow.handle_list(("4a1b2c",))
    result = await task

    assert result.ok
    assert wire.sent == [encode_read_dtc()]
    assert result.records[0].description == "Boost pressure too low"
    assert not workflow.reading


@pytest.mark.asyncio
async def test_dtc_read_times_out_without_response() -> None:
    workflow = DtcWorkflow(_config())

    result = await workflow.read(_Wire().send)

    assert not result.ok
    assert result.records == ()
    assert not workflow.reading


@pytest.mark.asyncio
async def test_second_dtc_read_while_pending_is_rejected() -> None:
    wire = _Wire()
    workflow = DtcWorkflow(_config(dtc_response_timeout=1.0))

    first = asyncio.create_task(workflow.read(wire.send))
    await asyncio.sleep(0)
    second = await workflow.read(wire.send)
    workflow.handle_list(())
    await first

    assert not second.ok
    assert wire.sent == [encode_read_dtc()]


@pytest.mark.asyncio
async def test_dtc_read_send_failure_is_reported() -> None:
    wire = _Wire()
    wire.fail = True
    workflow = DtcWorkflow(_config())

    result = await workflow.read(wire.send)

    assert not result.ok
    assert "failed" in result.message
    assert not workflow.reading


# ------------------------------------------------------------------
# DTC clear
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dtc_clear_completes_early_on_positive_response() -> None:
    wire = _Wire()
    workflow = DtcWorkflow(_config(dtc_clear_settle=5.0))

    task = asyncio.create_task(workflow.clear(wire.send))
    await asyncio.sleep(0)
    workflow.handle_cleared()
    result = await asyncio.wait_for(task, timeout=1.0)

    assert result.ok
    assert wire.sent == [encode_clear_dtc()]


@pytest.mark.asyncio
async def test_dtc_clear_succeeds_after_settle_delay() -> None:
    workflow = DtcWorkflow(_config())

    result = await workflow.clear(_Wire().send)

    assert result.ok
    assert not workflow.clearing


@pytest.mark.asyncio
async def test_second_clear_while_pending_is_not_sent() -> None:
    wire = _Wire()
    workflow = DtcWorkflow(_config(dtc_clear_settle=0.2))

    first = asyncio.create_task(workflow.clear(wire.send))
    await asyncio.sleep(0)
    second = await workflow.clear(wire.send)
    await first

    assert not second.ok
    assert wire.sent == [encode_clear_dtc()]


@pytest.mark.asyncio
async def test_abort_fails_outstanding_operations() -> None:
    wire = _Wire()
    workflow = DtcWorkflow(_config(dtc_response_timeout=5.0, dtc_clear_settle=5.0))

    read = asyncio.create_task(workflow.read(wire.send))
    clear = asyncio.create_task(workflow.clear(wire.send))
    await asyncio.sleep(0)
    workflow.abort("adapter gone")

    assert not (await read).ok
    assert not (await clear).ok
    assert not workflow.reading
    assert not workflow.clearing


@pytest.mark.asyncio
async def test_abort_during_failing_send_leaves_nothing_unretrieved(caplog: pytest.LogCaptureFixture) -> None:
    release = asyncio.Event()

    async def slow_failing_send(_frame: bytes) -> None:
        await release.wait()
        raise ConnectionLost("socket reset")

    workflow = DtcWorkflow(_config(dtc_response_timeout=5.0, dtc_clear_settle=5.0))

    with caplog.at_level(logging.ERROR, logger="asyncio"):
        read = asyncio.create_task(workflow.read(slow_failing_send))
        clear = asyncio.create_task(workflow.clear(slow_failing_send))
        await asyncio.sleep(0)
        workflow.abort("adapter gone")
        release.set()

        read_result, clear_result = await read, await clear
        del read, clear
        gc.collect()
        await asyncio.sleep(0)

    assert not read_result.ok
    assert not clear_result.ok
    assert not any("never retrieved" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_abort_after_send_reports_the_reason() -> None:
    workflow = DtcWorkflow(_config(dtc_response_timeout=5.0))

    read = asyncio.create_task(workflow.read(_Wire().send))
    await asyncio.sleep(0)
    workflow.abort("adapter gone")
    result = await read

    assert not result.ok
    assert "adapter gone" in result.message


@pytest.mark.asyncio
async def test_cancelling_the_caller_still_cancels_a_pending_read() -> None:
    workflow = DtcWorkflow(_config(dtc_response_timeout=5.0))

    read = asyncio.create_task(workflow.read(_Wire().send))
    await asyncio.sleep(0)
    read.cancel()

    with pytest.raises(asyncio.CancelledError):
        await read
    assert not workflow.reading
