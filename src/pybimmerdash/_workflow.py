"""Vehicle identification and DTC request/response workflows."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from pybimmerdash._codec import (
    decode_flash_cycles,
    decode_mileage,
    decode_oil_service,
    decode_production_date,
    decode_vin,
    encode_clear_dtc,
    encode_read_dtc,
    encode_read_request,
)
from pybimmerdash._constants import (
    DID_FLASH_CYCLES,
    DID_MILEAGE,
    DID_OIL_SERVICE,
    DID_PRODUCTION_DATE,
    DID_VIN,
    format_did,
)
from pybimmerdash._redact import redact_vin
from pybimmerdash.config import EngineConfig
from pybimmerdash.exceptions import DashDecodeError, DashTransportError
from pybimmerdash.models.dtc import DtcRecord
from pybimmerdash.models.results import DtcResult
from pybimmerdash.models.vehicle import VehicleIdentity

_logger = logging.getLogger(__name__)

Sender = Callable[[bytes], Awaitable[None]]

#: Identification identifiers, in request order.
IDENTIFICATION_DIDS: tuple[int, ...] = (
    DID_VIN,
    DID_PRODUCTION_DATE,
    DID_MILEAGE,
    DID_FLASH_CYCLES,
    DID_OIL_SERVICE,
)

_WMI_MANUFACTURERS: dict[str, str] = {
    "WBA": "BMW",
    "WBS": "BMW",
    "WBY": "BMW",
    "WBX": "BMW",
    "WBW": "BMW",
    "5UX": "BMW",
    "5YM": "BMW",
    "WMW": "MINI",
}

_FOUR_CYLINDER_MODELS = re.compile(r"120i|125i|135i|230i|320i|330i|420i|430i|MINI")


# ------------------------------------------------------------------
# VIN derivations
# ------------------------------------------------------------------


def manufacturer_for_vin(vin: str) -> str:
    return _WMI_MANUFACTURERS.get(vin[:3].upper(), "Unknown")


def cylinders_for_model(model: str) -> int:
    return 4 if _FOUR_CYLINDER_MODELS.search(model) else 6


def describe_vin(vin: str, model_names: Mapping[str, str]) -> dict[str, Any]:
    """Fields derived from a VIN: manufacturer, model code/name, cylinders.

    The model code is VIN characters 4-7. Unknown codes fall back to
    ``"BMW (Code: XXXX)"``. VINs too short to carry a model code only
    yield the manufacturer.
    """
    fields: dict[str, Any] = {"vin": vin, "manufacturer": manufacturer_for_vin(vin)}
    if len(vin) < 7:
        return fields
    model_code = vin[3:7]
    model = model_names.get(model_code) or f"BMW (Code: {model_code})"
    fields.update(model_code=model_code, model=model, cylinder_count=cylinders_for_model(model))
    return fields


# ------------------------------------------------------------------
# Identification
# ------------------------------------------------------------------


class IdentificationWorkflow:
    """Fire-and-forget identification requests issued after connect.

    Responses are only accepted while their identifier is pending. The
    pending set is emptied when the identification window expires, so a
    field that never answered keeps its previous value.
    """

    def __init__(self, *, model_names: Mapping[str, str] | None = None) -> None:
        self._model_names: Mapping[str, str] = model_names or {}
        self._pending: set[int] = set()

    @property
    def pending(self) -> frozenset[int]:
        return frozenset(self._pending)

    def is_pending(self, did: int) -> bool:
        return did in self._pending

    def start(self) -> list[bytes]:
        """Mark all identification identifiers pending; return the request frames."""
        self._pending = set(IDENTIFICATION_DIDS)
        return [encode_read_request(did) for did in IDENTIFICATION_DIDS]

    def expire(self) -> frozenset[int]:
        """Stop accepting responses. Returns the identifiers that never answered."""
        unanswered = frozenset(self._pending)
        self._pending.clear()
        if unanswered:
            _logger.debug("Identification unanswered: %s", ", ".join(format_did(d) for d in sorted(unanswered)))
        return unanswered

    def handle(self, did: int, payload: bytes, identity: VehicleIdentity) -> VehicleIdentity | None:
        """Apply one response to *identity*.

        Returns the updated identity, or ``None`` when *did* is not pending
        or the payload could not be decoded.
        """
        if did not in self._pending:
            return None
        self._pending.discard(did)
        try:
            update = self._decode(did, payload)
        except DashDecodeError as exc:
            _logger.debug("Identification %s not decoded: %s", format_did(did), exc)
            return None
        return identity.model_copy(update=update)

    def _decode(self, did: int, payload: bytes) -> dict[str, Any]:
        if did == DID_VIN:
            vin = decode_vin(payload)
            _logger.debug("VIN received: %s", redact_vin(vin))
            return describe_vin(vin, self._model_names)
        if did == DID_PRODUCTION_DATE:
            return {"production_date": decode_production_date(payload)}
        if did == DID_MILEAGE:
            return {"mileage_km": decode_mileage(payload)}
        if did == DID_FLASH_CYCLES:
            return {"flash_cycles": decode_flash_cycles(payload)}
        if did == DID_OIL_SERVICE:
            due_km, due_date = decode_oil_service(payload)
            return {"oil_service_due_km": due_km, "oil_service_due_date": due_date}
        raise DashDecodeError(f"not an identification identifier: {format_did(did)}", did=did)


# ------------------------------------------------------------------
# Diagnostic trouble codes
# ------------------------------------------------------------------


class DtcWorkflow:
    """DTC read and clear exchanges with a busy flag per operation.

    A read waits for the next DTC list (or times out); a clear waits for a
    positive clear response or the settle delay, whichever comes first, and
    then reports success. While an operation is outstanding a second call of
    the same kind returns immediately without sending anything.
    """

    def __init__(self, config: EngineConfig, *, descriptions: Mapping[str, str] | None = None) -> None:
        self._config = config
        self._descriptions: Mapping[str, str] = descriptions or {}
        self._read_future: asyncio.Future[tuple[str, ...]] | None = None
        self._clear_future: asyncio.Future[None] | None = None
        self._abort_reason = "connection closed"

    @property
    def reading(self) -> bool:
        return self._read_future is not None

    @property
    def clearing(self) -> bool:
        return self._clear_future is not None

    def describe(self, code: str) -> str | None:
        return self._descriptions.get(code.strip().lower())

    def records(self, codes: Iterable[str]) -> tuple[DtcRecord, ...]:
        return tuple(DtcRecord(code=code, description=self.describe(code)) for code in codes)

    async def read(self, send: Sender) -> DtcResult:
        if self._read_future is not None:
            return DtcResult(ok=False, message="DTC read already in progress")
        future: asyncio.Future[tuple[str, ...]] = asyncio.get_running_loop().create_future()
        self._read_future = future
        try:
            await send(encode_read_dtc())
            codes = await asyncio.wait_for(future, timeout=self._config.dtc_response_timeout)
        except TimeoutError:
            return DtcResult(ok=False, message="No DTC response from the ECU")
        except DashTransportError as exc:
            return DtcResult(ok=False, message=f"DTC read failed: {exc}")
        except asyncio.CancelledError:
            if not self._aborted(future):
                raise
            return DtcResult(ok=False, message=f"DTC read aborted: {self._abort_reason}")
        finally:
            self._read_future = None
            future.cancel()
        records = self.records(codes)
        return DtcResult(ok=True, records=records, message=f"{len(records)} fault code(s) stored")

    async def clear(self, send: Sender) -> DtcResult:
        if self._clear_future is not None:
            return DtcResult(ok=False, message="DTC clear already in progress")
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._clear_future = future
        try:
            await send(encode_clear_dtc())
            try:
                await asyncio.wait_for(future, timeout=self._config.dtc_clear_settle)
            except TimeoutError:
                _logger.debug("No positive clear response, clearing after settle delay")
        except DashTransportError as exc:
            return DtcResult(ok=False, message=f"DTC clear failed: {exc}")
        except asyncio.CancelledError:
            if not self._aborted(future):
                raise
            return DtcResult(ok=False, message=f"DTC clear aborted: {self._abort_reason}")
        finally:
            self._clear_future = None
            future.cancel()
        return DtcResult(ok=True, message="Fault memory cleared")

    @staticmethod
    def _aborted(future: asyncio.Future[Any]) -> bool:
        """True when *future* was cancelled by :meth:`abort`, not the caller's task."""
        task = asyncio.current_task()
        return future.cancelled() and (task is None or task.cancelling() == 0)

    def handle_list(self, codes: tuple[str, ...]) -> tuple[DtcRecord, ...]:
        """Complete a pending read (if any) and return the records for *codes*."""
        future = self._read_future
        if future is not None and not future.done():
            future.set_result(codes)
        return self.records(codes)

    def handle_cleared(self) -> None:
        future = self._clear_future
        if future is not None and not future.done():
            future.set_result(None)

    def abort(self, reason: str = "connection closed") -> None:
        """Cancel outstanding waits; the callers get an unsuccessful result."""
        self._abort_reason = reason
        for future in (self._read_future, self._clear_future):
            if future is not None:
                future.cancel()
