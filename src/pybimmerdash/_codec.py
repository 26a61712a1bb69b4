"""DoIP frame and UDS payload codec.

Pure functions only: nothing in here touches sockets or timers. Decoding a
received frame never raises; garbage yields a ``MALFORMED`` or
``UNRECOGNIZED`` envelope. Payload value decoders raise
:class:`~pybimmerdash.exceptions.DashDecodeError` when the payload is too
short, which callers treat as "no update".
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from pybimmerdash._constants import (
    CLEAR_DTC_REQUEST,
    DIAGNOSTIC_HEADER,
    DIAGNOSTIC_MESSAGE_TYPE,
    DID_OFFSET,
    DOIP_HEADER_LENGTH,
    DOIP_VERSION_PREFIX,
    DTC_RECORD_LENGTH,
    KEEP_ALIVE_REQUEST,
    KEEP_ALIVE_RESPONSE_PREFIX,
    MIN_NEGATIVE_RESPONSE_LENGTH,
    MIN_RESPONSE_LENGTH,
    NEGATIVE_RESPONSE_SID,
    PAYLOAD_OFFSET,
    READ_DTC_REQUEST,
    RESPONSE_ADDRESSES,
    ROUTING_ACTIVATION_REQUEST,
    ROUTING_ACTIVATION_RESPONSE_PREFIX,
    RSP_CLEAR_DIAGNOSTIC_INFORMATION,
    RSP_READ_DATA_BY_IDENTIFIER,
    RSP_READ_DTC_INFORMATION,
    SERVICE_OFFSET,
    SID_READ_DATA_BY_IDENTIFIER,
    VEHICLE_IDENTIFICATION_REQUEST,
    VIN_LENGTH,
    format_did,
)
from pybimmerdash.exceptions import DashDecodeError, DashProtocolError
from pybimmerdash._enum import DashEnum


class ResponseKind(StrEnum):
    DATA = "data"
    DTC_LIST = "dtc_list"
    DTC_CLEARED = "dtc_cleared"
    ROUTING_ACTIVATION = "routing_activation"
    KEEP_ALIVE_ACK = "keep_alive_ack"
    NEGATIVE = "negative"
    UNRECOGNIZED = "unrecognized"
    MALFORMED = "malformed"


class NegativeResponseCode(DashEnum):
    """UDS negative response codes (ISO 14229-1, subset)."""

    UNKNOWN = -1
    GENERAL_REJECT = 0x10
    SERVICE_NOT_SUPPORTED = 0x11
    SUB_FUNCTION_NOT_SUPPORTED = 0x12
    INCORRECT_MESSAGE_LENGTH = 0x13
    BUSY_REPEAT_REQUEST = 0x21
    CONDITIONS_NOT_CORRECT = 0x22
    REQUEST_OUT_OF_RANGE = 0x31
    SECURITY_ACCESS_DENIED = 0x33
    RESPONSE_PENDING = 0x78


@dataclass(frozen=True)
class ResponseEnvelope:
    """One decoded inbound frame."""

    kind: ResponseKind
    service: int | None = None
    did: int | None = None
    payload: bytes = b""
    dtc_codes: tuple[str, ...] = ()
    requested_service: int | None = None
    nrc: NegativeResponseCode | None = None
    reason: str = ""

    @property
    def did_hex(self) -> str:
        return format_did(self.did) if self.did is not None else ""


def _require_frame(frame: bytes, length: int, what: str) -> None:
    if len(frame) < length:
        raise DashProtocolError(f"{what} too short: {len(frame)} bytes")


# ------------------------------------------------------------------
# Encoding
# ------------------------------------------------------------------


def encode_read_request(did: int) -> bytes:
    """ReadDataByIdentifier (0x22) wrapped in a DoIP diagnostic message (16 bytes)."""
    if not 0 <= did <= 0xFFFF:
        raise ValueError(f"data identifier out of range: {did!r}")
    return DIAGNOSTIC_HEADER + bytes((SID_READ_DATA_BY_IDENTIFIER, (did >> 8) & 0xFF, did & 0xFF))


def encode_routing_activation() -> bytes:
    return ROUTING_ACTIVATION_REQUEST


def encode_keep_alive() -> bytes:
    return KEEP_ALIVE_REQUEST


def encode_read_dtc() -> bytes:
    """ReadDTCInformation, reportDTCByStatusMask, mask 0x0C."""
    return READ_DTC_REQUEST


def encode_clear_dtc() -> bytes:
    """ClearDiagnosticInformation for all groups (FF FF FF)."""
    return CLEAR_DTC_REQUEST


def encode_vehicle_identification_request() -> bytes:
    """UDP discovery broadcast payload."""
    return VEHICLE_IDENTIFICATION_REQUEST


# ------------------------------------------------------------------
# Adapter side (fake adapters and tests)
# ------------------------------------------------------------------


def encode_diagnostic_response(uds: bytes) -> bytes:
    """Wrap a UDS response so its service byte lands at the response service offset."""
    body = RESPONSE_ADDRESSES + bytes(uds)
    return DOIP_VERSION_PREFIX + DIAGNOSTIC_MESSAGE_TYPE + len(body).to_bytes(4, "big") + body


def encode_data_response(did: int, payload: bytes) -> bytes:
    return encode_diagnostic_response(bytes((RSP_READ_DATA_BY_IDENTIFIER, (did >> 8) & 0xFF, did & 0xFF)) + payload)


def encode_dtc_response(codes: Iterable[str]) -> bytes:
    """ReadDTCInformation response carrying 3-byte records (hex strings)."""
    records = b"".join(bytes.fromhex(code) for code in codes)
    return encode_diagnostic_response(bytes((RSP_READ_DTC_INFORMATION, 0x02, 0xFF)) + records)


def encode_clear_response() -> bytes:
    return encode_diagnostic_response(bytes((RSP_CLEAR_DIAGNOSTIC_INFORMATION,)))


def encode_negative_response(service: int, nrc: int) -> bytes:
    return encode_diagnostic_response(bytes((NEGATIVE_RESPONSE_SID, service, nrc)))


# ------------------------------------------------------------------
# Decoding
# ------------------------------------------------------------------


def split_frames(chunk: bytes) -> list[bytes]:
    """Split a TCP chunk that may carry several DoIP frames.

    A frame boundary is only trusted when the declared payload length fits
    the chunk and the remainder starts with another DoIP version header.
    Otherwise the rest of the chunk is returned as a single frame, so
    adapters with sloppy length fields still decode one frame per chunk.
    """
    frames: list[bytes] = []
    rest = bytes(chunk)
    while rest:
        if len(rest) < DOIP_HEADER_LENGTH:
            frames.append(rest)
            break
        declared = int.from_bytes(rest[4:8], "big")
        end = DOIP_HEADER_LENGTH + declared
        if end < len(rest) and rest[end:].startswith(DOIP_VERSION_PREFIX):
            frames.append(rest[:end])
            rest = rest[end:]
            continue
        frames.append(rest)
        break
    return frames


def _dtc_codes(data: bytes) -> tuple[str, ...]:
    usable = len(data) - len(data) % DTC_RECORD_LENGTH
    return tuple(data[i : i + DTC_RECORD_LENGTH].hex() for i in range(0, usable, DTC_RECORD_LENGTH))


def decode_response(data: bytes | bytearray | memoryview) -> ResponseEnvelope:
    """Decode one inbound frame into a :class:`ResponseEnvelope`.

    Never raises. Frames shorter than the minimum header length for their
    service are reported as ``MALFORMED``.
    """
    try:
        return _parse_frame(bytes(data))
    except (TypeError, ValueError):
        return ResponseEnvelope(kind=ResponseKind.MALFORMED, reason="not a byte sequence")
    except DashProtocolError as exc:
        return ResponseEnvelope(kind=ResponseKind.MALFORMED, reason=str(exc))


def _parse_frame(frame: bytes) -> ResponseEnvelope:
    if frame.startswith(ROUTING_ACTIVATION_RESPONSE_PREFIX):
        return ResponseEnvelope(kind=ResponseKind.ROUTING_ACTIVATION, payload=frame[DOIP_HEADER_LENGTH:])
    if frame.startswith(KEEP_ALIVE_RESPONSE_PREFIX):
        return ResponseEnvelope(kind=ResponseKind.KEEP_ALIVE_ACK)

    _require_frame(frame, SERVICE_OFFSET + 1, "frame")
    service = frame[SERVICE_OFFSET]

    if service == NEGATIVE_RESPONSE_SID:
        _require_frame(frame, MIN_NEGATIVE_RESPONSE_LENGTH, "negative response")
        return ResponseEnvelope(
            kind=ResponseKind.NEGATIVE,
            service=service,
            requested_service=frame[SERVICE_OFFSET + 1],
            nrc=NegativeResponseCode(frame[SERVICE_OFFSET + 2]),
        )

    if service == RSP_CLEAR_DIAGNOSTIC_INFORMATION:
        return ResponseEnvelope(kind=ResponseKind.DTC_CLEARED, service=service)

    _require_frame(frame, MIN_RESPONSE_LENGTH, "frame")

    if service == RSP_READ_DATA_BY_IDENTIFIER:
        did = (frame[DID_OFFSET] << 8) | frame[DID_OFFSET + 1]
        return ResponseEnvelope(
            kind=ResponseKind.DATA,
            service=service,
            did=did,
            payload=frame[PAYLOAD_OFFSET:],
        )

    if service == RSP_READ_DTC_INFORMATION:
        return ResponseEnvelope(
            kind=ResponseKind.DTC_LIST,
            service=service,
            payload=frame[PAYLOAD_OFFSET:],
            dtc_codes=_dtc_codes(frame[PAYLOAD_OFFSET:]),
        )

    return ResponseEnvelope(kind=ResponseKind.UNRECOGNIZED, service=service, reason=f"service 0x{service:02X}")


# ------------------------------------------------------------------
# Payload value decoders
# ------------------------------------------------------------------


def _require(payload: bytes, length: int, what: str) -> None:
    if len(payload) < length:
        raise DashDecodeError(f"{what} needs {length} bytes, got {len(payload)}")


def decode_temperature(payload: bytes) -> float:
    """Oil/coolant/intake/gearbox temperature in °C: ``byte[0] - 40``."""
    _require(payload, 1, "temperature")
    return float(payload[0] - 40)


def decode_boost(payload: bytes) -> float:
    """Boost pressure in bar above atmosphere, clamped to zero.

    The ECU reports absolute pressure in hPa (big-endian).
    """
    _require(payload, 2, "boost")
    hpa = (payload[0] << 8) | payload[1]
    bar = (hpa - 1013) / 1000.0
    return bar if bar > 0 else 0.0


def decode_throttle(payload: bytes) -> float:
    _require(payload, 1, "throttle")
    return float(payload[0])


def decode_timing_correction(payload: bytes) -> float:
    """Ignition timing correction in degrees; negative means retard."""
    _require(payload, 1, "timing correction")
    return (payload[0] - 128) / 10


def decode_rpm(payload: bytes) -> int:
    """Engine speed, little-endian 16 bit."""
    _require(payload, 2, "rpm")
    return (payload[1] << 8) | payload[0]


def decode_mileage(payload: bytes) -> int:
    """Odometer in km, big-endian 24 bit."""
    _require(payload, 3, "mileage")
    return int.from_bytes(payload[:3], "big")


def decode_vin(payload: bytes) -> str:
    """ASCII VIN, trimmed and truncated to 17 characters."""
    text = payload.decode("ascii", errors="ignore").strip(" \x00\xff\r\n\t")
    if not text:
        raise DashDecodeError("empty VIN payload")
    return text[:VIN_LENGTH]


def _date_from_bytes(year: int, month: int, day: int, what: str) -> dt.date:
    try:
        return dt.date(2000 + year, month, day)
    except ValueError as exc:
        raise DashDecodeError(f"{what} is not a valid date: {year:02d}-{month:02d}-{day:02d}") from exc


def decode_production_date(payload: bytes) -> dt.date:
    """Production date as ``[year - 2000, month, day]``."""
    _require(payload, 3, "production date")
    return _date_from_bytes(payload[0], payload[1], payload[2], "production date")


def decode_flash_cycles(payload: bytes) -> int:
    """ECU programming counter, big-endian 16 bit."""
    _require(payload, 2, "flash cycles")
    return int.from_bytes(payload[:2], "big")


def decode_oil_service(payload: bytes) -> tuple[int, dt.date | None]:
    """Oil service due mileage (24 bit BE km) and optional due date.

    The due date (``[year - 2000, month, day]`` at offset 3) is ``None``
    when absent or all zero.
    """
    _require(payload, 3, "oil service")
    due_km = int.from_bytes(payload[:3], "big")
    if len(payload) < 6 or not any(payload[3:6]):
        return due_km, None
    return due_km, _date_from_bytes(payload[3], payload[4], payload[5], "oil service date")
