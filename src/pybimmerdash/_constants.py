"""Internal protocol constants shared across the library."""

DEFAULT_ADAPTER_HOST = "192.168.16.103"
DOIP_PORT = 13400
DISCOVERY_BROADCAST_ADDRESS = "255.255.255.255"

# ------------------------------------------------------------------
# DoIP framing
# ------------------------------------------------------------------

DOIP_HEADER_LENGTH = 8
DOIP_VERSION_PREFIX = bytes((0x02, 0xFD))

#: Diagnostic-message header up to (and excluding) the UDS service byte.
DIAGNOSTIC_HEADER = bytes.fromhex("02FD8001000000070E0010F103")

DIAGNOSTIC_MESSAGE_TYPE = bytes((0x80, 0x01))

#: Address bytes between the DoIP header and the service byte of an ECU response.
RESPONSE_ADDRESSES = bytes.fromhex("10F10E0003")

ROUTING_ACTIVATION_REQUEST = bytes.fromhex("02FD00010000000700000000000000")
ROUTING_ACTIVATION_RESPONSE_PREFIX = bytes.fromhex("02FD8002")
ROUTING_ACTIVATION_RESPONSE = bytes.fromhex("02FD8002000000090E0000101000000000")
KEEP_ALIVE_REQUEST = bytes.fromhex("02FD000700000000")
KEEP_ALIVE_RESPONSE_PREFIX = bytes.fromhex("02FD0008")
KEEP_ALIVE_RESPONSE = bytes.fromhex("02FD0008000000020E00")
VEHICLE_IDENTIFICATION_REQUEST = bytes.fromhex("02FD000100000000")

READ_DTC_REQUEST = bytes.fromhex("02FD8001000000040E0010F103" "19020C")
CLEAR_DTC_REQUEST = bytes.fromhex("02FD8001000000040E0010F103" "14FFFFFF")

# ------------------------------------------------------------------
# UDS services
# ------------------------------------------------------------------

SID_READ_DATA_BY_IDENTIFIER = 0x22
SID_READ_DTC_INFORMATION = 0x19
SID_CLEAR_DIAGNOSTIC_INFORMATION = 0x14
POSITIVE_RESPONSE_OFFSET = 0x40
NEGATIVE_RESPONSE_SID = 0x7F

RSP_READ_DATA_BY_IDENTIFIER = SID_READ_DATA_BY_IDENTIFIER + POSITIVE_RESPONSE_OFFSET  # 0x62
RSP_READ_DTC_INFORMATION = SID_READ_DTC_INFORMATION + POSITIVE_RESPONSE_OFFSET  # 0x59
RSP_CLEAR_DIAGNOSTIC_INFORMATION = SID_CLEAR_DIAGNOSTIC_INFORMATION + POSITIVE_RESPONSE_OFFSET  # 0x54

SERVICE_OFFSET = 13
DID_OFFSET = 14
PAYLOAD_OFFSET = 16
MIN_RESPONSE_LENGTH = 17
MIN_NEGATIVE_RESPONSE_LENGTH = 16
DTC_RECORD_LENGTH = 3

# ------------------------------------------------------------------
# Data identifiers
# ------------------------------------------------------------------

DID_VIN = 0xF190
DID_PRODUCTION_DATE = 0xF18B
DID_MILEAGE = 0x1701
DID_FLASH_CYCLES = 0x2502
DID_OIL_SERVICE = 0x1770
DID_RPM = 0xF40C

DID_OIL_TEMP = 0xF45C
DID_COOLANT = 0xF405
DID_INTAKE_AIR = 0xF40F
DID_GEARBOX_TEMP = 0xF460

#: Slow-changing (thermal) identifiers, polled once per thermal cadence.
THERMAL_DIDS: frozenset[int] = frozenset({DID_OIL_TEMP, DID_COOLANT, DID_INTAKE_AIR, DID_GEARBOX_TEMP})

#: Per-cylinder timing correction identifiers are ``D011 + index``.
DID_CYLINDER_TIMING_BASE = 0xD011
MAX_CYLINDERS = 8

VIN_LENGTH = 17

# ------------------------------------------------------------------
# Polling cadence
# ------------------------------------------------------------------

BASE_TICK_SECONDS = 0.1
THERMAL_EVERY_TICKS = 10
BATTERY_SAVE_EVERY_TICKS = 50
BATTERY_SAVE_ZERO_RPM_SAMPLES = 300
KEEP_ALIVE_MAX_FAILURES = 3
DEFAULT_CYLINDER_COUNT = 6
SUPPORTED_CYLINDER_COUNTS: tuple[int, ...] = (4, 6)


def format_did(did: int) -> str:
    """Render a data identifier as four uppercase hex digits (``F45C``)."""
    return f"{did & 0xFFFF:04X}"


def parse_did(value: str) -> int:
    """Parse a four hex digit data identifier.

    Raises :class:`ValueError` for anything that is not exactly two bytes of hex.
    """
    text = value.strip()
    if len(text) != 4:
        raise ValueError(f"data identifier must be 4 hex digits, got {value!r}")
    return int(text, 16)
