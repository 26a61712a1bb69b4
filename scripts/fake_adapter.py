#!/usr/bin/env python3
"""Simulated DoIP adapter for bench testing without a car.

Answers routing activation, keep-alive, data reads, DTC read/clear and the
discovery broadcast with plausible, slowly varying engine values.

Usage
-----
::

    python scripts/fake_adapter.py --port 13400
    python scripts/live_monitor.py --host 127.0.0.1

Options::

    --host ADDR      Listen address (default: 127.0.0.1)
    --port PORT      TCP (and UDP discovery) port (default: 13400)
    --dtc CODE       Stored fault code, 6 hex digits; repeat for several
    --engine-off     Report 0 rpm so the client enters battery saving
    --verbose, -v    Log every frame
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import sys
import time
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pybimmerdash._codec import (  # noqa: E402
    encode_clear_dtc,
    encode_clear_response,
    encode_data_response,
    encode_dtc_response,
    encode_keep_alive,
    encode_negative_response,
    encode_read_dtc,
    encode_routing_activation,
    split_frames,
)
from pybimmerdash._constants import (  # noqa: E402
    DID_COOLANT,
    DID_CYLINDER_TIMING_BASE,
    DID_FLASH_CYCLES,
    DID_GEARBOX_TEMP,
    DID_INTAKE_AIR,
    DID_MILEAGE,
    DID_OFFSET,
    DID_OIL_SERVICE,
    DID_OIL_TEMP,
    DID_PRODUCTION_DATE,
    DID_RPM,
    DID_VIN,
    DOIP_PORT,
    KEEP_ALIVE_RESPONSE,
    MAX_CYLINDERS,
    ROUTING_ACTIVATION_RESPONSE,
    SERVICE_OFFSET,
    SID_READ_DATA_BY_IDENTIFIER,
    format_did,
)
from pybimmerdash._redact import frame_for_log  # noqa: E402

_logger = logging.getLogger("fake_adapter")

_REQUEST_OUT_OF_RANGE = 0x31


class SimulatedEngine:
    """Produces payloads for each supported identifier."""

    def __init__(self, *, engine_off: bool = False, dtc_codes: list[str] | None = None) -> None:
        self.engine_off = engine_off
        self.dtc_codes = list(dtc_codes or [])
        self._started = time.monotonic()

    def _phase(self, period: float) -> float:
        return (math.sin((time.monotonic() - self._started) * 2 * math.pi / period) + 1) / 2

    def payload(self, did: int) -> bytes | None:
        if did == DID_RPM:
            rpm = 0 if self.engine_off else int(800 + 4200 * self._phase(12.0))
            return rpm.to_bytes(2, "little")
        if did == 0xD906:
            return int(1013 + 1100 * self._phase(8.0)).to_bytes(2, "big")
        if did == 0xF40E:
            return bytes([int(100 * self._phase(8.0))])
        if did == DID_OIL_TEMP:
            return bytes([40 + 95 + int(10 * self._phase(60.0))])
        if did == DID_COOLANT:
            return bytes([40 + 88 + int(6 * self._phase(45.0))])
        if did == DID_INTAKE_AIR:
            return bytes([40 + 25 + int(15 * self._phase(8.0))])
        if did == DID_GEARBOX_TEMP:
            return bytes([40 + 70])
        offset = did - DID_CYLINDER_TIMING_BASE
        if 0 <= offset < MAX_CYLINDERS:
            retard = int(20 * self._phase(5.0 + offset)) if offset == 2 else int(5 * self._phase(7.0))
            return bytes([128 - retard])
        if did == DID_VIN:
            return b"WBA8E9C50GK123456"
        if did == DID_PRODUCTION_DATE:
            return bytes([16, 4, 12])
        if did == DID_MILEAGE:
            return (123_456).to_bytes(3, "big")
        if did == DID_FLASH_CYCLES:
            return (7).to_bytes(2, "big")
        if did == DID_OIL_SERVICE:
            return (135_000).to_bytes(3, "big") + bytes([26, 9, 1])
        return None

    def reply_for(self, frame: bytes) -> bytes | None:
        if frame == encode_routing_activation():
            return ROUTING_ACTIVATION_RESPONSE
        if frame == encode_keep_alive():
            return KEEP_ALIVE_RESPONSE
        if frame == encode_read_dtc():
            return encode_dtc_response(self.dtc_codes)
        if frame == encode_clear_dtc():
            self.dtc_codes.clear()
            return encode_clear_response()
        if len(frame) > DID_OFFSET + 1 and frame[SERVICE_OFFSET] == SID_READ_DATA_BY_IDENTIFIER:
            did = int.from_bytes(frame[DID_OFFSET : DID_OFFSET + 2], "big")
            payload = self.payload(did)
            if payload is None:
                _logger.debug("No value for %s", format_did(did))
                return encode_negative_response(SID_READ_DATA_BY_IDENTIFIER, _REQUEST_OUT_OF_RANGE)
            return encode_data_response(did, payload)
        return None


class _DiscoveryResponder(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self._transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        _logger.info("Discovery request from %s", addr[0])
        if self._transport is not None:
            self._transport.sendto(ROUTING_ACTIVATION_RESPONSE, addr)


async def _serve_client(engine: SimulatedEngine, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    peer = writer.get_extra_info("peername")
    _logger.info("Client connected: %s", peer)
    try:
        while chunk := await reader.read(4096):
            for frame in split_frames(chunk):
                _logger.debug("RX %s", frame_for_log(frame))
                reply = engine.reply_for(frame)
                if reply is None:
                    continue
                _logger.debug("TX %s", frame_for_log(reply))
                writer.write(reply)
                await writer.drain()
    except ConnectionError as exc:
        _logger.info("Client %s dropped: %s", peer, exc)
    finally:
        writer.close()
    _logger.info("Client disconnected: %s", peer)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Simulated DoIP adapter for bench testing.")
    parser.add_argument("--host", default="127.0.0.1", help="Listen address")
    parser.add_argument("--port", type=int, default=DOIP_PORT, help="TCP and UDP discovery port")
    parser.add_argument("--dtc", action="append", default=[], help="Stored fault code (6 hex digits)")
    parser.add_argument("--engine-off", action="store_true", help="Report 0 rpm")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every frame")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = SimulatedEngine(engine_off=args.engine_off, dtc_codes=args.dtc)
    loop = asyncio.get_running_loop()
    discovery, _ = await loop.create_datagram_endpoint(_DiscoveryResponder, local_addr=("0.0.0.0", args.port))
    server = await asyncio.start_server(lambda r, w: _serve_client(engine, r, w), args.host, args.port)
    _logger.info("Fake adapter listening on %s:%d", args.host, args.port)
    try:
        async with server:
            await server.serve_forever()
    finally:
        discovery.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
