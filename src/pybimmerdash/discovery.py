"""Adapter discovery (UDP broadcast) and the routing-activation probe."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pybimmerdash._codec import encode_routing_activation, encode_vehicle_identification_request
from pybimmerdash._constants import (
    DISCOVERY_BROADCAST_ADDRESS,
    DOIP_HEADER_LENGTH,
    DOIP_PORT,
    ROUTING_ACTIVATION_RESPONSE_PREFIX,
)
from pybimmerdash._redact import frame_for_log
from pybimmerdash._transport import TcpTransport
from pybimmerdash.exceptions import DashTransportError
from pybimmerdash.models.results import ConnectionTestResult

_logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 3.0


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    def __init__(self, found: asyncio.Future[str]) -> None:
        self._found = found

    def datagram_received(self, data: bytes, addr: tuple[str | Any, int]) -> None:
        if len(data) < DOIP_HEADER_LENGTH or self._found.done():
            return
        _logger.debug("Discovery reply from %s: %s", addr[0], frame_for_log(data))
        self._found.set_result(str(addr[0]))

    def error_received(self, exc: Exception) -> None:
        _logger.debug("Discovery socket error: %s", exc)


async def discover_adapter(
    *,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    broadcast_address: str = DISCOVERY_BROADCAST_ADDRESS,
    port: int = DOIP_PORT,
) -> str | None:
    """Broadcast a vehicle identification request and return the first responder.

    Any reply of at least one DoIP header counts. Returns ``None`` when
    nothing answers within *timeout* or the broadcast cannot be sent.
    """
    loop = asyncio.get_running_loop()
    found: asyncio.Future[str] = loop.create_future()
    try:
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DiscoveryProtocol(found),
            local_addr=("0.0.0.0", 0),
            allow_broadcast=True,
        )
    except OSError as exc:
        _logger.warning("Discovery socket could not be opened: %s", exc)
        return None

    try:
        transport.sendto(encode_vehicle_identification_request(), (broadcast_address, port))
        address = await asyncio.wait_for(found, timeout=timeout)
    except TimeoutError:
        _logger.info("No adapter answered the discovery broadcast")
        return None
    except OSError as exc:
        _logger.warning("Discovery broadcast failed: %s", exc)
        return None
    finally:
        transport.close()

    _logger.info("Adapter found at %s", address)
    return address


async def probe_adapter(
    host: str,
    port: int = DOIP_PORT,
    *,
    connect_timeout: float = 3.0,
    response_timeout: float = 1.0,
) -> ConnectionTestResult:
    """Open a short-lived session, send routing activation, await the response.

    Independent of any running engine session. Never raises for network
    failures; the outcome is reported in the result.
    """
    try:
        transport = await TcpTransport.open(host, port, timeout=connect_timeout)
    except DashTransportError as exc:
        return ConnectionTestResult(ok=False, host=host, port=port, message=str(exc))

    try:
        await transport.send(encode_routing_activation())
        frame = await asyncio.wait_for(_first_activation_response(transport), timeout=response_timeout)
    except TimeoutError:
        return ConnectionTestResult(ok=False, host=host, port=port, message="No routing activation response")
    except DashTransportError as exc:
        return ConnectionTestResult(ok=False, host=host, port=port, message=str(exc))
    finally:
        await transport.close()

    if frame is None:
        return ConnectionTestResult(ok=False, host=host, port=port, message="Adapter closed the connection")
    return ConnectionTestResult(
        ok=True,
        host=host,
        port=port,
        message="Routing activation confirmed",
        response_hex=frame.hex(),
    )


async def _first_activation_response(transport: TcpTransport) -> bytes | None:
    async for frame in transport.frames():
        if frame.startswith(ROUTING_ACTIVATION_RESPONSE_PREFIX):
            return frame
    return None
