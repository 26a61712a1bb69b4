"""TCP transport to the DoIP adapter."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from pybimmerdash._codec import split_frames
from pybimmerdash.exceptions import ConnectionLost, ConnectRefused, ConnectTimeout

_logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


class Transport(Protocol):
    """Structural transport interface used by the connection manager.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`TcpTransport`) concrete.
    """

    async def send(self, frame: bytes) -> None:
        ...

    def frames(self) -> AsyncIterator[bytes]:
        ...

    async def close(self) -> None:
        ...


class TcpTransport:
    """One TCP session to the adapter.

    Writes are serialized by a lock so concurrent senders (polling,
    keep-alive, workflows) never interleave frames on the stream.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        host: str,
        port: int,
        send_timeout: float = 1.0,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._host = host
        self._port = port
        self._send_timeout = send_timeout
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        *,
        timeout: float,
        send_timeout: float = 1.0,
    ) -> TcpTransport:
        """Connect to ``host:port``.

        Raises :class:`ConnectTimeout` when the connection is not accepted
        within *timeout* and :class:`ConnectRefused` for any other socket
        error (refused, unreachable, bad address).
        """
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        except TimeoutError as exc:
            raise ConnectTimeout(f"Connection to {host}:{port} timed out", host=host, port=port) from exc
        except OSError as exc:
            raise ConnectRefused(f"Connection to {host}:{port} failed: {exc}", host=host, port=port) from exc
        _logger.debug("TCP connected to %s:%d", host, port)
        return cls(reader, writer, host=host, port=port, send_timeout=send_timeout)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _lost(self, message: str) -> ConnectionLost:
        return ConnectionLost(message, host=self._host, port=self._port)

    async def send(self, frame: bytes) -> None:
        if self._closed:
            raise self._lost("transport is closed")
        async with self._lock:
            try:
                self._writer.write(frame)
                await asyncio.wait_for(self._writer.drain(), timeout=self._send_timeout)
            except TimeoutError as exc:
                raise self._lost("send timed out") from exc
            except (OSError, RuntimeError) as exc:
                raise self._lost(f"send failed: {exc}") from exc

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield received DoIP frames until the peer closes the stream."""
        while not self._closed:
            try:
                chunk = await self._reader.read(_READ_CHUNK)
            except OSError as exc:
                raise self._lost(f"receive failed: {exc}") from exc
            if not chunk:
                return
            for frame in split_frames(chunk):
                yield frame

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            _logger.debug("Error while closing %s:%d", self._host, self._port, exc_info=True)
