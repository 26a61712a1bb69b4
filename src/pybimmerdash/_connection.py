"""Connection lifecycle: connect, keep-alive, failure detection, reconnect.

Every connect starts a new epoch. Tasks started for a connection (reader,
keep-alive, polling, identification) are registered under that epoch and
cancelled together when it ends. Loops re-check the epoch after every await,
so a task that survives cancellation for one more step cannot act on the
next connection.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from pybimmerdash._codec import (
    ResponseEnvelope,
    ResponseKind,
    decode_response,
    encode_keep_alive,
    encode_routing_activation,
)
from pybimmerdash._redact import frame_for_log
from pybimmerdash._transport import TcpTransport, Transport
from pybimmerdash.config import EngineConfig
from pybimmerdash.exceptions import ConnectionLost, ConnectRefused, ConnectTimeout, DashTransportError
from pybimmerdash.models.connection import ConnectionState

_logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, int, float], Awaitable[Transport]]
StateListener = Callable[[ConnectionState, ConnectionState, str], None]


class ConnectionManager:
    """Owns the adapter session and the connection state machine.

    ``Disconnected -> Connecting -> Connected | Failed``;
    ``Connected -> Reconnecting -> Connecting`` after repeated keep-alive
    failures; any state goes to ``Disconnected`` on an explicit disconnect
    or when the adapter closes the socket.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        on_response: Callable[[ResponseEnvelope], object],
        on_state: StateListener | None = None,
        on_connected: Callable[[int], None] | None = None,
        on_teardown: Callable[[], None] | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config
        self._on_response = on_response
        self._on_state = on_state
        self._on_connected = on_connected
        self._on_teardown = on_teardown
        self._transport_factory = transport_factory or self._open_tcp

        self._state = ConnectionState.DISCONNECTED
        self._epoch = 0
        self._transport: Transport | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._activation: asyncio.Future[bytes] | None = None
        self._keep_alive_failures = 0
        self._host = config.host
        self._port = config.port

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_connected(self) -> bool:
        return self._state.is_online and self._transport is not None

    @property
    def keep_alive_failures(self) -> int:
        return self._keep_alive_failures

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # State and tasks
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState, reason: str = "") -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        _logger.info("Connection state %s -> %s%s", previous, state, f" ({reason})" if reason else "")
        if self._on_state is None:
            return
        try:
            self._on_state(previous, state, reason)
        except Exception:
            _logger.debug("Connection state listener failed", exc_info=True)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Run *coro* as a task of the current epoch."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.debug("Connection task %s failed", task.get_name(), exc_info=exc)

    def _teardown(self) -> Transport | None:
        """End the current epoch: cancel its tasks and detach the transport.

        Runs synchronously so no task of the old epoch gets another turn on
        the event loop before the transport is gone. The calling task (if it
        belongs to the epoch) is left running and must return on its own.
        """
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()
        self._epoch += 1
        self._keep_alive_failures = 0
        if self._activation is not None and not self._activation.done():
            self._activation.cancel()
        self._activation = None
        transport, self._transport = self._transport, None
        if self._on_teardown is not None:
            try:
                self._on_teardown()
            except Exception:
                _logger.debug("Teardown listener failed", exc_info=True)
        return transport

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def _open_tcp(self, host: str, port: int, timeout: float) -> Transport:
        return await TcpTransport.open(host, port, timeout=timeout, send_timeout=self._config.send_timeout)

    async def connect(self, host: str | None = None, port: int | None = None, timeout: float | None = None) -> None:
        """Open a session and send routing activation.

        On failure the state becomes ``Failed`` and :class:`ConnectTimeout`
        or :class:`ConnectRefused` is raised.
        """
        self._cancel_reconnect()
        await self._establish(host, port, timeout, failure_state=ConnectionState.FAILED)

    async def _establish(
        self,
        host: str | None,
        port: int | None,
        timeout: float | None,
        *,
        failure_state: ConnectionState,
    ) -> None:
        if self._transport is not None:
            stale = self._teardown()
            if stale is not None:
                await stale.close()

        self._host = host or self._host
        self._port = port or self._port
        self._set_state(ConnectionState.CONNECTING, f"{self._host}:{self._port}")
        try:
            transport = await self._transport_factory(
                self._host, self._port, self._config.connect_timeout if timeout is None else timeout
            )
        except DashTransportError as exc:
            _logger.warning("Connect to %s:%d failed: %s", self._host, self._port, exc)
            self._set_state(failure_state, str(exc))
            raise
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED, "connect cancelled")
            raise

        self._epoch += 1
        epoch = self._epoch
        self._transport = transport
        self._keep_alive_failures = 0
        if self._config.require_routing_activation:
            self._activation = asyncio.get_running_loop().create_future()
        self.spawn(self._read_loop(epoch, transport), name=f"dash-reader-{epoch}")

        try:
            await self.send(encode_routing_activation(), epoch=epoch)
            if self._activation is not None:
                await asyncio.wait_for(self._activation, timeout=self._config.activation_timeout)
            if self._epoch != epoch:
                raise ConnectionLost("session closed during activation", host=self._host, port=self._port)
        except (DashTransportError, TimeoutError, asyncio.CancelledError) as exc:
            if isinstance(exc, asyncio.CancelledError) and self._epoch == epoch:
                await self._abandon_establish("connect cancelled")
                raise
            await self._fail_establish(epoch, failure_state, exc)

        self._activation = None
        self._set_state(ConnectionState.CONNECTED, f"{self._host}:{self._port}")
        self.spawn(self._keep_alive_loop(epoch), name=f"dash-keepalive-{epoch}")
        if self._on_connected is not None:
            self._on_connected(epoch)

    async def _abandon_establish(self, reason: str) -> None:
        _logger.info("Connect to %s:%d abandoned: %s", self._host, self._port, reason)
        stale = self._teardown()
        if stale is not None:
            await stale.close()
        self._set_state(ConnectionState.DISCONNECTED, reason)

    async def _fail_establish(self, epoch: int, failure_state: ConnectionState, exc: BaseException) -> None:
        if isinstance(exc, TimeoutError):
            error: DashTransportError = ConnectTimeout(
                "No routing activation response", host=self._host, port=self._port
            )
        elif isinstance(exc, DashTransportError) and not isinstance(exc, ConnectionLost):
            error = exc
        else:
            error = ConnectRefused(
                f"Adapter closed the session during activation: {exc}", host=self._host, port=self._port
            )
        if self._epoch == epoch:
            stale = self._teardown()
            if stale is not None:
                await stale.close()
        _logger.warning("Connect to %s:%d failed: %s", self._host, self._port, error)
        self._set_state(failure_state, str(error))
        raise error from exc

    async def disconnect(self, reason: str = "disconnect requested") -> None:
        """Cancel all tasks, close the transport, go ``Disconnected``. Idempotent."""
        self._cancel_reconnect()
        transport = self._teardown()
        if transport is not None:
            await transport.close()
        self._set_state(ConnectionState.DISCONNECTED, reason)

    def set_battery_saving(self, active: bool) -> None:
        if active and self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.BATTERY_SAVING, "engine off")
        elif not active and self._state is ConnectionState.BATTERY_SAVING:
            self._set_state(ConnectionState.CONNECTED, "engine running")

    # ------------------------------------------------------------------
    # Send / receive
    # ------------------------------------------------------------------

    async def send(self, frame: bytes, *, epoch: int | None = None) -> None:
        """Send one frame; with *epoch*, only if that epoch is still current."""
        transport = self._transport
        if transport is None or (epoch is not None and epoch != self._epoch):
            raise ConnectionLost("not connected", host=self._host, port=self._port)
        if self._config.frame_trace_enabled:
            _logger.debug("TX %s", frame_for_log(frame))
        await transport.send(frame)

    def _dispatch(self, frame: bytes) -> None:
        if self._config.frame_trace_enabled:
            _logger.debug("RX %s", frame_for_log(frame))
        envelope = decode_response(frame)
        if envelope.kind is ResponseKind.ROUTING_ACTIVATION:
            _logger.debug("Routing activation response: %s", frame_for_log(envelope.payload))
            if self._activation is not None and not self._activation.done():
                self._activation.set_result(envelope.payload)
        try:
            self._on_response(envelope)
        except Exception:
            _logger.debug("Response handler failed for %s", frame_for_log(frame), exc_info=True)

    async def _read_loop(self, epoch: int, transport: Transport) -> None:
        reason = "connection closed by adapter"
        try:
            async for frame in transport.frames():
                if epoch != self._epoch:
                    return
                self._dispatch(frame)
        except DashTransportError as exc:
            reason = str(exc)
        if epoch != self._epoch:
            return
        _logger.info("Session to %s:%d ended: %s", self._host, self._port, reason)
        stale = self._teardown()
        if stale is not None:
            await stale.close()
        self._set_state(ConnectionState.DISCONNECTED, reason)

    # ------------------------------------------------------------------
    # Keep-alive / reconnect
    # ------------------------------------------------------------------

    async def _keep_alive_loop(self, epoch: int) -> None:
        while True:
            await asyncio.sleep(self._config.keep_alive_interval)
            if epoch != self._epoch:
                return
            if await self.send_keep_alive(epoch):
                return

    async def send_keep_alive(self, epoch: int | None = None) -> bool:
        """Send one keep-alive frame.

        Returns ``True`` when the session is gone: either this failure
        reached the configured limit and tore it down, or the epoch ended.
        """
        epoch = self._epoch if epoch is None else epoch
        try:
            await self.send(encode_keep_alive(), epoch=epoch)
        except DashTransportError as exc:
            if epoch != self._epoch:
                return True
            self._keep_alive_failures += 1
            _logger.debug(
                "Keep-alive failed (%d/%d): %s",
                self._keep_alive_failures,
                self._config.keep_alive_max_failures,
                exc,
            )
            if self._keep_alive_failures >= self._config.keep_alive_max_failures:
                await self._on_keep_alive_exhausted()
                return True
            return False
        self._keep_alive_failures = 0
        return False

    async def _on_keep_alive_exhausted(self) -> None:
        _logger.warning(
            "Keep-alive failed %d times, dropping session to %s:%d",
            self._config.keep_alive_max_failures,
            self._host,
            self._port,
        )
        transport = self._teardown()
        if self._config.auto_reconnect:
            self._set_state(ConnectionState.RECONNECTING, "keep-alive failed")
            self.schedule_reconnect()
        else:
            self._set_state(ConnectionState.DISCONNECTED, "keep-alive failed")
        if transport is not None:
            await transport.close()

    def schedule_reconnect(self, delay: float | None = None) -> bool:
        """Schedule a single reconnect attempt. Returns ``False`` if one is already pending."""
        if self.reconnect_pending:
            _logger.debug("Reconnect already pending")
            return False
        delay = self._config.reconnect_delay if delay is None else delay
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay), name="dash-reconnect"
        )
        return True

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            _logger.info("Reconnecting to %s:%d", self._host, self._port)
            try:
                await self._establish(None, None, None, failure_state=ConnectionState.DISCONNECTED)
            except DashTransportError as exc:
                _logger.info("Reconnect to %s:%d failed: %s", self._host, self._port, exc)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is None or task is asyncio.current_task():
            return
        self._reconnect_task = None
        if not task.done():
            task.cancel()
