"""High-level async client for the vehicle communication engine."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pybimmerdash._connection import ConnectionManager, TransportFactory
from pybimmerdash._router import ResponseRouter
from pybimmerdash._scheduler import BatterySaveMonitor, PollingScheduler
from pybimmerdash._workflow import DtcWorkflow, IdentificationWorkflow
from pybimmerdash.config import EngineConfig
from pybimmerdash.discovery import discover_adapter, probe_adapter
from pybimmerdash.exceptions import DashConfigError, DashTransportError
from pybimmerdash.models.connection import ConnectionState
from pybimmerdash.models.dtc import DtcRecord
from pybimmerdash.models.layout import BUILTIN_PRESETS, DEFAULT_LAYOUT, DashboardLayout, GaugeSlot
from pybimmerdash.models.results import ConnectionTestResult, DtcResult
from pybimmerdash.models.vehicle import VehicleIdentity
from pybimmerdash.registry import DEFAULT_REGISTRY, GaugeBinding, ParameterRegistry
from pybimmerdash.state.events import (
    ConnectionStateChanged,
    DtcListUpdated,
    EngineEvent,
    VehicleIdentityUpdated,
)
from pybimmerdash.state.store import TelemetryStore

_logger = logging.getLogger(__name__)

EventListener = Callable[[EngineEvent], None]


class VehicleClient:
    """Async client for a DoIP adapter.

    Usage::

        async with VehicleClient(EngineConfig.from_env()) as client:
            client.subscribe(print)
            await client.connect()
            result = await client.read_dtcs()
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        layout: DashboardLayout = DEFAULT_LAYOUT,
        registry: ParameterRegistry = DEFAULT_REGISTRY,
        model_names: Mapping[str, str] | None = None,
        dtc_descriptions: Mapping[str, str] | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._registry = registry
        self._layout = layout
        self._bindings: list[GaugeBinding] = registry.bindings(layout)
        self._listeners: list[EventListener] = []

        self._store = TelemetryStore(cylinder_count=self._config.default_cylinder_count)
        self._identification = IdentificationWorkflow(model_names=model_names)
        self._dtc = DtcWorkflow(self._config, descriptions=dtc_descriptions)
        self._battery = BatterySaveMonitor(self._config.battery_save_zero_rpm_samples)
        self._scheduler = PollingScheduler(
            self._config,
            bindings=lambda: self._bindings,
            cylinder_count=lambda: self._store.cylinder_count,
            battery_saving=lambda: self._battery.active,
        )
        self._router = ResponseRouter(
            self._store,
            bindings=lambda: self._bindings,
            identification=self._identification,
            dtc=self._dtc,
            battery=self._battery,
            emit=self._emit,
            on_battery_save=self._on_battery_save,
        )
        self._connection = ConnectionManager(
            self._config,
            on_response=self._router.handle,
            on_state=self._on_state,
            on_connected=self._on_connected,
            on_teardown=self._on_teardown,
            transport_factory=transport_factory,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> VehicleClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def battery_saving(self) -> bool:
        return self._battery.active

    @property
    def layout(self) -> DashboardLayout:
        return self._layout

    @property
    def bindings(self) -> list[GaugeBinding]:
        return list(self._bindings)

    @property
    def telemetry(self) -> TelemetryStore:
        return self._store

    @property
    def identity(self) -> VehicleIdentity:
        return self._store.identity

    @property
    def dtcs(self) -> tuple[DtcRecord, ...]:
        return self._store.dtcs

    @property
    def poll_tick(self) -> int:
        return self._scheduler.tick

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register *listener* for engine events. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _logger.debug("Event listener failed for %s", event.kind, exc_info=True)

    def _on_state(self, previous: ConnectionState, current: ConnectionState, reason: str) -> None:
        self._emit(ConnectionStateChanged(previous=previous, current=current, reason=reason))

    def _on_battery_save(self, active: bool) -> None:
        self._connection.set_battery_saving(active)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, host: str | None = None, port: int | None = None, *, timeout: float | None = None) -> None:
        """Connect to the adapter (defaults: last used address, then config).

        Raises :class:`~pybimmerdash.exceptions.ConnectTimeout` or
        :class:`~pybimmerdash.exceptions.ConnectRefused`.
        """
        await self._connection.connect(host, port, timeout)

    async def disconnect(self) -> None:
        await self._connection.disconnect()

    async def test_connection(self, host: str | None = None, port: int | None = None) -> ConnectionTestResult:
        """Probe an adapter with a separate short-lived session."""
        return await probe_adapter(
            host or self._connection.host,
            port or self._connection.port,
            connect_timeout=self._config.connect_timeout,
            response_timeout=self._config.activation_timeout,
        )

    @staticmethod
    async def discover(timeout: float = 3.0) -> str | None:
        return await discover_adapter(timeout=timeout)

    def _on_connected(self, epoch: int) -> None:
        send = functools.partial(self._connection.send, epoch=epoch)
        self._connection.spawn(self._scheduler.run(send), name=f"dash-poll-{epoch}")
        self._connection.spawn(self._identify(epoch), name=f"dash-identify-{epoch}")

    async def _identify(self, epoch: int) -> None:
        try:
            for frame in self._identification.start():
                await self._connection.send(frame, epoch=epoch)
            await asyncio.sleep(self._config.identification_timeout)
        except DashTransportError as exc:
            _logger.debug("Identification aborted: %s", exc)
        finally:
            self._identification.expire()

    def _on_teardown(self) -> None:
        self._identification.expire()
        self._dtc.abort()
        self._battery.reset()
        self._scheduler.reset()
        had_identity = not self._store.identity.is_empty
        self._store.reset_session(cylinder_count=self._config.default_cylinder_count)
        if had_identity:
            self._emit(VehicleIdentityUpdated(identity=self._store.identity))

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def set_layout(self, layout: DashboardLayout) -> None:
        """Switch the gauge layout; the next tick polls the new parameters.

        Readings of a slot whose assignment changed are discarded.
        """
        for slot in GaugeSlot:
            if layout.assignment(slot) != self._layout.assignment(slot):
                self._store.clear_slot(slot)
        self._layout = layout
        self._bindings = self._registry.bindings(layout)

    def apply_preset(self, name: str, user_presets: Mapping[str, DashboardLayout] | None = None) -> DashboardLayout:
        """Activate a built-in or user preset by name."""
        layout = BUILTIN_PRESETS.get(name)
        if layout is None and user_presets is not None:
            layout = user_presets.get(name)
        if layout is None:
            raise DashConfigError(f"Unknown preset: {name!r}")
        self.set_layout(layout)
        return layout

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def read_dtcs(self) -> DtcResult:
        """Request stored fault codes. The list is replaced when the response arrives."""
        if not self.is_connected:
            return DtcResult(ok=False, records=self._store.dtcs, message="Not connected")
        result = await self._dtc.read(self._connection.send)
        if not result.ok:
            return result.model_copy(update={"records": self._store.dtcs})
        return result

    async def clear_dtcs(self) -> DtcResult:
        """Clear the ECU fault memory; the local list is emptied once the clear completes."""
        if not self.is_connected:
            return DtcResult(ok=False, records=self._store.dtcs, message="Not connected")
        result = await self._dtc.clear(self._connection.send)
        if not result.ok:
            return result.model_copy(update={"records": self._store.dtcs})
        self._store.clear_dtcs()
        self._emit(DtcListUpdated(records=()))
        return result

    def describe_dtc(self, code: str) -> str | None:
        return self._dtc.describe(code)

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def reset_peaks(self) -> None:
        self._store.reset_peaks()

    def reset_worst_correction(self) -> None:
        self._store.reset_worst_correction()
