"""Multi-rate polling scheduler.

:func:`plan_tick` is the pure part: given a tick number and the active gauge
bindings it returns the identifiers to request. :class:`PollingScheduler`
drives it from an asyncio task owned by the current connection epoch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from pybimmerdash._codec import encode_read_request
from pybimmerdash._constants import (
    BATTERY_SAVE_EVERY_TICKS,
    BATTERY_SAVE_ZERO_RPM_SAMPLES,
    DID_RPM,
    THERMAL_EVERY_TICKS,
)
from pybimmerdash.config import EngineConfig
from pybimmerdash.exceptions import DashTransportError
from pybimmerdash.registry import GaugeBinding, cylinder_timing_did

_logger = logging.getLogger(__name__)


def plan_tick(
    tick: int,
    bindings: Sequence[GaugeBinding],
    *,
    cylinder_count: int,
    battery_saving: bool = False,
    thermal_every: int = THERMAL_EVERY_TICKS,
    battery_save_every: int = BATTERY_SAVE_EVERY_TICKS,
) -> list[int]:
    """Return the data identifiers to request on *tick*, in send order.

    * battery saving: nothing unless ``tick`` is a multiple of ``battery_save_every``
    * every tick: non-thermal gauge parameters and one cylinder timing request
      (``tick % cylinder_count``)
    * every ``thermal_every`` ticks: thermal gauge parameters and RPM

    Duplicates (same parameter on both gauges) are requested once.
    """
    if battery_saving and tick % battery_save_every != 0:
        return []

    thermal_tick = tick % thermal_every == 0
    dids: list[int] = []

    def add(did: int) -> None:
        if did not in dids:
            dids.append(did)

    for binding in bindings:
        parameter = binding.parameter
        if parameter.round_robin or parameter.did is None:
            continue
        if parameter.is_thermal and not thermal_tick:
            continue
        add(parameter.did)

    if cylinder_count > 0:
        add(cylinder_timing_did(tick % cylinder_count))

    if thermal_tick:
        add(DID_RPM)

    return dids


class BatterySaveMonitor:
    """Zero-RPM hysteresis.

    ``threshold`` consecutive zero samples activate battery saving; a single
    nonzero sample resets the counter and deactivates it.
    """

    def __init__(self, threshold: int = BATTERY_SAVE_ZERO_RPM_SAMPLES) -> None:
        self._threshold = threshold
        self._zero_samples = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def zero_samples(self) -> int:
        return self._zero_samples

    def record_rpm(self, rpm: float) -> bool:
        """Feed one RPM sample. Returns ``True`` when the mode flipped."""
        if rpm == 0:
            self._zero_samples += 1
            if not self._active and self._zero_samples >= self._threshold:
                self._active = True
                return True
            return False
        self._zero_samples = 0
        if self._active:
            self._active = False
            return True
        return False

    def reset(self) -> None:
        self._zero_samples = 0
        self._active = False


class PollingScheduler:
    """Sends the planned read requests on every base tick.

    The scheduler holds no connection state of its own. Everything it needs
    is pulled through callables on each tick, so a layout or cylinder count
    change takes effect on the next tick.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        bindings: Callable[[], Sequence[GaugeBinding]],
        cylinder_count: Callable[[], int],
        battery_saving: Callable[[], bool],
    ) -> None:
        self._config = config
        self._bindings = bindings
        self._cylinder_count = cylinder_count
        self._battery_saving = battery_saving
        self._tick = 0

    @property
    def tick(self) -> int:
        return self._tick

    def reset(self) -> None:
        self._tick = 0

    def next_plan(self) -> list[int]:
        """Advance the tick counter and plan the new tick."""
        self._tick += 1
        return plan_tick(
            self._tick,
            self._bindings(),
            cylinder_count=self._cylinder_count(),
            battery_saving=self._battery_saving(),
            thermal_every=self._config.thermal_every_ticks,
            battery_save_every=self._config.battery_save_every_ticks,
        )

    async def run_tick(self, send: Callable[[bytes], Awaitable[None]]) -> list[int]:
        dids = self.next_plan()
        for did in dids:
            await send(encode_read_request(did))
        return dids

    async def run(self, send: Callable[[bytes], Awaitable[None]]) -> None:
        """Poll until cancelled. A failed send skips the rest of that tick."""
        self.reset()
        while True:
            await asyncio.sleep(self._config.tick_interval)
            try:
                await self.run_tick(send)
            except DashTransportError as exc:
                _logger.debug("Poll tick %d aborted: %s", self._tick, exc)

