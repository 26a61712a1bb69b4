#!/usr/bin/env python3
"""Watch live engine telemetry from a DoIP adapter.

Connects to the adapter, prints every engine event as it arrives and
optionally reads the stored fault codes once the session is up.

Usage
-----
::

    python scripts/live_monitor.py                    # adapter from the settings file
    python scripts/live_monitor.py --discover         # find the adapter by broadcast
    python scripts/live_monitor.py --host 127.0.0.1 --port 13400 --preset Track --dtc

Options::

    --host ADDR          Adapter address (default: saved settings)
    --port PORT          Adapter TCP port
    --discover           Broadcast for the adapter before connecting
    --preset NAME        Activate a gauge preset (Performance, Track, Tuner, User 1..3)
    --settings FILE      Settings file (default: ./settings_v3.json)
    --dtc                Read stored fault codes after connecting
    --duration SECONDS   Stop after this many seconds (default: run until Ctrl-C)
    --debug              Enable debug logging including frame traces
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pybimmerdash import (  # noqa: E402
    ConnectionStateChanged,
    CylinderCorrectionUpdated,
    DashError,
    DtcListUpdated,
    EngineEvent,
    SettingsStore,
    ValueUpdated,
    VehicleClient,
    VehicleIdentityUpdated,
)
from pybimmerdash.settings import SETTINGS_FILE_NAME  # noqa: E402


def _format_event(event: EngineEvent) -> str:
    stamp = event.observed_at.strftime("%H:%M:%S.%f")[:-3]
    if isinstance(event, ValueUpdated):
        peak = f" (peak {event.peak:.2f})" if event.peak is not None else ""
        return f"{stamp} {event.slot}/{event.role} {event.parameter_id} = {event.value:.2f}{peak}"
    if isinstance(event, CylinderCorrectionUpdated):
        return (
            f"{stamp} cyl {event.cylinder} timing {event.correction:+.1f}° "
            f"(worst {event.worst:+.1f}° on cyl {event.worst_cylinder})"
        )
    if isinstance(event, ConnectionStateChanged):
        reason = f" - {event.reason}" if event.reason else ""
        return f"{stamp} connection {event.previous} -> {event.current}{reason}"
    if isinstance(event, VehicleIdentityUpdated):
        identity = event.identity
        if identity.is_empty:
            return f"{stamp} vehicle identity cleared"
        return (
            f"{stamp} vehicle {identity.manufacturer} {identity.model or '?'} "
            f"vin={identity.vin or '?'} km={identity.mileage_km} cylinders={identity.cylinder_count}"
        )
    if isinstance(event, DtcListUpdated):
        if not event.records:
            return f"{stamp} no stored fault codes"
        codes = ", ".join(f"{r.display_code} ({r.description or 'unknown'})" for r in event.records)
        return f"{stamp} fault codes: {codes}"
    return f"{stamp} {event.kind}"


async def run(args: argparse.Namespace) -> int:
    settings = SettingsStore(args.settings).load()
    host = args.host
    if args.discover:
        host = await VehicleClient.discover()
        if host is None:
            print("No adapter answered the discovery broadcast", file=sys.stderr)
            return 1
        print(f"Adapter found at {host}")

    config = settings.engine_config(frame_trace_enabled=args.debug)
    async with VehicleClient(config, layout=settings.layout) as client:
        if args.preset:
            client.apply_preset(args.preset, settings.user_presets)
        client.subscribe(lambda event: print(_format_event(event)))

        try:
            await client.connect(host, args.port)
        except DashError as exc:
            print(f"Connect failed: {exc}", file=sys.stderr)
            return 1

        if args.dtc:
            result = await client.read_dtcs()
            if not result.ok:
                print(f"DTC read: {result.message}", file=sys.stderr)

        if args.duration:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Print live engine telemetry from a DoIP adapter.")
    parser.add_argument("--host", help="Adapter address (default: saved settings)")
    parser.add_argument("--port", type=int, help="Adapter TCP port")
    parser.add_argument("--discover", action="store_true", help="Broadcast for the adapter before connecting")
    parser.add_argument("--preset", help="Activate a gauge preset")
    parser.add_argument("--settings", default=SETTINGS_FILE_NAME, help="Settings file")
    parser.add_argument("--dtc", action="store_true", help="Read stored fault codes after connecting")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging including frame traces")
    args = parser.parse_args()

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
