"""Connection state model."""

from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    """Lifecycle of the adapter session.

    Owned exclusively by the connection manager; everything else observes it.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BATTERY_SAVING = "battery_saving"
    RECONNECTING = "reconnecting"
    FAILED = "failed"

    @property
    def is_online(self) -> bool:
        """Whether a live session exists (frames can be sent)."""
        return self in (ConnectionState.CONNECTED, ConnectionState.BATTERY_SAVING)
