"""Custom exception hierarchy for pybimmerdash."""

from __future__ import annotations


class DashError(Exception):
    """Base exception for all pybimmerdash errors."""


class DashConfigError(DashError):
    """Invalid or missing configuration."""


class DashTransportError(DashError):
    """Socket-level failure (connect refused/timeout, mid-session loss)."""

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        port: int | None = None,
    ) -> None:
        self.host = host
        self.port = port
        super().__init__(message)


class ConnectTimeout(DashTransportError):
    """The adapter did not accept the TCP connection (or activation) in time."""


class ConnectRefused(DashTransportError):
    """The adapter actively refused the connection or is unreachable."""


class ConnectionLost(DashTransportError):
    """A send or receive failed on an established session."""


class DashProtocolError(DashError):
    """A frame is malformed or too short to be interpreted.

    The offending frame is dropped; decoding continues with the next one.
    """


class DashDecodeError(DashError):
    """A payload is too short (or otherwise invalid) for its parameter.

    Treated as "no update" for that reading, never as a fatal error.
    """

    def __init__(self, message: str, *, did: int | None = None) -> None:
        self.did = did
        super().__init__(message)
