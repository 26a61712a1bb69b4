from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from pybimmerdash.exceptions import ConnectionLost


class FakeTransport:
    """In-memory transport: records sent frames, replays queued inbound frames."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.fail_sends = False
        self.closed = False
        self.replies: dict[bytes, list[bytes]] = {}
        self._inbox: asyncio.Queue[bytes | None] = asyncio.Queue()

    def feed(self, frame: bytes) -> None:
        self._inbox.put_nowait(frame)

    def close_from_peer(self) -> None:
        self._inbox.put_nowait(None)

    async def send(self, frame: bytes) -> None:
        if self.closed:
            raise ConnectionLost("transport is closed")
        if self.fail_sends:
            raise ConnectionLost("send failed")
        self.sent.append(frame)
        for reply in self.replies.get(frame, []):
            self.feed(reply)

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._inbox.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)


class FakeFactory:
    """Transport factory handing out :class:`FakeTransport` instances."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.calls: list[tuple[str, int, float]] = []
        self.error: Exception | None = None
        self.replies: dict[bytes, list[bytes]] = {}

    async def __call__(self, host: str, port: int, timeout: float) -> FakeTransport:
        self.calls.append((host, port, timeout))
        if self.error is not None:
            raise self.error
        transport = FakeTransport()
        transport.replies = self.replies
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def fake_factory() -> FakeFactory:
    return FakeFactory()
