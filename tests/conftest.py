import asyncio
import sys
from pathlib import Path

import pytest
from websockets.protocol import State

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_CLOSE = object()


class DummyWebSocket:
    """Stands in for a websockets connection: records sends, replays fed frames."""

    def __init__(self, frames=(), state=State.OPEN) -> None:
        self.state = state
        self.sent_messages: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.remote_address = ("127.0.0.1", 50000)
        self._inbox: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.feed(frame)

    def feed(self, raw) -> None:
        self._inbox.put_nowait(raw)

    def finish(self) -> None:
        """End the inbound stream after the frames already fed"""
        self._inbox.put_nowait(_CLOSE)

    async def send(self, data: str) -> None:
        self.sent_messages.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.state = State.CLOSED
        self.finish()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            self.state = State.CLOSED
            raise StopAsyncIteration
        return item


class DummyConnect:
    """Transport factory returning a prepared DummyWebSocket"""

    def __init__(self, websocket=None, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self.websocket = websocket
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, dict]] = []

    async def __call__(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.websocket


@pytest.fixture
def dummy_ws_factory():
    return DummyWebSocket


@pytest.fixture
def dummy_connect_factory():
    return DummyConnect
