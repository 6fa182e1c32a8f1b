"""Fixtures for quote engine tests.

`feed` replaces websockets.connect with an in-memory fake so connection and
engine tests can drive the stream (push frames, drop the socket, reject the
handshake) without touching the network.
"""

import asyncio
import json
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError

from quotestream.market.models import QuoteUpdate

_CLOSE = object()
_DROP = object()


class FakeWebSocket:
    """Stand-in for a websockets client connection."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def push(self, payload) -> None:
        """Deliver one inbound frame (dicts are JSON-encoded)."""
        self._incoming.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def drop(self) -> None:
        """Simulate the server or network killing the connection."""
        self._incoming.put_nowait(_DROP)

    def actions(self, action: str) -> list[dict]:
        return [message for message in self.sent if message.get("action") == action]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _DROP:
            self.closed = True
            raise ConnectionClosedError(None, None)
        return item


class FakeFeed:
    """Hands out FakeWebSockets in connection order; can fail the next connects."""

    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []
        self.failures: list[BaseException] = []
        self.delay = 0.0  # Seconds each connect takes
        self.connect = MagicMock(side_effect=self._connect)

    async def _connect(self, url: str, *args, **kwargs) -> FakeWebSocket:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


@pytest.fixture
def feed():
    fake = FakeFeed()
    with patch("quotestream.market.connection.websockets.connect", new=fake.connect):
        yield fake


@pytest.fixture
def wait_until() -> Callable:
    """Poll a condition on the running loop until it holds or the timeout expires."""

    async def _wait_until(predicate: Callable[[], object], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within %.2fs" % timeout)
            await asyncio.sleep(0.005)

    return _wait_until


@pytest.fixture
def quote_client():
    """Mock REST quote client whose get_quote returns a TSLA quote."""
    client = MagicMock()
    client.get_quote = AsyncMock(
        return_value=QuoteUpdate(symbol="TSLA", price=250.0, change_percent=1.5, change=3.7, timestamp=1707580800.0)
    )
    client.aclose = AsyncMock()
    return client
