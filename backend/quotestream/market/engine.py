"""Process-wide quote subscription engine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from threading import Lock
from typing import Any

from .connection import TWELVE_DATA_WS_URL, QuoteConnection
from .heartbeat import DEFAULT_HEARTBEAT_INTERVAL
from .models import ConnectionState, FeedMode, QuoteUpdate, normalize_symbol
from .polling import DEFAULT_POLL_INTERVAL, PollingFallback
from .protocol import subscribe_message, unsubscribe_message
from .quote_client import FinnhubQuoteClient
from .reconnect import DEFAULT_RECONNECT_DELAY, Reconnector
from .registry import QuoteCallback, SubscriptionRegistry

logger = logging.getLogger(__name__)


class Subscription:
    """Disposable handle returned by QuoteSubscriptionEngine.subscribe().

    release() unsubscribes exactly once; later calls do nothing.

        with engine.subscribe("AAPL", on_update):
            ...
    """

    def __init__(self, engine: QuoteSubscriptionEngine, symbol: str, callback: QuoteCallback) -> None:
        self._engine = engine
        self.symbol = symbol
        self.callback = callback
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._engine.unsubscribe(self.symbol, self.callback)
        self._released = True

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"<Subscription {self.symbol} {state}>"


class QuoteSubscriptionEngine:
    """Multiplexes many per-symbol consumers over one quote feed.

    Consumers call subscribe(symbol, callback) and get every QuoteUpdate for
    that symbol until they unsubscribe. The engine picks one delivery path
    when built:

      - STREAMING: one shared websocket (Twelve Data), kept alive with
        heartbeats and reopened after unexpected drops.
      - POLLING: a REST fetch per symbol on a fixed interval (Finnhub).
      - INERT: no provider configured; subscriptions are accepted but
        nothing is ever delivered.

    subscribe() and unsubscribe() never block. They update the registry
    immediately and push the network side effects into background tasks,
    so they must be called from the thread running the event loop.
    """

    def __init__(
        self,
        streaming_api_key: str | None = None,
        quote_client: FinnhubQuoteClient | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        stream_url: str = TWELVE_DATA_WS_URL,
    ) -> None:
        self._registry = SubscriptionRegistry()
        self._quote_client = quote_client
        self._poll_interval = poll_interval
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

        self._connection = QuoteConnection(
            api_key=streaming_api_key,
            symbols=self._registry.symbols,
            on_quote=self._registry.dispatch,
            on_closed=self._on_connection_closed,
            url=stream_url,
            heartbeat_interval=heartbeat_interval,
        )
        self._reconnector = Reconnector(self._open_connection, delay=reconnect_delay)
        self._poller: PollingFallback | None = None

        if streaming_api_key:
            self._mode = FeedMode.STREAMING
        elif quote_client is not None:
            self._mode = FeedMode.POLLING
            self._poller = PollingFallback(quote_client, self._registry.dispatch, poll_interval)
        else:
            self._mode = FeedMode.INERT
            logger.warning("No quote provider configured, live quotes are disabled")

        logger.info("Quote engine created (mode=%s)", self._mode.value)

    @property
    def mode(self) -> FeedMode:
        return self._mode

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def quote_client(self) -> FinnhubQuoteClient | None:
        return self._quote_client

    # --- Consumer API ---

    def subscribe(self, symbol: str, callback: QuoteCallback) -> Subscription:
        """Deliver every future quote for `symbol` to `callback`.

        Raises ValueError/TypeError for an invalid symbol, and RuntimeError
        when called outside the event loop (nothing is registered then).
        Returns a Subscription whose release() undoes this call.
        """
        symbol = normalize_symbol(symbol)
        _require_running_loop("subscribe")
        if self._closed:
            logger.warning("Subscribe to %s after shutdown ignored", symbol)
        elif self._registry.add(symbol, callback):
            logger.info("Subscribed %s", symbol)
            self._start_symbol(symbol)
        return Subscription(self, symbol, callback)

    def unsubscribe(self, symbol: str, callback: QuoteCallback) -> None:
        """Stop delivering `symbol` to `callback` (matched by identity).

        Once this returns, the callback receives no further quotes for the symbol.
        """
        symbol = normalize_symbol(symbol)
        _require_running_loop("unsubscribe")
        if not self._registry.remove(symbol, callback):
            return
        logger.info("Unsubscribed %s", symbol)
        if not self._closed:
            self._stop_symbol(symbol)

    # --- Lifecycle ---

    async def shutdown(self) -> None:
        """Release the transport, every timer and the HTTP client. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._reconnector.stop()
        if self._poller is not None:
            await self._poller.stop()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        await self._connection.close()
        if self._quote_client is not None:
            await self._quote_client.aclose()
        logger.info("Quote engine shut down")

    def get_stats(self) -> dict[str, Any]:
        return {
            "mode": self._mode.value,
            "connection_state": self._connection.state.value,
            "heartbeat_running": self._connection.heartbeat_running,
            "reconnect_pending": self._reconnector.pending,
            "reconnect_attempts": self._reconnector.attempts,
            "symbols": self._registry.symbols(),
            "subscribers": self._registry.subscriber_counts(),
            "polled_symbols": self._poller.get_symbols() if self._poller else [],
        }

    # --- Internal ---

    def _start_symbol(self, symbol: str) -> None:
        if self._mode is FeedMode.POLLING:
            self._poller.add(symbol)
        elif self._mode is FeedMode.STREAMING:
            state = self._connection.state
            if state is ConnectionState.OPEN:
                self._spawn(self._connection.send(subscribe_message([symbol])))
            elif state is not ConnectionState.CONNECTING:
                # Open now rather than waiting out a pending reconnect delay;
                # the resubscription on open will include this symbol.
                self._reconnector.cancel()
                self._spawn(self._open_connection())

    def _stop_symbol(self, symbol: str) -> None:
        if self._mode is FeedMode.POLLING:
            self._poller.remove(symbol)
        elif self._mode is FeedMode.STREAMING:
            if self._connection.state is ConnectionState.OPEN:
                self._spawn(self._connection.send(unsubscribe_message([symbol])))
            if not self._registry:
                # Nothing left to stream: drop the idle transport
                self._reconnector.cancel()
                self._spawn(self._close_if_idle())

    async def _open_connection(self) -> None:
        if self._closed or self._mode is not FeedMode.STREAMING or not self._registry:
            return
        available = await self._connection.open()
        if not available:
            self._fall_back_to_polling()
        elif self._connection.state is ConnectionState.OPEN:
            self._reconnector.reset()

    async def _close_if_idle(self) -> None:
        # A subscribe may land between scheduling and running this close
        if self._registry:
            return
        await self._connection.close()
        if self._registry and not self._closed:
            await self._open_connection()

    def _on_connection_closed(self, expected: bool) -> None:
        if expected or self._closed or self._mode is not FeedMode.STREAMING:
            return
        if not self._registry:
            return
        self._reconnector.schedule()

    def _fall_back_to_polling(self) -> None:
        self._reconnector.cancel()
        if self._quote_client is None:
            self._mode = FeedMode.INERT
            logger.warning("Streaming unavailable and no REST quote provider, live quotes are disabled")
            return

        self._mode = FeedMode.POLLING
        self._poller = PollingFallback(self._quote_client, self._registry.dispatch, self._poll_interval)
        symbols = self._registry.symbols()
        for symbol in symbols:
            self._poller.add(symbol)
        logger.warning("Streaming unavailable, polling %d symbols instead", len(symbols))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Quote engine task failed", exc_info=task.exception())


def _require_running_loop(operation: str) -> None:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        raise RuntimeError(f"{operation}() must be called from the event loop thread") from None


# Process-wide instance
_engine: QuoteSubscriptionEngine | None = None
_engine_lock = Lock()


def get_engine() -> QuoteSubscriptionEngine:
    """Return the process-wide engine, building it from the environment on first use."""
    global _engine
    with _engine_lock:
        if _engine is None:
            from .factory import create_quote_engine

            _engine = create_quote_engine()
        return _engine


async def shutdown_engine() -> None:
    """Shut down and forget the process-wide engine. No-op if none was created."""
    global _engine
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        await engine.shutdown()
