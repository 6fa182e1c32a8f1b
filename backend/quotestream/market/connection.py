"""Shared Twelve Data websocket connection."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .heartbeat import DEFAULT_HEARTBEAT_INTERVAL, HeartbeatScheduler
from .models import ConnectionState, QuoteUpdate
from .protocol import HEARTBEAT_MESSAGE, parse_price_message, subscribe_message

logger = logging.getLogger(__name__)

TWELVE_DATA_WS_URL = "wss://ws.twelvedata.com/v1/quotes/price"

# Legal edges of the connection state machine
_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.DISCONNECTED},
    ConnectionState.OPEN: {ConnectionState.CLOSING, ConnectionState.DISCONNECTED},
    ConnectionState.CLOSING: {ConnectionState.DISCONNECTED},
}


class QuoteConnection:
    """Owns the one streaming transport to the quote feed.

    Translates domain operations into wire messages and inbound frames into
    QuoteUpdate events. It does not decide what to subscribe to: on every
    open it resends whatever `symbols()` returns at that moment, and it
    reports every close to `on_closed(expected)` so the owner can decide
    whether to reconnect.

    Lifecycle:
        conn = QuoteConnection(api_key, symbols=registry.symbols, on_quote=..., on_closed=...)
        await conn.open()        # False -> streaming unavailable, use polling
        await conn.send(subscribe_message(["TSLA"]))
        await conn.close()
    """

    def __init__(
        self,
        api_key: str | None,
        symbols: Callable[[], list[str]],
        on_quote: Callable[[QuoteUpdate], object],
        on_closed: Callable[[bool], object],
        url: str = TWELVE_DATA_WS_URL,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self._api_key = api_key
        self._symbols = symbols
        self._on_quote = on_quote
        self._on_closed = on_closed
        self._url = url
        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._receive_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()  # Serializes open() and close()
        self._heartbeat = HeartbeatScheduler(
            lambda: self.send(HEARTBEAT_MESSAGE),
            interval=heartbeat_interval,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat.running

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key)

    async def open(self) -> bool:
        """Connect and resubscribe every registered symbol.

        Returns False when streaming is unavailable: no API key, or the
        server rejected the URL or handshake. Transient failures (network,
        timeouts) return True and are reported through on_closed(False), so
        the reconnect supervisor retries them.
        """
        if not self._api_key:
            logger.warning("Streaming API key not configured, streaming unavailable")
            return False

        async with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return True

            self._transition(ConnectionState.CONNECTING)
            try:
                ws = await websockets.connect(f"{self._url}?apikey={self._api_key}")
            except asyncio.CancelledError:
                self._transition(ConnectionState.DISCONNECTED)
                raise
            except (InvalidURI, InvalidHandshake) as e:
                logger.error("Quote stream rejected the connection: %s", e)
                self._transition(ConnectionState.DISCONNECTED)
                return False
            except Exception as e:
                logger.warning("Failed to connect to quote stream: %s", e)
                self._transition(ConnectionState.DISCONNECTED)
                self._on_closed(False)
                return True

            self._ws = ws
            self._transition(ConnectionState.OPEN)
            logger.info("Connected to quote stream")
            self._receive_task = asyncio.create_task(
                self._receive_loop(ws), name="quote-stream-receiver"
            )

            # The server forgets subscriptions between connections
            symbols = self._symbols()
            if symbols:
                await self.send(subscribe_message(symbols))
                logger.info("Resubscribed %d symbols: %s", len(symbols), ",".join(symbols))
            return True

    async def send(self, message: dict[str, Any]) -> bool:
        """Send a control message. Returns False (and drops it) unless OPEN."""
        ws = self._ws
        if self._state is not ConnectionState.OPEN or ws is None:
            logger.debug("Dropping %s message, connection is %s", message.get("action"), self._state.value)
            return False
        try:
            await ws.send(json.dumps(message))
            return True
        except ConnectionClosed as e:
            # The receive loop sees the same close and handles it
            logger.warning("Send failed, connection closed: %s", e)
            return False

    async def close(self) -> None:
        """Requested shutdown. Reported as on_closed(True), never reconnected."""
        async with self._lock:
            if self._state is not ConnectionState.OPEN:
                return

            self._transition(ConnectionState.CLOSING)
            ws, self._ws = self._ws, None
            if self._receive_task is not None:
                self._receive_task.cancel()
                try:
                    await self._receive_task
                except asyncio.CancelledError:
                    pass
                self._receive_task = None
            try:
                await ws.close()
            except Exception as e:
                logger.warning("Error closing quote stream: %s", e)
            self._transition(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from quote stream")
        self._on_closed(True)

    # --- Internal ---

    def _transition(self, new_state: ConnectionState) -> None:
        """The only place the connection state changes. Owns the heartbeat timer."""
        old_state = self._state
        if new_state not in _TRANSITIONS[old_state]:
            raise RuntimeError(f"Illegal connection transition {old_state.value} -> {new_state.value}")
        self._state = new_state
        logger.debug("Quote stream %s -> %s", old_state.value, new_state.value)

        if new_state is ConnectionState.OPEN:
            self._heartbeat.start()
        elif old_state is ConnectionState.OPEN:
            self._heartbeat.stop()

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                quote = parse_price_message(raw)
                if quote is not None:
                    self._on_quote(quote)
        except ConnectionClosed as e:
            logger.warning("Quote stream connection lost: %s", e)
        except Exception:
            logger.exception("Quote stream receive loop failed")
        finally:
            # close() detaches the socket first; anything else is unexpected
            if self._ws is ws:
                self._ws = None
                self._receive_task = None
                self._transition(ConnectionState.DISCONNECTED)
                self._on_closed(False)
