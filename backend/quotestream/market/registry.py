"""Thread-safe registry of quote subscribers, keyed by symbol."""

from __future__ import annotations

import logging
from collections.abc import Callable
from threading import Lock

from .models import QuoteUpdate, normalize_symbol

logger = logging.getLogger(__name__)

QuoteCallback = Callable[[QuoteUpdate], None]


class SubscriptionRegistry:
    """Maps each symbol to the callbacks interested in it.

    The registry keys double as the upstream subscription set: a symbol is
    present iff it has at least one callback. Callbacks are compared by
    identity, so two equal-but-distinct callables are separate subscribers.

    Writers: the engine's subscribe/unsubscribe.
    Readers: dispatch (streaming and polling paths), resubscription on open.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[QuoteCallback]] = {}
        self._lock = Lock()

    def add(self, symbol: str, callback: QuoteCallback) -> bool:
        """Register a callback. Returns True if the symbol is new to the set."""
        symbol = normalize_symbol(symbol)
        with self._lock:
            callbacks = self._callbacks.get(symbol)
            if callbacks is None:
                self._callbacks[symbol] = [callback]
                return True
            if not any(existing is callback for existing in callbacks):
                callbacks.append(callback)
            return False

    def remove(self, symbol: str, callback: QuoteCallback) -> bool:
        """Unregister a callback. Returns True if the symbol lost its last subscriber.

        Unknown symbols and callbacks that were never registered are a no-op.
        """
        symbol = normalize_symbol(symbol)
        with self._lock:
            callbacks = self._callbacks.get(symbol)
            if callbacks is None:
                return False
            remaining = [existing for existing in callbacks if existing is not callback]
            if len(remaining) == len(callbacks):
                return False
            if remaining:
                self._callbacks[symbol] = remaining
                return False
            del self._callbacks[symbol]
            return True

    def dispatch(self, quote: QuoteUpdate) -> int:
        """Deliver a quote to every callback registered for its symbol.

        The callback list is snapshotted first, so callbacks may subscribe or
        unsubscribe while being called. A raising callback is logged and does
        not prevent delivery to the others. Returns the number of callbacks called.
        """
        callbacks = self.callbacks(quote.symbol)
        for callback in callbacks:
            try:
                callback(quote)
            except Exception:
                logger.exception("Quote callback for %s raised", quote.symbol)
        return len(callbacks)

    def callbacks(self, symbol: str) -> list[QuoteCallback]:
        """Snapshot of the callbacks for a symbol (empty if none)."""
        symbol = normalize_symbol(symbol)
        with self._lock:
            return list(self._callbacks.get(symbol, ()))

    def symbols(self) -> list[str]:
        """Symbols with at least one subscriber, in subscription order."""
        with self._lock:
            return list(self._callbacks)

    def subscriber_counts(self) -> dict[str, int]:
        with self._lock:
            return {symbol: len(callbacks) for symbol, callbacks in self._callbacks.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def __contains__(self, symbol: str) -> bool:
        try:
            symbol = normalize_symbol(symbol)
        except (TypeError, ValueError):
            return False
        with self._lock:
            return symbol in self._callbacks
