"""Thread-safe in-memory quote cache with expiry."""

from __future__ import annotations

import time
from threading import Lock

from .models import QuoteUpdate, normalize_symbol

DEFAULT_TTL = 60.0


class QuoteCache:
    """Thread-safe cache of the latest REST quote for each symbol.

    Entries expire `ttl` seconds after they were stored.

    Writers: FinnhubQuoteClient (every successful fetch).
    Readers: the quote lookup route, via FinnhubQuoteClient.get_quote().
    """

    def __init__(self, ttl: float = DEFAULT_TTL) -> None:
        self._ttl = ttl
        self._entries: dict[str, tuple[float, QuoteUpdate]] = {}  # symbol -> (stored_at, quote)
        self._lock = Lock()

    def put(self, quote: QuoteUpdate) -> None:
        with self._lock:
            self._entries[quote.symbol] = (time.monotonic(), quote)

    def get(self, symbol: str) -> QuoteUpdate | None:
        """Fresh quote for a symbol, or None if unknown or expired."""
        symbol = normalize_symbol(symbol)
        with self._lock:
            entry = self._entries.get(symbol)
            if entry is None:
                return None
            stored_at, quote = entry
            if time.monotonic() - stored_at >= self._ttl:
                del self._entries[symbol]
                return None
            return quote

    def remove(self, symbol: str) -> None:
        with self._lock:
            self._entries.pop(normalize_symbol(symbol), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        return self.get(symbol) is not None
