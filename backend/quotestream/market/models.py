"""Data models for the quote subscription engine."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


def normalize_symbol(symbol: str) -> str:
    """Canonical form of a ticker symbol: stripped and uppercased.

    Raises ValueError for an empty symbol and TypeError for a non-string.
    """
    if not isinstance(symbol, str):
        raise TypeError(f"Symbol must be a string, got {type(symbol).__name__}")
    normalized = symbol.strip().upper()
    if not normalized:
        raise ValueError("Symbol must be a non-empty string")
    return normalized


class ConnectionState(Enum):
    """Lifecycle state of the shared streaming transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class FeedMode(Enum):
    """How the engine delivers quotes. Chosen once when the engine is built."""

    STREAMING = "streaming"
    POLLING = "polling"
    INERT = "inert"


@dataclass(frozen=True, slots=True)
class QuoteUpdate:
    """Immutable price observation for a single symbol."""

    symbol: str
    price: float
    change_percent: float
    change: float | None = None
    timestamp: float = field(default_factory=time.time)  # Unix seconds

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat' relative to the previous close."""
        if self.change_percent > 0:
            return "up"
        elif self.change_percent < 0:
            return "down"
        return "flat"

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "direction": self.direction,
            "timestamp": self.timestamp,
        }
