"""Wire format of the Twelve Data price stream.

Outbound control messages:
    {"action": "subscribe",   "params": {"symbols": "AAPL,MSFT"}}
    {"action": "unsubscribe", "params": {"symbols": "AAPL"}}
    {"action": "heartbeat"}

Inbound price events:
    {"event": "price", "symbol": "AAPL", "price": "190.5", "change_percent": "-0.4"}

Everything else the server sends (subscribe-status, heartbeat acks, errors)
is not a price and is ignored by the parser.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable
from typing import Any

from .models import QuoteUpdate

logger = logging.getLogger(__name__)

HEARTBEAT_MESSAGE: dict[str, Any] = {"action": "heartbeat"}


def subscribe_message(symbols: Iterable[str]) -> dict[str, Any]:
    return {"action": "subscribe", "params": {"symbols": ",".join(symbols)}}


def unsubscribe_message(symbols: Iterable[str]) -> dict[str, Any]:
    return {"action": "unsubscribe", "params": {"symbols": ",".join(symbols)}}


def _to_finite_float(value: Any) -> float | None:
    """Parse a numeric string (or number) into a finite float, else None."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_price_message(raw: str | bytes) -> QuoteUpdate | None:
    """Turn one inbound frame into a QuoteUpdate, or None if it isn't a usable price.

    Never raises: malformed frames are logged and dropped so that a single
    bad message cannot take the connection down.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        logger.warning("Discarding non-JSON stream message: %.100r", raw)
        return None

    if not isinstance(data, dict) or data.get("event") != "price":
        return None

    symbol = data.get("symbol")
    if not isinstance(symbol, str) or not symbol.strip():
        logger.warning("Discarding price event without symbol: %.100r", raw)
        return None

    price = _to_finite_float(data.get("price"))
    # A missing change_percent is reported as flat
    change_percent = _to_finite_float(data.get("change_percent") or "0")
    if price is None or price <= 0 or change_percent is None:
        logger.warning(
            "Discarding price event for %s with bad numbers: price=%r change_percent=%r",
            symbol,
            data.get("price"),
            data.get("change_percent"),
        )
        return None

    timestamp = _to_finite_float(data.get("timestamp"))
    if timestamp is None:
        return QuoteUpdate(symbol=symbol.strip().upper(), price=price, change_percent=change_percent)
    return QuoteUpdate(
        symbol=symbol.strip().upper(),
        price=price,
        change_percent=change_percent,
        timestamp=timestamp,
    )
