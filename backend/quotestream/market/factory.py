"""Factory for creating the quote subscription engine."""

from __future__ import annotations

import logging
import os

from .cache import QuoteCache
from .engine import QuoteSubscriptionEngine
from .heartbeat import DEFAULT_HEARTBEAT_INTERVAL
from .polling import DEFAULT_POLL_INTERVAL
from .quote_client import FinnhubQuoteClient
from .reconnect import DEFAULT_RECONNECT_DELAY

logger = logging.getLogger(__name__)


def _env_seconds(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = -1.0
    if value <= 0:
        logger.warning("Ignoring invalid %s=%r, using %.1fs", name, raw, default)
        return default
    return value


def create_quote_engine() -> QuoteSubscriptionEngine:
    """Create the quote engine based on environment variables.

    - TWELVE_DATA_API_KEY set and non-empty → streaming over the Twelve Data websocket
    - Otherwise FINNHUB_API_KEY set → polling the Finnhub quote endpoint
    - Neither → inert engine (subscriptions accepted, nothing delivered)

    FINNHUB_API_KEY also backs the REST quote lookup and the fallback used
    when the streaming endpoint rejects the connection.

    Returns an idle engine: nothing connects until the first subscribe().
    """
    streaming_key = os.environ.get("TWELVE_DATA_API_KEY", "").strip()
    finnhub_key = os.environ.get("FINNHUB_API_KEY", "").strip()

    quote_client = None
    if finnhub_key:
        quote_client = FinnhubQuoteClient(api_key=finnhub_key, cache=QuoteCache())

    if streaming_key:
        logger.info("Quote source: Twelve Data websocket (streaming)")
    elif quote_client is not None:
        logger.info("Quote source: Finnhub REST (polling)")
    else:
        logger.info("Quote source: none configured")

    return QuoteSubscriptionEngine(
        streaming_api_key=streaming_key or None,
        quote_client=quote_client,
        poll_interval=_env_seconds("QUOTE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
        heartbeat_interval=_env_seconds("QUOTE_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL),
        reconnect_delay=_env_seconds("QUOTE_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY),
    )
