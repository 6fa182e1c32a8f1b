"""Finnhub REST client for point-in-time quotes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .cache import QuoteCache
from .models import QuoteUpdate, normalize_symbol

logger = logging.getLogger(__name__)

FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
DEFAULT_TIMEOUT = 10.0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class FinnhubQuoteClient:
    """Fetches quotes from GET /quote?symbol=...&token=...

    Finnhub answers with {"c": price, "d": change, "dp": change_percent, ...}.
    A response missing any of the three, or with a zero price (Finnhub's
    answer for unknown symbols), means there is no quote right now.
    """

    def __init__(
        self,
        api_key: str,
        cache: QuoteCache | None = None,
        base_url: str = FINNHUB_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._cache = cache if cache is not None else QuoteCache()
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @property
    def cache(self) -> QuoteCache:
        return self._cache

    async def get_quote(self, symbol: str, use_cache: bool = True) -> QuoteUpdate | None:
        """Current quote for one symbol, or None if none is available.

        HTTP and network errors propagate (httpx.HTTPError). A fetched quote
        always refreshes the cache, even when use_cache is False.
        """
        symbol = normalize_symbol(symbol)
        if use_cache:
            cached = self._cache.get(symbol)
            if cached is not None:
                return cached

        response = await self._client.get(
            "/quote", params={"symbol": symbol, "token": self._api_key}
        )
        response.raise_for_status()
        quote = self._parse_quote(symbol, response.json())
        if quote is not None:
            self._cache.put(quote)
        return quote

    async def get_quotes(self, symbols: list[str]) -> dict[str, QuoteUpdate]:
        """Fetch several symbols concurrently. Failed or empty symbols are left out."""
        normalized = [normalize_symbol(s) for s in symbols]
        results = await asyncio.gather(
            *(self.get_quote(s) for s in normalized), return_exceptions=True
        )
        quotes: dict[str, QuoteUpdate] = {}
        for symbol, result in zip(normalized, results):
            if isinstance(result, Exception):
                logger.error("Error fetching quote for %s: %s", symbol, result)
            elif result is not None:
                quotes[symbol] = result
        return quotes

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _parse_quote(symbol: str, data: Any) -> QuoteUpdate | None:
        if not isinstance(data, dict):
            return None
        price, change, change_percent = data.get("c"), data.get("d"), data.get("dp")
        if not (_is_number(price) and _is_number(change) and _is_number(change_percent)):
            logger.debug("No quote available for %s: %r", symbol, data)
            return None
        if price <= 0:
            return None
        timestamp = data.get("t")
        if _is_number(timestamp) and timestamp > 0:
            return QuoteUpdate(
                symbol=symbol,
                price=float(price),
                change=float(change),
                change_percent=float(change_percent),
                timestamp=float(timestamp),
            )
        return QuoteUpdate(
            symbol=symbol,
            price=float(price),
            change=float(change),
            change_percent=float(change_percent),
        )
