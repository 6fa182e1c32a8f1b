"""Per-symbol REST polling, used when streaming is unavailable."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from .models import QuoteUpdate, normalize_symbol

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0


class QuoteFetcher(Protocol):
    def get_quote(self, symbol: str, use_cache: bool = True) -> Awaitable[QuoteUpdate | None]: ...


class PollingFallback:
    """Polls one quote per symbol on a fixed interval.

    Each symbol gets its own asyncio task that fetches immediately, then
    every `poll_interval` seconds. Results go to `on_quote`, the same
    dispatch the streaming path uses, so subscribers can't tell the two apart.

    Rate limits (Finnhub free tier): 60 req/min, so 30s suits ~30 symbols.
    """

    def __init__(
        self,
        fetcher: QuoteFetcher,
        on_quote: Callable[[QuoteUpdate], object],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._fetcher = fetcher
        self._on_quote = on_quote
        self._interval = poll_interval
        self._tasks: dict[str, asyncio.Task] = {}

    def add(self, symbol: str) -> None:
        """Start polling a symbol. No-op if already polled."""
        symbol = normalize_symbol(symbol)
        if symbol in self._tasks:
            return
        self._tasks[symbol] = asyncio.create_task(
            self._poll_loop(symbol), name=f"quote-poller-{symbol}"
        )
        logger.info("Polling %s every %.1fs", symbol, self._interval)

    def remove(self, symbol: str) -> None:
        """Stop polling a symbol. No-op if not polled."""
        task = self._tasks.pop(normalize_symbol(symbol), None)
        if task is not None:
            task.cancel()
            logger.info("Stopped polling %s", symbol)

    def get_symbols(self) -> list[str]:
        return list(self._tasks)

    async def stop(self) -> None:
        """Cancel every poll task and wait for them. Safe to call multiple times."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Quote poller stopped (%d symbols)", len(tasks))

    # --- Internal ---

    async def _poll_loop(self, symbol: str) -> None:
        while True:
            await self._poll_once(symbol)
            await asyncio.sleep(self._interval)

    async def _poll_once(self, symbol: str) -> None:
        """One fetch for one symbol. Failures are logged; the loop carries on."""
        try:
            quote = await self._fetcher.get_quote(symbol, use_cache=False)
        except Exception as e:
            logger.warning("Error fetching quote for %s: %s", symbol, e)
            return

        if quote is None:
            logger.debug("No quote for %s this cycle", symbol)
            return
        self._on_quote(quote)
