"""Fixed-delay reconnect supervisor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0


class Reconnector:
    """Schedules `reconnect` to run once after `delay` seconds.

    Attempts are not capped and the delay never grows: the owner keeps
    calling schedule() after every unexpected close for as long as it still
    has symbols to stream. Only one attempt is pending at any time.
    """

    def __init__(
        self,
        reconnect: Callable[[], Awaitable[object]],
        delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self._reconnect = reconnect
        self._delay = delay
        self._task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()  # Attempts past their delay
        self._attempts = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def attempts(self) -> int:
        """Reconnect attempts since the last successful open."""
        return self._attempts

    def schedule(self) -> None:
        """Arrange one reconnect attempt. No-op if one is already pending."""
        if self.pending:
            return
        self._attempts += 1
        logger.info("Reconnecting in %.1fs (attempt %d)", self._delay, self._attempts)
        self._task = asyncio.create_task(self._run(), name="quote-reconnect")

    def cancel(self) -> None:
        """Drop the pending attempt. An attempt already connecting runs on."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
                logger.debug("Pending reconnect cancelled")
            self._task = None

    async def stop(self) -> None:
        """Cancel the pending attempt and any attempt already connecting, and wait for them."""
        self.cancel()
        tasks = [task for task in self._in_flight if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.debug("In-flight reconnect cancelled")

    def reset(self) -> None:
        self._attempts = 0

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        # Free the pending slot so a failed attempt can schedule the next one
        task = asyncio.current_task()
        self._task = None
        self._in_flight.add(task)
        try:
            await self._reconnect()
        except Exception:
            logger.exception("Reconnect attempt failed")
        finally:
            self._in_flight.discard(task)
