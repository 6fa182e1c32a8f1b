"""Keep-alive timer for the streaming connection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 10.0


class HeartbeatScheduler:
    """Calls `beat` every `interval` seconds until stopped.

    Owned by a single connection: started when it becomes OPEN and stopped
    when it leaves OPEN. start() cancels any previous timer first, so at
    most one heartbeat task exists at a time.
    """

    def __init__(
        self,
        beat: Callable[[], Awaitable[object]],
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self._beat = beat
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.stop()
        self._task = asyncio.create_task(self._run_loop(), name="quote-heartbeat")
        logger.debug("Heartbeat started (%.1fs interval)", self._interval)

    def stop(self) -> None:
        """Cancel the timer. Safe to call when not running."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
                logger.debug("Heartbeat stopped")
            self._task = None

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._beat()
            except Exception:
                logger.exception("Heartbeat send failed")
