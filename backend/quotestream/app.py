"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .market import create_quote_router, get_engine, shutdown_engine
from .market.engine import QuoteSubscriptionEngine

logger = logging.getLogger(__name__)


def create_app(engine: QuoteSubscriptionEngine | None = None) -> FastAPI:
    """Create the application.

    Without an explicit engine, the process-wide one from get_engine() is
    used and shut down when the application stops.
    """
    owns_engine = engine is None
    if engine is None:
        engine = get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Quote service starting (mode=%s)", engine.mode.value)
        yield
        if owns_engine:
            await shutdown_engine()
        else:
            await engine.shutdown()

    app = FastAPI(title="quotestream", lifespan=lifespan)
    app.include_router(create_quote_router(engine))
    return app
