"""HTTP surface: SSE quote stream per symbol and REST quote lookup."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

import httpx
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .engine import QuoteSubscriptionEngine
from .models import QuoteUpdate, normalize_symbol

logger = logging.getLogger(__name__)


def create_quote_router(engine: QuoteSubscriptionEngine) -> APIRouter:
    """Create the quote router bound to an engine.

    This factory pattern lets us inject the engine without globals.
    """
    router = APIRouter(prefix="/api", tags=["quotes"])

    @router.get("/stock-quote")
    async def get_stock_quote(symbol: str | None = Query(default=None)) -> dict:
        """Point-in-time quote for one symbol, served through the response cache."""
        if not symbol or not symbol.strip():
            raise HTTPException(status_code=400, detail="Symbol is required")
        client = engine.quote_client
        if client is None:
            raise HTTPException(status_code=503, detail="Quote provider not configured")

        try:
            quote = await client.get_quote(symbol)
        except httpx.HTTPError as e:
            logger.error("Error in stock-quote lookup for %s: %s", symbol, e)
            raise HTTPException(status_code=502, detail="Quote provider error") from e

        if quote is None:
            raise HTTPException(status_code=404, detail="Quote not found")
        return quote.to_dict()

    @router.get("/stream/quotes/{symbol}")
    async def stream_quotes(symbol: str, request: Request) -> StreamingResponse:
        """SSE endpoint for live quotes of a single symbol.

        Each connected client is one subscriber of the engine. Events look like:

            data: {"symbol": "AAPL", "price": 190.5, "change_percent": 0.42, ...}

        Includes a retry directive so the browser auto-reconnects on
        disconnection (EventSource built-in behavior).
        """
        try:
            symbol = normalize_symbol(symbol)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        return StreamingResponse(
            _generate_events(engine, symbol, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.get("/stream/status")
    async def stream_status() -> dict:
        return engine.get_stats()

    return router


async def _generate_events(
    engine: QuoteSubscriptionEngine,
    symbol: str,
    request: Request,
    interval: float = 1.0,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted quote events for one symbol.

    Holds one engine subscription for the lifetime of the client and
    releases it when the client disconnects (checked every `interval`
    seconds while idle) or the stream is cancelled.
    """
    queue: asyncio.Queue[QuoteUpdate] = asyncio.Queue(maxsize=100)

    def on_update(quote: QuoteUpdate) -> None:
        if queue.full():
            queue.get_nowait()  # Slow client: keep the newest quotes
        queue.put_nowait(quote)

    client_ip = request.client.host if request.client else "unknown"
    subscription = engine.subscribe(symbol, on_update)
    logger.info("SSE client connected: %s (%s)", client_ip, symbol)

    try:
        # Tell the client to retry after 1 second if the connection drops
        yield "retry: 1000\n\n"

        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s (%s)", client_ip, symbol)
                break
            try:
                quote = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            yield f"data: {json.dumps(quote.to_dict())}\n\n"
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s (%s)", client_ip, symbol)
        raise
    finally:
        subscription.release()
