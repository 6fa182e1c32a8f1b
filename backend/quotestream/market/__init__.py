"""Realtime quote subscriptions for quotestream.

Public API:
    QuoteUpdate             - Immutable quote snapshot dataclass
    QuoteSubscriptionEngine - One shared feed, many per-symbol subscribers
    Subscription            - Disposable handle returned by subscribe()
    get_engine              - Process-wide engine, created on first use
    shutdown_engine         - Tear the process-wide engine down
    create_quote_engine     - Factory that selects streaming, polling or inert
    create_quote_router     - FastAPI router factory for SSE and quote lookup
"""

from .engine import QuoteSubscriptionEngine, Subscription, get_engine, shutdown_engine
from .factory import create_quote_engine
from .models import ConnectionState, FeedMode, QuoteUpdate, normalize_symbol
from .stream import create_quote_router

__all__ = [
    "QuoteUpdate",
    "ConnectionState",
    "FeedMode",
    "normalize_symbol",
    "QuoteSubscriptionEngine",
    "Subscription",
    "get_engine",
    "shutdown_engine",
    "create_quote_engine",
    "create_quote_router",
]
