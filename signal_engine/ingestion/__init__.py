"""
Market data ingestion.
Handles the market socket, frame routing, and the REST polling fallback.
"""

from .connection import ConnectionManager, ConnectionState, backoff_delay
from .router import MarketDataRouter
from .poller import OrderBookPoller

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "backoff_delay",
    "MarketDataRouter",
    "OrderBookPoller",
]
