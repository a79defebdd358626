"""
Typed publish/subscribe bus shared by every component.

Producers publish dataclass instances; consumers subscribe to the event
class they care about. Coroutine handlers are scheduled as tasks so a slow
consumer (an order in flight, a database write) never stalls the socket
reader that published the event.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Type

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Market data events (published by the router / poller)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NewMarket:
    market_id: str
    question: str
    asset_ids: List[str]
    outcomes: List[str]
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class QuoteUpdate:
    """Top-of-book quote for one outcome token"""
    market_id: str
    asset_id: str
    best_bid: float
    best_ask: float
    ask_size: float = 0.0  # socket quotes carry no depth
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class PriceTick:
    asset_id: str
    price: float
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TradeTick:
    asset_id: str
    price: float
    size: float
    side: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MarketResolved:
    market_id: str
    winning_asset_id: Optional[str]
    winning_outcome: Optional[str]
    question: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TickSizeChange:
    asset_id: str
    old_tick_size: Optional[str]
    new_tick_size: Optional[str]
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Connection events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionStateChanged:
    old_state: str
    new_state: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ConnectionExhausted:
    attempts: int
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Signal events (consumed by UI / persistence / alerting)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpportunityDetected:
    opportunity: Any  # ArbitrageOpportunity


@dataclass(frozen=True)
class FlashMoveDetected:
    event: Any  # EnhancedFlashMoveEvent
    risk: Any  # RiskAssessment
    result: Any  # FlashMoveResult


@dataclass(frozen=True)
class FlashMoveExecuted:
    event: Any
    result: Any
    position: Any  # ActiveFlashPosition or None


@dataclass(frozen=True)
class PositionClosed:
    token_id: str
    reason: str
    timestamp: float = field(default_factory=time.time)


Handler = Callable[[Any], Any]


class EventBus:
    """
    In-process pub/sub keyed by event class.

    Handler exceptions are logged and swallowed here so one misbehaving
    consumer cannot take down the ingestion path.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()

        # Stats
        self._published = 0
        self._handler_errors = 0

    def subscribe(self, event_type: Type, handler: Handler):
        """Register a handler; registering the same handler twice is a no-op"""
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler):
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Type) -> int:
        return len(self._handlers.get(event_type, []))

    def publish(self, event: Any):
        """Deliver an event to every handler registered for its class"""
        self._published += 1

        # Copy so handlers may (un)subscribe while we iterate
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
            except Exception as e:
                self._handler_errors += 1
                logger.error(f"Handler {_name(handler)} failed on {type(event).__name__}: {e}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._handler_errors += 1
            logger.error(f"Async handler failed: {exc!r}")

    async def drain(self):
        """Wait until every scheduled handler (and anything they publish) has finished"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_stats(self) -> dict:
        return {
            "published": self._published,
            "pending": len(self._pending),
            "handler_errors": self._handler_errors,
            "subscriptions": {t.__name__: len(h) for t, h in self._handlers.items()},
        }


def _name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
