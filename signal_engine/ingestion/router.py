"""
Market-data router: turns raw CLOB market-channel messages into typed events.

Message types handled:
- new_market: A market was listed (asset ids + outcome labels)
- best_bid_ask: Top-of-book quote for one asset
- price_change: Batched quote changes
- book: Full order book snapshot
- last_trade_price / trade: Executions
- market_resolved: Resolution notice
- tick_size_change: Tick size update
"""

import logging
from typing import Optional

from ..events import (
    EventBus,
    MarketResolved,
    NewMarket,
    PriceTick,
    QuoteUpdate,
    TickSizeChange,
    TradeTick,
)

logger = logging.getLogger(__name__)


def _to_float(value, default: float) -> float:
    """Parse a numeric field that may arrive as a string, falling back on junk"""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _midpoint(best_bid: float, best_ask: float) -> Optional[float]:
    if best_bid > 0 and best_ask > 0 and best_ask > best_bid:
        return (best_bid + best_ask) / 2
    return None


class MarketDataRouter:
    """Dispatches parsed socket messages onto the event bus"""

    def __init__(self, bus: EventBus):
        self.bus = bus

        # Stats
        self._routed = 0
        self._ignored = 0
        self._failed = 0

    def dispatch(self, msg: dict):
        """Route one message. Never raises: bad messages are logged and skipped."""
        if not isinstance(msg, dict):
            self._ignored += 1
            return

        try:
            self._route(msg)
        except Exception as e:
            self._failed += 1
            logger.warning(f"Failed to route {msg.get('event_type')} message: {e}")

    def _route(self, msg: dict):
        # Initial dumps carry a list of quotes under "data"
        if msg.get("type") == "initial_dump" and isinstance(msg.get("data"), list):
            for item in msg["data"]:
                if isinstance(item, dict):
                    self.dispatch({
                        **item,
                        "event_type": "best_bid_ask",
                        "asset_id": item.get("asset_id") or item.get("token_id"),
                    })
            return

        event_type = msg.get("event_type")

        if event_type == "new_market":
            self._handle_new_market(msg)
        elif event_type == "best_bid_ask":
            self._handle_best_bid_ask(msg)
        elif event_type == "price_change":
            self._handle_price_change(msg)
        elif event_type == "book":
            self._handle_book(msg)
        elif event_type == "last_trade_price":
            self._handle_last_trade_price(msg)
        elif event_type in ("trade", "trades"):
            self._handle_trade(msg)
        elif event_type == "market_resolved":
            self._handle_market_resolved(msg)
        elif event_type == "tick_size_change":
            self._handle_tick_size_change(msg)
        else:
            self._ignored += 1
            logger.debug(f"Unhandled market message type: {event_type}")
            return

        self._routed += 1

    def _handle_new_market(self, msg: dict):
        market_id = msg.get("market")
        if not market_id:
            return
        self.bus.publish(NewMarket(
            market_id=market_id,
            question=msg.get("question") or "New Listing",
            asset_ids=[str(a) for a in msg.get("assets_ids") or []],
            outcomes=[str(o) for o in msg.get("outcomes") or []],
        ))

    def _handle_best_bid_ask(self, msg: dict):
        asset_id = msg.get("asset_id") or msg.get("token_id")
        if not asset_id:
            return

        # A missing ask reads as 1.0, which disqualifies the leg downstream
        best_bid = _to_float(msg.get("best_bid"), 0.0)
        best_ask = _to_float(msg.get("best_ask"), 1.0)

        if msg.get("market"):
            self.bus.publish(QuoteUpdate(
                market_id=msg["market"],
                asset_id=asset_id,
                best_bid=best_bid,
                best_ask=best_ask,
            ))

        mid = _midpoint(best_bid, best_ask)
        if mid is not None:
            self.bus.publish(PriceTick(asset_id, mid, best_bid=best_bid, best_ask=best_ask))

    def _handle_price_change(self, msg: dict):
        for change in msg.get("price_changes") or []:
            asset_id = change.get("asset_id")
            if not asset_id:
                continue
            best_bid = _to_float(change.get("best_bid"), 0.0)
            best_ask = _to_float(change.get("best_ask"), 1.0)
            mid = _midpoint(best_bid, best_ask)
            if mid is not None:
                self.bus.publish(PriceTick(asset_id, mid, best_bid=best_bid, best_ask=best_ask))

    def _handle_book(self, msg: dict):
        asset_id = msg.get("asset_id")
        bids = msg.get("bids") or msg.get("buys") or []
        asks = msg.get("asks") or msg.get("sells") or []
        if not asset_id or not bids or not asks:
            return

        best_bid = max(_to_float(b.get("price"), 0.0) for b in bids)
        best_ask = min(_to_float(a.get("price"), 1.0) for a in asks)
        mid = _midpoint(best_bid, best_ask)
        if mid is not None:
            self.bus.publish(PriceTick(asset_id, mid, best_bid=best_bid, best_ask=best_ask))

    def _handle_last_trade_price(self, msg: dict):
        asset_id = msg.get("asset_id")
        price = _to_float(msg.get("price"), 0.0)
        if not asset_id or price <= 0:
            return
        self.bus.publish(PriceTick(asset_id, price))

    def _handle_trade(self, msg: dict):
        asset_id = msg.get("asset_id") or msg.get("token_id")
        price = _to_float(msg.get("price"), 0.0)
        if not asset_id or price <= 0:
            return
        self.bus.publish(TradeTick(
            asset_id=asset_id,
            price=price,
            size=_to_float(msg.get("size"), 0.0),
            side=str(msg.get("side") or "").upper(),
        ))

    def _handle_market_resolved(self, msg: dict):
        market_id = msg.get("market")
        if not market_id:
            return
        question = msg.get("question") or "Unknown"
        logger.info(f"Market resolved: {question} -> {msg.get('winning_outcome')}")
        self.bus.publish(MarketResolved(
            market_id=market_id,
            winning_asset_id=msg.get("winning_asset_id"),
            winning_outcome=msg.get("winning_outcome"),
            question=question,
        ))

    def _handle_tick_size_change(self, msg: dict):
        asset_id = msg.get("asset_id")
        logger.warning(
            f"Tick size change: {asset_id} | {msg.get('old_tick_size')} -> {msg.get('new_tick_size')}"
        )
        self.bus.publish(TickSizeChange(
            asset_id=asset_id,
            old_tick_size=msg.get("old_tick_size"),
            new_tick_size=msg.get("new_tick_size"),
        ))

    def get_stats(self) -> dict:
        return {
            "routed": self._routed,
            "ignored": self._ignored,
            "failed": self._failed,
        }
