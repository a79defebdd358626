"""
Arbitrage scanner: feeds market events into the state store and detector
and publishes opportunities.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from ..config import ArbitrageConfig
from ..events import EventBus, MarketResolved, NewMarket, OpportunityDetected, QuoteUpdate
from .detector import ArbitrageDetector, ArbitrageOpportunity
from .market_state import MarketStateStore

if TYPE_CHECKING:
    from ..ingestion.connection import ConnectionManager
    from ..ingestion.poller import OrderBookPoller

logger = logging.getLogger(__name__)


class ArbitrageScanner:
    """Subscribes to NewMarket / QuoteUpdate / MarketResolved on the bus"""

    def __init__(
        self,
        bus: EventBus,
        store: Optional[MarketStateStore] = None,
        detector: Optional[ArbitrageDetector] = None,
        connection: Optional["ConnectionManager"] = None,
        poller: Optional["OrderBookPoller"] = None,
        config: Optional[ArbitrageConfig] = None,
    ):
        """
        Args:
            bus: Event bus to consume from and publish to
            store: Market state (shared with the metadata resolver)
            detector: Arbitrage detector
            connection: Used to subscribe to quotes for newly listed markets
            poller: Kept in sync with the set of tracked tokens
            config: Thresholds, used when no detector is given
        """
        self.bus = bus
        self.store = store or MarketStateStore()
        self.detector = detector or ArbitrageDetector(config)
        self.connection = connection
        self.poller = poller
        self._running = False

    def start(self):
        if self._running:
            return
        self.bus.subscribe(NewMarket, self.on_new_market)
        self.bus.subscribe(QuoteUpdate, self.on_quote)
        self.bus.subscribe(MarketResolved, self.on_market_resolved)
        self._running = True
        logger.info("Arbitrage scanner active")

    def stop(self):
        self.bus.unsubscribe(NewMarket, self.on_new_market)
        self.bus.unsubscribe(QuoteUpdate, self.on_quote)
        self.bus.unsubscribe(MarketResolved, self.on_market_resolved)
        self._running = False
        logger.info("Arbitrage scanner stopped")

    async def on_new_market(self, event: NewMarket):
        snapshot = self.store.register_market(
            event.market_id, event.question, event.asset_ids, event.outcomes
        )
        if self.poller:
            self.poller.update_targets(self.store.token_targets())
        if self.connection and event.asset_ids:
            await self.connection.subscribe_assets(event.asset_ids)

        # Quotes may have arrived before the listing
        self._analyze(event.market_id, snapshot)

    def on_quote(self, event: QuoteUpdate):
        snapshot = self.store.upsert_quote(
            event.market_id, event.asset_id, event.best_ask, event.ask_size
        )
        self._analyze(event.market_id, snapshot)

    def on_market_resolved(self, event: MarketResolved):
        if self.store.mark_resolved(event.market_id, event.winning_asset_id) and self.poller:
            self.poller.update_targets(self.store.token_targets())

    def _analyze(self, market_id: str, snapshot) -> Optional[ArbitrageOpportunity]:
        opportunity = self.detector.analyze(market_id, snapshot)
        if opportunity is not None:
            self.bus.publish(OpportunityDetected(opportunity))
        return opportunity

    def get_latest_opportunities(self) -> List[ArbitrageOpportunity]:
        return self.detector.get_latest_opportunities()

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "store": self.store.get_stats(),
            "detector": self.detector.get_stats(),
        }
