"""
Intra-market arbitrage detection on live quotes.

HOW IT WORKS:
In a market where exactly one outcome pays $1.00, if the best asks are:
- Outcome A: $0.40
- Outcome B: $0.55
- Total: $0.95

Buying one share of each costs $0.95 and one MUST pay $1.00, so the
guaranteed profit is $0.05 (5.26% ROI on the capital committed).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import ArbitrageConfig
from .market_state import MarketSnapshot, SnapshotState

logger = logging.getLogger(__name__)


@dataclass
class LegQuote:
    token_id: str
    outcome: str
    price: float
    depth: float


@dataclass
class ArbitrageOpportunity:
    """Represents a risk-free arbitrage opportunity"""
    market_id: str
    question: str
    combined_cost: float  # Cost to buy one share of every outcome
    potential_profit: float  # 1.0 - combined_cost
    roi: float  # percent of combined_cost
    capacity_usd: float  # min leg depth * cost, 0 under the quote-only feed
    legs: List[LegQuote] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


class ArbitrageDetector:
    """
    Keeps at most one live opportunity per market.

    A stored opportunity is only replaced when the new ROI beats it by more
    than the hysteresis margin, so alerts do not oscillate on every tick.
    """

    def __init__(self, config: Optional[ArbitrageConfig] = None):
        self.config = config or ArbitrageConfig()
        self._opportunities: Dict[str, ArbitrageOpportunity] = {}

        # Stats
        self._analyses = 0
        self._found = 0
        self._replaced = 0

    def min_roi(self, is_crypto: bool) -> float:
        return self.config.min_roi_crypto if is_crypto else self.config.min_roi_default

    def evaluate(self, market_id: str, snapshot: MarketSnapshot, now: Optional[float] = None) -> Optional[ArbitrageOpportunity]:
        """
        Price a complete market without touching stored state.

        Returns an opportunity if the combined cost clears every threshold.
        """
        legs = snapshot.legs
        if not legs:
            return None

        combined_cost = 0.0
        min_depth = float("inf")
        for leg in legs:
            # Resolved or degenerate outcome
            if leg.price >= 1.0 or leg.price <= 0:
                return None
            combined_cost += leg.price
            min_depth = min(min_depth, leg.size)

        if not (self.config.min_combined_cost < combined_cost < self.config.max_combined_cost):
            return None

        profit = 1.0 - combined_cost
        roi = (profit / combined_cost) * 100
        if roi < self.min_roi(snapshot.is_crypto):
            return None

        return ArbitrageOpportunity(
            market_id=market_id,
            question=snapshot.question,
            combined_cost=combined_cost,
            potential_profit=profit,
            roi=roi,
            capacity_usd=min_depth * combined_cost,
            legs=[LegQuote(l.token_id, l.outcome, l.price, l.size) for l in legs],
            timestamp=now if now is not None else time.time(),
        )

    def analyze(self, market_id: str, snapshot: MarketSnapshot, now: Optional[float] = None) -> Optional[ArbitrageOpportunity]:
        """
        Analyze a market and update the stored opportunity.

        Returns the opportunity if it is new or replaced one (i.e. should be
        emitted), otherwise None.
        """
        if snapshot.state == SnapshotState.RESOLVED or not snapshot.is_complete:
            return None

        self._analyses += 1
        opportunity = self.evaluate(market_id, snapshot, now)
        if opportunity is None:
            return None

        existing = self._opportunities.get(market_id)
        if existing is not None:
            if opportunity.roi > existing.roi + self.config.roi_hysteresis:
                self._opportunities[market_id] = opportunity
                self._replaced += 1
                logger.info(
                    f"ARB IMPROVED: {snapshot.question[:60]} | ROI: {existing.roi:.2f}% -> {opportunity.roi:.2f}%"
                )
                return opportunity
            return None

        self._opportunities[market_id] = opportunity
        self._found += 1
        logger.info(
            f"ARB FOUND: {snapshot.question[:60]} | Cost: ${opportunity.combined_cost:.4f} | ROI: {opportunity.roi:.2f}%"
        )
        return opportunity

    def get_latest_opportunities(self, now: Optional[float] = None) -> List[ArbitrageOpportunity]:
        """Live opportunities, best ROI first, dropping anything past its TTL"""
        now = now if now is not None else time.time()
        ttl = self.config.opportunity_ttl_seconds

        self._opportunities = {
            market_id: opp
            for market_id, opp in self._opportunities.items()
            if now - opp.timestamp < ttl
        }
        return sorted(self._opportunities.values(), key=lambda o: o.roi, reverse=True)

    def get_opportunity(self, market_id: str) -> Optional[ArbitrageOpportunity]:
        return self._opportunities.get(market_id)

    def get_stats(self) -> dict:
        return {
            "analyses": self._analyses,
            "found": self._found,
            "replaced": self._replaced,
            "live": len(self._opportunities),
        }
