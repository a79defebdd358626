"""
In-memory view of every market seen on the feed.

One MarketSnapshot per market id, mutated in place by quote updates.
Snapshots are never removed; memory is bounded by the number of active
markets and everything is rebuilt from the live feed after a restart.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Crypto price markets move fast, so they get a lower ROI bar
CRYPTO_PATTERN = re.compile(
    r"\b(BTC|ETH|SOL|LINK|MATIC|DOGE|Price|climb|fall|above|below|closes|resolves)\b",
    re.IGNORECASE,
)

PENDING_QUESTION = "Syncing..."
UNKNOWN_OUTCOME = "UNK"


def is_crypto_question(question: str) -> bool:
    return bool(CRYPTO_PATTERN.search(question or ""))


class SnapshotState(str, Enum):
    PENDING = "pending"  # created from a quote before market metadata arrived
    POPULATED = "populated"
    RESOLVED = "resolved"


@dataclass
class OutcomeLeg:
    token_id: str
    outcome: str
    price: float = 0.0  # best ask
    size: float = 0.0  # depth at best ask, 0 when the source has none


@dataclass
class MarketSnapshot:
    market_id: str
    question: str
    is_neg_risk: bool
    is_crypto: bool
    total_legs_expected: int
    outcomes: Dict[str, OutcomeLeg] = field(default_factory=dict)
    state: SnapshotState = SnapshotState.PENDING
    winning_asset_id: Optional[str] = None

    @property
    def legs(self) -> List[OutcomeLeg]:
        return list(self.outcomes.values())

    @property
    def is_complete(self) -> bool:
        """True once every expected leg has been quoted"""
        return len(self.outcomes) >= self.total_legs_expected


class MarketStateStore:
    """Map of market id -> MarketSnapshot with a token -> market index"""

    def __init__(self):
        self._snapshots: Dict[str, MarketSnapshot] = {}
        self._token_index: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._snapshots)

    def __contains__(self, market_id: str) -> bool:
        return market_id in self._snapshots

    def get(self, market_id: str) -> Optional[MarketSnapshot]:
        return self._snapshots.get(market_id)

    def market_for_token(self, token_id: str) -> Optional[str]:
        return self._token_index.get(token_id)

    def token_targets(self) -> Dict[str, str]:
        """token id -> market id for every unresolved market"""
        return {
            token_id: market_id
            for token_id, market_id in self._token_index.items()
            if self._snapshots[market_id].state != SnapshotState.RESOLVED
        }

    def register_market(
        self,
        market_id: str,
        question: str,
        asset_ids: List[str],
        outcomes: List[str],
    ) -> MarketSnapshot:
        """Create or refresh a snapshot from new-market metadata"""
        existing = self._snapshots.get(market_id)

        legs: Dict[str, OutcomeLeg] = {}
        for idx, token_id in enumerate(asset_ids):
            label = outcomes[idx] if idx < len(outcomes) and outcomes[idx] else f"Outcome {idx}"
            leg = OutcomeLeg(token_id=token_id, outcome=label)

            # Keep any price that arrived before the metadata did
            if existing and token_id in existing.outcomes:
                seen = existing.outcomes[token_id]
                leg.price = seen.price
                leg.size = seen.size

            legs[token_id] = leg
            self._token_index[token_id] = market_id

        snapshot = MarketSnapshot(
            market_id=market_id,
            question=question,
            is_neg_risk=len(asset_ids) == 2,
            is_crypto=is_crypto_question(question),
            total_legs_expected=len(asset_ids),
            outcomes=legs,
            state=SnapshotState.POPULATED,
        )
        if existing and existing.state == SnapshotState.RESOLVED:
            snapshot.state = SnapshotState.RESOLVED
            snapshot.winning_asset_id = existing.winning_asset_id
        self._snapshots[market_id] = snapshot

        if snapshot.is_crypto:
            logger.info(f"New crypto market: {question}")
        return snapshot

    def upsert_quote(
        self,
        market_id: str,
        token_id: str,
        best_ask: float,
        size: float = 0.0,
    ) -> MarketSnapshot:
        """Record the best ask for one leg, creating a placeholder market if needed"""
        snapshot = self._snapshots.get(market_id)
        if snapshot is None:
            snapshot = MarketSnapshot(
                market_id=market_id,
                question=PENDING_QUESTION,
                is_neg_risk=True,
                is_crypto=False,
                total_legs_expected=2,
            )
            self._snapshots[market_id] = snapshot
            logger.debug(f"Placeholder snapshot for unseen market {market_id[:20]}...")

        leg = snapshot.outcomes.get(token_id)
        if leg is None:
            leg = OutcomeLeg(token_id=token_id, outcome=UNKNOWN_OUTCOME)
            snapshot.outcomes[token_id] = leg
            self._token_index[token_id] = market_id

        leg.price = best_ask
        leg.size = max(size, 0.0)
        return snapshot

    def mark_resolved(self, market_id: str, winning_asset_id: Optional[str] = None) -> Optional[MarketSnapshot]:
        snapshot = self._snapshots.get(market_id)
        if snapshot is None:
            return None
        snapshot.state = SnapshotState.RESOLVED
        snapshot.winning_asset_id = winning_asset_id
        return snapshot

    def get_stats(self) -> dict:
        by_state: Dict[str, int] = {s.value: 0 for s in SnapshotState}
        for snapshot in self._snapshots.values():
            by_state[snapshot.state.value] += 1
        return {
            "markets": len(self._snapshots),
            "tokens": len(self._token_index),
            **by_state,
        }
