"""
Intra-market arbitrage detection.
Finds markets where buying every outcome costs less than the guaranteed $1.00 payout.
"""

from .market_state import MarketStateStore, MarketSnapshot, OutcomeLeg, SnapshotState
from .detector import ArbitrageDetector, ArbitrageOpportunity, LegQuote
from .scanner import ArbitrageScanner

__all__ = [
    "MarketStateStore",
    "MarketSnapshot",
    "OutcomeLeg",
    "SnapshotState",
    "ArbitrageDetector",
    "ArbitrageOpportunity",
    "LegQuote",
    "ArbitrageScanner",
]
