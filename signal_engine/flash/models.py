"""
Data model for the flash-move pipeline.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Strategy(str, Enum):
    AGGRESSIVE = "aggressive"
    CONSERVATIVE = "conservative"
    ADAPTIVE = "adaptive"


class PositionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class EnhancedFlashMoveEvent:
    """A detected price dislocation. Immutable once emitted."""
    token_id: str
    condition_id: str
    old_price: float
    new_price: float
    velocity: float  # relative change over the window
    momentum: float
    volume_spike: float  # 1.0 is neutral
    confidence: float  # 0..1
    timestamp: float
    question: str = ""
    image: str = ""
    market_slug: str = ""
    strategy: Optional[str] = None  # detection trigger label
    risk_score: Optional[float] = None  # provisional, from the detector
    imbalance: float = 1.0

    @property
    def direction(self) -> str:
        return "BUY" if self.velocity > 0 else "SELL"


@dataclass(frozen=True)
class RiskAssessment:
    is_too_risky: bool
    reason: str
    risk_score: float  # 0..100
    recommended_strategy: Strategy
    position_size: float  # USD
    max_slippage: float  # fraction, e.g. 0.02


@dataclass
class ActiveFlashPosition:
    token_id: str
    condition_id: str
    entry_price: float
    shares: float
    direction: str  # BUY or SELL
    strategy: Strategy
    timestamp: float = field(default_factory=time.time)
    current_price: Optional[float] = None
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    order_id: Optional[str] = None
    state: PositionState = PositionState.OPEN

    @property
    def mark_price(self) -> float:
        return self.current_price if self.current_price is not None else self.entry_price

    @property
    def exposure(self) -> float:
        return self.shares * self.mark_price


@dataclass
class FlashMoveResult:
    success: bool
    strategy: str
    execution_time: float  # seconds
    slippage: Optional[float] = None
    order_id: Optional[str] = None
    shares_filled: Optional[float] = None
    price_filled: Optional[float] = None
    error_msg: Optional[str] = None


@dataclass
class PortfolioRiskMetrics:
    total_exposure: float = 0.0
    concurrent_positions: int = 0
    max_single_position: float = 0.0
    risk_score: float = 0.0
    correlation_risk: float = 0.0
