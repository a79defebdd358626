"""
Risk assessment for flash moves.
Scores each event, vetoes the dangerous ones, and sizes the rest against
portfolio limits.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, Mapping, Optional

from ..config import FlashMoveConfig
from .models import (
    ActiveFlashPosition,
    EnhancedFlashMoveEvent,
    PortfolioRiskMetrics,
    RiskAssessment,
    Strategy,
)

logger = logging.getLogger(__name__)

MAX_RISK_SCORE = 100.0
KILL_SWITCH_SCORE = 90.0
MIN_CONFIDENCE = 0.3
MAX_ABS_VELOCITY = 0.5
MAX_SLIPPAGE_CEILING = 0.05

HISTORY_LENGTH = 10
HISTORY_RETENTION_SECONDS = 3600.0

STALE_POSITION_SECONDS = 300.0
CORRELATION_WINDOW_SECONDS = 30.0
CORRELATED_POSITIONS = 3


@dataclass
class RiskTrend:
    """Summary of a token's recent risk scores"""
    average: float
    direction: str  # rising, falling, stable
    samples: int


class FlashRiskManager:
    """
    Scores flash moves and tracks portfolio-level risk.

    Score components (summed, capped at 100):
    - Volatility: |velocity| x 30
    - Velocity tier
    - Momentum tier
    - Volume spike tier
    - Time of day
    """

    def __init__(self, config: Optional[FlashMoveConfig] = None):
        """
        Initialize risk manager.

        Args:
            config: Flash-move parameters (uses defaults if not provided)
        """
        self.config = config or FlashMoveConfig()

        # token_id -> recent scores, and when the token was last assessed
        self._history: Dict[str, Deque[float]] = {}
        self._last_assessed: Dict[str, float] = {}

        self._metrics = PortfolioRiskMetrics()

    def assess_risk(self, event: EnhancedFlashMoveEvent) -> RiskAssessment:
        """Score an event and decide whether, how, and how much to trade"""
        volatility_risk = self.calculate_volatility_risk(event)
        velocity_risk = self.calculate_velocity_risk(event)
        momentum_risk = self.calculate_momentum_risk(event)
        volume_risk = self.calculate_volume_risk(event)
        time_risk = self.calculate_time_risk(event)

        risk_score = min(
            volatility_risk + velocity_risk + momentum_risk + volume_risk + time_risk,
            MAX_RISK_SCORE,
        )

        assessment = RiskAssessment(
            is_too_risky=self.is_too_risky(risk_score, event),
            reason=self.generate_reason(volatility_risk, velocity_risk, momentum_risk, volume_risk, time_risk),
            risk_score=risk_score,
            recommended_strategy=self.recommend_strategy(risk_score, event),
            position_size=self.calculate_position_size(event, risk_score),
            max_slippage=self.calculate_max_slippage(risk_score, event),
        )

        self.track_assessment(event.token_id, risk_score)

        logger.debug(
            f"Risk assessment {event.token_id[:20]}... score={risk_score:.1f} "
            f"strategy={assessment.recommended_strategy.value} size=${assessment.position_size:.2f}"
        )
        return assessment

    # ------------------------------------------------------------------
    # Score components
    # ------------------------------------------------------------------

    def calculate_volatility_risk(self, event: EnhancedFlashMoveEvent) -> float:
        return abs(event.velocity) * 30

    def calculate_velocity_risk(self, event: EnhancedFlashMoveEvent) -> float:
        velocity = abs(event.velocity)
        if velocity > 0.1:
            return 40
        if velocity > 0.05:
            return 25
        if velocity > 0.03:
            return 15
        return 5

    def calculate_momentum_risk(self, event: EnhancedFlashMoveEvent) -> float:
        # Strong one-way pressure can be manipulation
        momentum = abs(event.momentum)
        if momentum > 0.5:
            return 20
        if momentum > 0.2:
            return 10
        if momentum > 0.1:
            return 5
        return 2

    def calculate_volume_risk(self, event: EnhancedFlashMoveEvent) -> float:
        spike = event.volume_spike
        if spike > 10:
            return 15
        if spike > 5:
            return 8
        if spike > 2:
            return 3
        return 1

    def calculate_time_risk(self, event: EnhancedFlashMoveEvent) -> float:
        """Local hour of the event: thin overnight books are riskier"""
        hour = datetime.fromtimestamp(event.timestamp).hour
        if 2 <= hour <= 6:
            return 10
        if hour >= 22 or hour <= 1:
            return 8
        if 10 <= hour <= 16:
            return 2
        return 5

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def is_too_risky(self, risk_score: float, event: EnhancedFlashMoveEvent) -> bool:
        if self.config.enable_volatility_kill_switch and risk_score > KILL_SWITCH_SCORE:
            return True
        if event.confidence < MIN_CONFIDENCE:
            return True
        if abs(event.velocity) > MAX_ABS_VELOCITY:
            return True
        return False

    def recommend_strategy(self, risk_score: float, event: EnhancedFlashMoveEvent) -> Strategy:
        preferred = Strategy(self.config.preferred_strategy)
        if preferred != Strategy.ADAPTIVE:
            return preferred

        if event.confidence > 0.8 and risk_score < 40:
            return Strategy.AGGRESSIVE
        if event.confidence < 0.5 or risk_score > 60:
            return Strategy.CONSERVATIVE
        return Strategy.ADAPTIVE

    def calculate_position_size(self, event: EnhancedFlashMoveEvent, risk_score: float) -> float:
        """Position size in USD, never below the configured minimum"""
        size = self.config.base_trade_size
        size *= 0.5 + event.confidence * 0.5

        if risk_score > 50:
            size *= 0.5
        elif risk_score > 30:
            size *= 0.7

        if self.would_exceed_limits(size):
            size *= 0.5

        return max(size, self.config.min_position_size)

    def calculate_max_slippage(self, risk_score: float, event: EnhancedFlashMoveEvent) -> float:
        slippage = self.config.max_slippage_percent
        if event.confidence > 0.8:
            slippage *= 0.5
        if risk_score > 60:
            slippage *= 1.5
        return min(slippage, MAX_SLIPPAGE_CEILING)

    def generate_reason(
        self,
        volatility_risk: float,
        velocity_risk: float,
        momentum_risk: float,
        volume_risk: float,
        time_risk: float,
    ) -> str:
        reasons = []
        if volatility_risk > 20:
            reasons.append("High volatility")
        if velocity_risk > 20:
            reasons.append("Extreme velocity")
        if momentum_risk > 10:
            reasons.append("High momentum")
        if volume_risk > 8:
            reasons.append("Volume spike")
        if time_risk > 8:
            reasons.append("High-risk timing")
        return ", ".join(reasons) if reasons else "Normal market conditions"

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def track_assessment(self, token_id: str, risk_score: float, now: Optional[float] = None):
        history = self._history.get(token_id)
        if history is None:
            history = deque(maxlen=HISTORY_LENGTH)
            self._history[token_id] = history
        history.append(risk_score)
        self._last_assessed[token_id] = now if now is not None else time.time()

    def get_risk_history(self, token_id: str) -> list:
        return list(self._history.get(token_id, ()))

    def get_risk_trend(self, token_id: str) -> Optional[RiskTrend]:
        """Average of recent scores and whether the latest half is higher or lower"""
        scores = self.get_risk_history(token_id)
        if not scores:
            return None

        average = sum(scores) / len(scores)
        if len(scores) < 2:
            return RiskTrend(average=average, direction="stable", samples=1)

        half = len(scores) // 2
        older = sum(scores[:half]) / half
        newer = sum(scores[half:]) / (len(scores) - half)
        if newer > older + 5:
            direction = "rising"
        elif newer < older - 5:
            direction = "falling"
        else:
            direction = "stable"
        return RiskTrend(average=average, direction=direction, samples=len(scores))

    # ------------------------------------------------------------------
    # Portfolio
    # ------------------------------------------------------------------

    def update_portfolio_metrics(
        self,
        positions: Mapping[str, ActiveFlashPosition],
        now: Optional[float] = None,
    ) -> PortfolioRiskMetrics:
        """Recompute portfolio metrics from the live position map"""
        now = now if now is not None else time.time()
        exposures = [p.exposure for p in positions.values()]

        self._metrics = PortfolioRiskMetrics(
            total_exposure=sum(exposures),
            concurrent_positions=len(positions),
            max_single_position=max(exposures, default=0.0),
            risk_score=self._portfolio_risk_score(positions, now),
            correlation_risk=self._correlation_risk(positions),
        )
        return self._metrics

    def _portfolio_risk_score(self, positions: Mapping[str, ActiveFlashPosition], now: float) -> float:
        if not positions:
            return 0.0
        # Positions held past the flash window are riskier
        total = sum(
            20 if now - p.timestamp > STALE_POSITION_SECONDS else 5
            for p in positions.values()
        )
        return total / len(positions)

    def _correlation_risk(self, positions: Mapping[str, ActiveFlashPosition]) -> float:
        """15 when several positions were opened in quick succession"""
        if len(positions) < CORRELATED_POSITIONS:
            return 0.0

        entry_times = sorted(p.timestamp for p in positions.values())
        quick_gaps = sum(
            1 for earlier, later in zip(entry_times, entry_times[1:])
            if later - earlier < CORRELATION_WINDOW_SECONDS
        )
        return 15.0 if quick_gaps >= CORRELATED_POSITIONS - 1 else 0.0

    def would_exceed_limits(self, position_size: float) -> bool:
        max_exposure = self.config.max_concurrent_trades * self.config.base_trade_size * 2
        return (
            self._metrics.total_exposure + position_size > max_exposure
            or self._metrics.concurrent_positions >= self.config.max_concurrent_trades
        )

    def get_portfolio_metrics(self) -> PortfolioRiskMetrics:
        return self._metrics

    def cleanup(self, now: Optional[float] = None):
        """Forget tokens not assessed within the last hour"""
        now = now if now is not None else time.time()
        for token_id, assessed_at in list(self._last_assessed.items()):
            if now - assessed_at > HISTORY_RETENTION_SECONDS:
                del self._last_assessed[token_id]
                self._history.pop(token_id, None)

    def get_stats(self) -> dict:
        return {
            "tracked_tokens": len(self._history),
            "total_exposure": self._metrics.total_exposure,
            "concurrent_positions": self._metrics.concurrent_positions,
            "portfolio_risk": self._metrics.risk_score,
            "correlation_risk": self._metrics.correlation_risk,
        }
