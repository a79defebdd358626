"""
Flash-move detection on per-asset rolling price/volume windows.

Signals computed on every tick:
- velocity: relative price change since the oldest sample in the window
- micro-velocity: the same over the last few hundred milliseconds
- momentum: how consistently recent changes point the same way, scaled by
  the size of the move
- volume spike: current trade size over the trailing average (1.0 = normal)
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple

from ..config import FlashMoveConfig
from .metadata import MarketMetadataResolver, placeholder_metadata
from .models import EnhancedFlashMoveEvent

logger = logging.getLogger(__name__)

HISTORY_RETENTION_SECONDS = 300.0
MOMENTUM_LOOKBACK = 5
VOLUME_LOOKBACK = 5
NEUTRAL_VOLUME_SPIKE = 1.0


@dataclass
class PricePoint:
    price: float
    timestamp: float
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None


class FlashDetectionEngine:
    """Maintains rolling windows and raises EnhancedFlashMoveEvents"""

    def __init__(
        self,
        config: Optional[FlashMoveConfig] = None,
        metadata: Optional[MarketMetadataResolver] = None,
    ):
        self.config = config or FlashMoveConfig()
        self.metadata = metadata

        self._price_history: Dict[str, Deque[PricePoint]] = {}
        self._volume_history: Dict[str, Deque[Tuple[float, float]]] = {}
        self._last_fired: Dict[str, float] = {}

        # Stats
        self._ticks = 0
        self._detections = 0
        self._suppressed = 0

    async def detect_flash_move(
        self,
        token_id: str,
        current_price: float,
        current_volume: Optional[float] = None,
        best_bid: Optional[float] = None,
        best_ask: Optional[float] = None,
        now: Optional[float] = None,
    ) -> Optional[EnhancedFlashMoveEvent]:
        """Record a tick and return an event if it completes a flash move"""
        now = now if now is not None else time.time()
        if current_price is None or current_price <= 0:
            return None
        self._ticks += 1

        history = self._price_history.get(token_id)
        if history is None:
            history = deque(maxlen=self.config.history_size)
            self._price_history[token_id] = history
        history.append(PricePoint(current_price, now, best_bid, best_ask))
        while history and now - history[0].timestamp > self.config.window_seconds:
            history.popleft()

        # Spike is measured against volumes seen before this tick
        volume_spike = self.calculate_volume_spike(token_id, current_volume)
        if current_volume:
            volumes = self._volume_history.get(token_id)
            if volumes is None:
                volumes = deque(maxlen=self.config.volume_history_size)
                self._volume_history[token_id] = volumes
            volumes.append((current_volume, now))

        if len(history) < 2:
            return None

        oldest = history[0]
        velocity = (current_price - oldest.price) / oldest.price
        micro_velocity = self._micro_velocity(history, current_price, now)
        momentum = self.calculate_momentum(list(history))

        velocity_triggered = abs(velocity) >= self.config.velocity_threshold
        micro_triggered = abs(micro_velocity) >= self.config.micro_tick_threshold
        if not velocity_triggered and not micro_triggered:
            return None

        last = self._last_fired.get(token_id)
        if last is not None and now - last < self.config.cooldown_seconds:
            self._suppressed += 1
            return None

        momentum_triggered = abs(momentum) >= self.config.momentum_threshold
        volume_triggered = volume_spike >= self.config.volume_spike_multiplier

        confidence = self.calculate_confidence(
            velocity, momentum, volume_spike, micro_velocity, len(history)
        )

        if micro_triggered:
            strategy = "micro-tick"
        elif momentum_triggered:
            strategy = "momentum"
        elif volume_triggered:
            strategy = "volume"
        else:
            strategy = "velocity"

        imbalance = 1.0
        if best_bid and best_ask:
            imbalance = best_bid / best_ask

        # Claim the cool-down before suspending so concurrent ticks see it
        self._last_fired[token_id] = now
        if self.metadata is not None:
            try:
                meta = await self.metadata.resolve(token_id)
            except BaseException:
                if last is None:
                    self._last_fired.pop(token_id, None)
                else:
                    self._last_fired[token_id] = last
                raise
        else:
            meta = placeholder_metadata(token_id)

        self._detections += 1

        event = EnhancedFlashMoveEvent(
            token_id=token_id,
            condition_id=meta.condition_id,
            old_price=oldest.price,
            new_price=current_price,
            velocity=velocity,
            momentum=momentum,
            volume_spike=volume_spike,
            confidence=confidence,
            timestamp=now,
            question=meta.question,
            image=meta.image,
            market_slug=meta.market_slug,
            strategy=strategy,
            risk_score=self.calculate_risk_score(velocity, momentum, volume_spike),
            imbalance=imbalance,
        )

        logger.info(
            f"FLASH MOVE DETECTED [{strategy}]: {meta.question or token_id} "
            f"(Velocity: {velocity * 100:.2f}%, Confidence: {confidence * 100:.1f}%)"
        )
        return event

    def _micro_velocity(self, history: Deque[PricePoint], current_price: float, now: float) -> float:
        window = self.config.micro_window_seconds
        for point in history:
            if now - point.timestamp < window:
                if point.price != current_price:
                    return (current_price - point.price) / point.price
                return 0.0
        return 0.0

    def calculate_momentum(self, history: List[PricePoint]) -> float:
        """Share of recent moves agreeing with the net move, times the net relative move"""
        if len(history) < 2:
            return 0.0

        recent = history[-MOMENTUM_LOOKBACK:]
        first, last = recent[0], recent[-1]
        net = last.price - first.price
        if net == 0 or first.price <= 0:
            return 0.0

        deltas = [b.price - a.price for a, b in zip(recent, recent[1:])]
        agreeing = sum(1 for d in deltas if d * net > 0)
        persistence = agreeing / len(deltas)
        return persistence * net / first.price

    def calculate_volume_spike(self, token_id: str, current_volume: Optional[float]) -> float:
        """Current volume over the trailing average; missing data is neutral"""
        if not current_volume or current_volume <= 0:
            return NEUTRAL_VOLUME_SPIKE

        volumes = self._volume_history.get(token_id)
        if not volumes or len(volumes) < VOLUME_LOOKBACK:
            return NEUTRAL_VOLUME_SPIKE

        recent = [v for v, _ in list(volumes)[-VOLUME_LOOKBACK:]]
        average = sum(recent) / len(recent)
        if average <= 0:
            return NEUTRAL_VOLUME_SPIKE
        return current_volume / average

    def calculate_confidence(
        self,
        velocity: float,
        momentum: float,
        volume_spike: float,
        micro_velocity: float,
        sample_count: int,
    ) -> float:
        """
        Signal clarity scaled by how much history backs it.

        Clarity: micro-tick 0.4, velocity 0.3 plus up to 0.2 for exceeding
        the threshold, momentum 0.15, volume 0.15. Two samples give half
        weight, ``confidence_full_samples`` or more give full weight.
        """
        signal = 0.0
        if abs(micro_velocity) >= self.config.micro_tick_threshold:
            signal += 0.4
        if abs(velocity) >= self.config.velocity_threshold:
            excess = abs(velocity) / self.config.velocity_threshold - 1
            signal += 0.3 + min(0.2, 0.1 * excess)
        if abs(momentum) >= self.config.momentum_threshold:
            signal += 0.15
        if volume_spike >= self.config.volume_spike_multiplier:
            signal += 0.15

        span = max(1, self.config.confidence_full_samples - 2)
        sample_factor = 0.5 + 0.5 * min(1.0, max(0, sample_count - 2) / span)
        return min(signal * sample_factor, 1.0)

    def calculate_risk_score(self, velocity: float, momentum: float, volume_spike: float) -> float:
        """Provisional risk score attached to the event"""
        risk = abs(velocity) * 2 + abs(momentum) * 1.5
        # Volume spikes can indicate manipulation
        if volume_spike > 5:
            risk += volume_spike * 0.5
        return min(risk, 100.0)

    def get_history(self, token_id: str) -> List[PricePoint]:
        return list(self._price_history.get(token_id, ()))

    def cleanup(self, now: Optional[float] = None):
        """Drop samples older than five minutes and forget idle assets"""
        now = now if now is not None else time.time()
        cutoff = now - HISTORY_RETENTION_SECONDS

        for token_id in list(self._price_history):
            history = self._price_history[token_id]
            while history and history[0].timestamp <= cutoff:
                history.popleft()
            if not history:
                del self._price_history[token_id]

        for token_id in list(self._volume_history):
            volumes = self._volume_history[token_id]
            while volumes and volumes[0][1] <= cutoff:
                volumes.popleft()
            if not volumes:
                del self._volume_history[token_id]

        for token_id, fired_at in list(self._last_fired.items()):
            if now - fired_at >= self.config.cooldown_seconds:
                del self._last_fired[token_id]

    def get_stats(self) -> dict:
        return {
            "ticks": self._ticks,
            "detections": self._detections,
            "suppressed": self._suppressed,
            "tracked_assets": len(self._price_history),
        }
