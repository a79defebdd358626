"""
Flash-move orchestration: detection -> risk gate -> execution -> persistence.

Consumes PriceTick / TradeTick from the bus while enabled and publishes
FlashMoveDetected, FlashMoveExecuted and PositionClosed.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol

from ..config import FlashMoveConfig
from ..events import EventBus, FlashMoveDetected, FlashMoveExecuted, PositionClosed, PriceTick, TradeTick
from ..execution.trade_executor import PaperTradeExecutor, TradeExecutor
from .detection import FlashDetectionEngine
from .execution import FlashExecutionEngine
from .metadata import MarketMetadataResolver
from .models import ActiveFlashPosition, EnhancedFlashMoveEvent, FlashMoveResult, RiskAssessment
from .risk import FlashRiskManager

logger = logging.getLogger(__name__)


class FlashMovePersistence(Protocol):
    async def save_flash_move(
        self,
        event: EnhancedFlashMoveEvent,
        risk: RiskAssessment,
        result: FlashMoveResult,
    ): ...


class FlashMoveOrchestrator:
    """Wires the detection, risk and execution engines onto the event bus"""

    def __init__(
        self,
        bus: EventBus,
        config: Optional[FlashMoveConfig] = None,
        trade_executor: Optional[TradeExecutor] = None,
        detection: Optional[FlashDetectionEngine] = None,
        risk: Optional[FlashRiskManager] = None,
        execution: Optional[FlashExecutionEngine] = None,
        persistence: Optional[FlashMovePersistence] = None,
        metadata: Optional[MarketMetadataResolver] = None,
    ):
        """
        Args:
            bus: Event bus to consume ticks from and publish results to
            config: Flash-move parameters shared by all three engines
            trade_executor: Used when no execution engine is given (paper by default)
            detection: Detection engine
            risk: Risk manager
            execution: Execution engine
            persistence: Optional store for processed flash moves
            metadata: Metadata resolver for event enrichment
        """
        self.bus = bus
        self.config = config or FlashMoveConfig()
        self.detection = detection or FlashDetectionEngine(self.config, metadata)
        self.risk = risk or FlashRiskManager(self.config)
        self.execution = execution or FlashExecutionEngine(
            self.config, trade_executor or PaperTradeExecutor()
        )
        self.persistence = persistence

        self._enabled = False
        self._cleanup_task: Optional[asyncio.Task] = None
        self._last_detection: Optional[float] = None

        # Stats
        self._detected = 0
        self._vetoed = 0
        self._persist_failures = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def set_enabled(self, enabled: bool):
        """Attach to (or detach from) the tick stream"""
        if enabled == self._enabled:
            return

        self._enabled = enabled
        if enabled:
            self.bus.subscribe(PriceTick, self.on_price_tick)
            self.bus.subscribe(TradeTick, self.on_trade_tick)
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Flash move service ENABLED")
            return

        self.bus.unsubscribe(PriceTick, self.on_price_tick)
        self.bus.unsubscribe(TradeTick, self.on_trade_tick)
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self.close_all_positions("Service disabled")
        logger.info("Flash move service DISABLED")

    # ------------------------------------------------------------------
    # Tick handling
    # ------------------------------------------------------------------

    async def on_price_tick(self, tick: PriceTick):
        await self.handle_tick(
            tick.asset_id, tick.price, best_bid=tick.best_bid, best_ask=tick.best_ask, now=tick.timestamp
        )

    async def on_trade_tick(self, tick: TradeTick):
        await self.handle_tick(tick.asset_id, tick.price, volume=tick.size, now=tick.timestamp)

    async def handle_tick(
        self,
        token_id: str,
        price: float,
        volume: Optional[float] = None,
        best_bid: Optional[float] = None,
        best_ask: Optional[float] = None,
        now: Optional[float] = None,
    ):
        if not self._enabled:
            return

        try:
            self.execution.update_price(token_id, price)
            event = await self.detection.detect_flash_move(
                token_id, price, volume, best_bid=best_bid, best_ask=best_ask, now=now
            )
            if event is not None:
                await self.process_flash_move(event)
        except Exception as e:
            logger.error(f"Error processing tick for {token_id[:20]}...: {e}")

    async def process_flash_move(self, event: EnhancedFlashMoveEvent) -> Optional[FlashMoveResult]:
        """Risk-gate, execute, persist and publish one detected move"""
        if not self._enabled:
            return None

        self._detected += 1
        self._last_detection = event.timestamp

        self.risk.update_portfolio_metrics(self.execution.get_active_positions())
        assessment = self.risk.assess_risk(event)
        if assessment.is_too_risky:
            self._vetoed += 1
            logger.info(
                f"Flash move skipped for {event.question or event.token_id}: "
                f"{assessment.reason} (score {assessment.risk_score:.1f}, confidence {event.confidence:.0%})"
            )
            return None

        result = await self.execution.execute_flash_move(event, assessment)
        await self.persist_flash_move(event, assessment, result)

        self.bus.publish(FlashMoveDetected(event=event, risk=assessment, result=result))
        if result.success:
            self.bus.publish(FlashMoveExecuted(
                event=event,
                result=result,
                position=self.execution.get_position(event.token_id),
            ))

        logger.info(
            f"Flash move processed: {result.strategy} strategy - {'SUCCESS' if result.success else 'FAILED'}"
        )
        return result

    async def persist_flash_move(
        self,
        event: EnhancedFlashMoveEvent,
        risk: RiskAssessment,
        result: FlashMoveResult,
    ):
        if self.persistence is None:
            return
        try:
            await self.persistence.save_flash_move(event, risk, result)
        except Exception as e:
            self._persist_failures += 1
            logger.error(f"Failed to persist flash move for {event.token_id[:20]}...: {e}")

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def get_active_positions(self) -> Dict[str, ActiveFlashPosition]:
        return self.execution.get_active_positions()

    async def close_position(self, token_id: str, reason: str) -> bool:
        try:
            closed = await self.execution.close_position(token_id, reason)
        except Exception as e:
            logger.error(f"Failed to close position {token_id[:20]}...: {e}")
            return False

        if closed:
            self.bus.publish(PositionClosed(token_id=token_id, reason=reason))
        return closed

    async def close_all_positions(self, reason: str) -> int:
        closed = 0
        for token_id in list(self.execution.get_active_positions()):
            if await self.close_position(token_id, reason):
                closed += 1
        return closed

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup(self):
        """Run every engine's cleanup; one failing does not stop the others"""
        for name, step in (
            ("detection", self.detection.cleanup),
            ("execution", self._cleanup_positions),
            ("risk", self.risk.cleanup),
        ):
            try:
                step()
            except Exception as e:
                logger.error(f"Error during {name} cleanup: {e}")

        logger.debug("Flash move cleanup completed")

    def _cleanup_positions(self):
        for token_id in self.execution.cleanup():
            self.bus.publish(PositionClosed(token_id=token_id, reason="Expired"))

    async def _cleanup_loop(self):
        while self._enabled:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            self.cleanup()

    def get_status(self) -> dict:
        stats = self.execution.get_stats()
        return {
            "enabled": self._enabled,
            "active_positions": len(self.execution.get_active_positions()),
            "total_executed": stats["total"],
            "successful": stats["successful"],
            "success_rate": stats["success_rate"],
            "detected": self._detected,
            "vetoed": self._vetoed,
            "persist_failures": self._persist_failures,
            "last_detection": self._last_detection,
            "portfolio_risk": self.risk.get_portfolio_metrics(),
        }
