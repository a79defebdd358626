"""
Flash-move execution: turns an approved event into an order and owns the
resulting positions.
"""

import logging
import time
from typing import Dict, List, Optional, Set

from ..config import FlashMoveConfig
from ..execution.trade_executor import OrderRequest, TradeExecutor
from .models import (
    ActiveFlashPosition,
    EnhancedFlashMoveEvent,
    FlashMoveResult,
    PositionState,
    RiskAssessment,
    Strategy,
)

logger = logging.getLogger(__name__)

KILL_SWITCH_SCORE = 90.0
MIN_PRICE = 0.01
MAX_PRICE = 0.99


class FlashExecutionEngine:
    """
    Places flash-move orders through a TradeExecutor.

    Refuses to trade when:
    - the kill switch is on and the event's risk score exceeds 90
    - the concurrent-position limit is reached
    - a position for the token is already open
    - an order for the token is already in flight
    """

    def __init__(self, config: FlashMoveConfig, trade_executor: TradeExecutor):
        self.config = config
        self.trade_executor = trade_executor

        self._positions: Dict[str, ActiveFlashPosition] = {}
        self._in_flight: Set[str] = set()

        # Stats
        self._executions = 0
        self._successes = 0

    async def execute_flash_move(
        self,
        event: EnhancedFlashMoveEvent,
        risk: RiskAssessment,
    ) -> FlashMoveResult:
        started = time.monotonic()

        refusal = self._refusal(event)
        if refusal is not None:
            strategy, message = refusal
            logger.info(f"Flash execution refused for {event.token_id[:20]}...: {message}")
            return FlashMoveResult(
                success=False,
                strategy=strategy,
                execution_time=time.monotonic() - started,
                error_msg=message,
            )

        strategy = risk.recommended_strategy
        self._in_flight.add(event.token_id)
        self._executions += 1
        try:
            request = self.build_order(event, risk)
            order = await self.trade_executor.create_order(request)

            if not order.success:
                logger.warning(f"Flash order failed for {event.token_id[:20]}...: {order.error}")
                return FlashMoveResult(
                    success=False,
                    strategy=strategy.value,
                    execution_time=time.monotonic() - started,
                    order_id=order.order_id,
                    error_msg=order.error or "Order rejected",
                )

            slippage = None
            if order.price_filled:
                slippage = abs(request.price_limit - order.price_filled) / request.price_limit

            result = FlashMoveResult(
                success=True,
                strategy=strategy.value,
                execution_time=time.monotonic() - started,
                slippage=slippage,
                order_id=order.order_id,
                shares_filled=order.shares_filled,
                price_filled=order.price_filled,
            )
            self._track_position(event, result, strategy)
            self._successes += 1

            logger.info(
                f"FLASH EXECUTED: {strategy.value} {request.side} on {event.question or event.token_id} "
                f"@ {request.price_limit:.4f} ({request.order_type}) - Order: {order.order_id}"
            )
            return result

        except Exception as e:
            logger.error(f"Flash execution failed for {event.token_id[:20]}...: {e}")
            return FlashMoveResult(
                success=False,
                strategy="error",
                execution_time=time.monotonic() - started,
                error_msg=str(e),
            )
        finally:
            self._in_flight.discard(event.token_id)

    def _refusal(self, event: EnhancedFlashMoveEvent) -> Optional[tuple]:
        """(strategy label, message) when the event must not be traded"""
        risk_score = event.risk_score or 0.0
        if self.config.enable_volatility_kill_switch and risk_score > KILL_SWITCH_SCORE:
            return "killed", f"Kill switch triggered - Risk score: {risk_score:.1f}"
        if event.token_id in self._in_flight:
            return "duplicate", "Execution already in flight for this token"
        if event.token_id in self._positions:
            return "duplicate", "Position already open for this token"
        if len(self._positions) >= self.config.max_concurrent_trades:
            return "limited", f"Max concurrent trades reached ({len(self._positions)})"
        return None

    def build_order(self, event: EnhancedFlashMoveEvent, risk: RiskAssessment) -> OrderRequest:
        direction = event.direction
        if direction == "BUY":
            price_limit = min(MAX_PRICE, event.new_price * (1 + risk.max_slippage))
        else:
            price_limit = max(MIN_PRICE, event.new_price * (1 - risk.max_slippage))
        price_limit = min(MAX_PRICE, max(MIN_PRICE, price_limit))

        return OrderRequest(
            token_id=event.token_id,
            market_id=event.condition_id,
            side=direction,
            price_limit=price_limit,
            size_usd=risk.position_size,
            order_type=self.select_order_type(risk.recommended_strategy, event.confidence),
            market_title=event.question,
        )

    @staticmethod
    def select_order_type(strategy: Strategy, confidence: float) -> str:
        if strategy == Strategy.AGGRESSIVE:
            return "FAK"
        if strategy == Strategy.CONSERVATIVE:
            return "FOK"
        return "FAK" if confidence > 0.7 else "FOK"

    def _track_position(self, event: EnhancedFlashMoveEvent, result: FlashMoveResult, strategy: Strategy):
        entry_price = result.price_filled or event.new_price
        direction = event.direction
        if direction == "BUY":
            take_profit = entry_price * (1 + self.config.take_profit_percent)
            stop_loss = entry_price * (1 - self.config.stop_loss_percent)
        else:
            take_profit = entry_price * (1 - self.config.take_profit_percent)
            stop_loss = entry_price * (1 + self.config.stop_loss_percent)

        self._positions[event.token_id] = ActiveFlashPosition(
            token_id=event.token_id,
            condition_id=event.condition_id,
            entry_price=entry_price,
            shares=result.shares_filled or 0.0,
            direction=direction,
            strategy=strategy,
            take_profit=take_profit,
            stop_loss=stop_loss,
            order_id=result.order_id,
        )

    def get_active_positions(self) -> Dict[str, ActiveFlashPosition]:
        return dict(self._positions)

    def get_position(self, token_id: str) -> Optional[ActiveFlashPosition]:
        return self._positions.get(token_id)

    def update_price(self, token_id: str, price: float) -> Optional[ActiveFlashPosition]:
        position = self._positions.get(token_id)
        if position is not None and position.state == PositionState.OPEN:
            position.current_price = price
        return position

    async def close_position(self, token_id: str, reason: str) -> bool:
        """
        Send the offsetting order and drop the position.

        Returns False for unknown positions and for positions already being
        closed, so repeated calls are harmless.
        """
        position = self._positions.get(token_id)
        if position is None or position.state != PositionState.OPEN:
            return False

        position.state = PositionState.CLOSING
        exit_price = min(MAX_PRICE, max(MIN_PRICE, position.mark_price))
        request = OrderRequest(
            token_id=position.token_id,
            market_id=position.condition_id,
            side="SELL" if position.direction == "BUY" else "BUY",
            price_limit=exit_price,
            size_usd=position.shares * exit_price,
            shares=position.shares,
            order_type="GTC",
        )

        try:
            order = await self.trade_executor.create_order(request)
        except Exception as e:
            logger.error(f"Failed to close position {token_id[:20]}...: {e}")
            position.state = PositionState.OPEN
            return False

        if not order.success:
            logger.error(f"Failed to close position {token_id[:20]}...: {order.error}")
            position.state = PositionState.OPEN
            return False

        position.state = PositionState.CLOSED
        self._positions.pop(token_id, None)
        logger.info(f"POSITION CLOSED: {reason} for {token_id[:20]}...")
        return True

    def get_stats(self) -> dict:
        success_rate = (self._successes / self._executions * 100) if self._executions else 0.0
        return {
            "total": self._executions,
            "successful": self._successes,
            "success_rate": success_rate,
            "active_positions": len(self._positions),
        }

    def cleanup(self, now: Optional[float] = None) -> List[str]:
        """Expire positions older than the configured age; returns their token ids"""
        now = now if now is not None else time.time()
        cutoff = now - self.config.max_position_age_seconds

        expired = []
        for token_id, position in list(self._positions.items()):
            if position.state == PositionState.OPEN and position.timestamp < cutoff:
                position.state = PositionState.CLOSED
                del self._positions[token_id]
                expired.append(token_id)
                logger.warning(f"Cleaned up expired position for {token_id[:20]}...")
        return expired
