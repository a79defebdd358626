"""Tests for FlashExecutionEngine - refusals, order building and position lifecycle."""

import asyncio
from unittest.mock import AsyncMock

from signal_engine.config import FlashMoveConfig
from signal_engine.execution.trade_executor import OrderResult
from signal_engine.flash.execution import FlashExecutionEngine
from signal_engine.flash.models import PositionState, Strategy


def _engine(executor, **config):
    return FlashExecutionEngine(FlashMoveConfig(**config), executor)


# ----------------------------------------------------------------------
# Order building
# ----------------------------------------------------------------------

class TestBuildOrder:
    def test_buy_limit_above_price(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        request = engine.build_order(make_flash_event(), make_risk())

        assert request.side == "BUY"
        assert abs(request.price_limit - 0.53 * 1.02) < 1e-9
        assert request.size_usd == 40.0
        assert request.market_id == "condition_abc123"
        assert request.order_type == "FAK"

    def test_sell_limit_below_price(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        event = make_flash_event(old_price=0.60, new_price=0.55, velocity=-0.083)
        request = engine.build_order(event, make_risk(max_slippage=0.04))

        assert request.side == "SELL"
        assert abs(request.price_limit - 0.55 * 0.96) < 1e-9

    def test_limit_clamped_to_tradeable_range(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        high = engine.build_order(make_flash_event(new_price=0.985), make_risk(max_slippage=0.05))
        low = engine.build_order(
            make_flash_event(new_price=0.01, velocity=-0.2), make_risk(max_slippage=0.05)
        )
        assert high.price_limit == 0.99
        assert low.price_limit == 0.01

    def test_order_type_by_strategy(self):
        select = FlashExecutionEngine.select_order_type
        assert select(Strategy.AGGRESSIVE, 0.1) == "FAK"
        assert select(Strategy.CONSERVATIVE, 0.99) == "FOK"
        assert select(Strategy.ADAPTIVE, 0.75) == "FAK"
        assert select(Strategy.ADAPTIVE, 0.6) == "FOK"


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

class TestExecute:
    async def test_success_opens_position(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        event = make_flash_event()

        result = await engine.execute_flash_move(event, make_risk())

        assert result.success is True
        assert result.strategy == "adaptive"
        assert result.order_id == "order_1"
        assert result.slippage == 0.0
        assert result.execution_time >= 0

        position = engine.get_position(event.token_id)
        assert position.state == PositionState.OPEN
        assert position.direction == "BUY"
        assert abs(position.entry_price - 0.53 * 1.02) < 1e-9
        assert abs(position.take_profit - position.entry_price * 1.2) < 1e-9
        assert abs(position.stop_loss - position.entry_price * 0.9) < 1e-9
        assert abs(position.shares - 40.0 / (0.53 * 1.02)) < 1e-9

    async def test_sell_position_targets_invert(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        event = make_flash_event(old_price=0.60, new_price=0.50, velocity=-0.1)

        await engine.execute_flash_move(event, make_risk(max_slippage=0.0))

        position = engine.get_position(event.token_id)
        assert abs(position.take_profit - 0.40) < 1e-9
        assert abs(position.stop_loss - 0.55) < 1e-9

    async def test_slippage_measured_against_limit(self, make_flash_event, make_risk):
        executor = AsyncMock()
        executor.create_order = AsyncMock(return_value=OrderResult(
            success=True, order_id="o1", shares_filled=10, price_filled=0.5
        ))
        engine = _engine(executor)
        event = make_flash_event(new_price=0.52)

        result = await engine.execute_flash_move(event, make_risk(max_slippage=0.0))
        assert abs(result.slippage - 0.02 / 0.52) < 1e-9

    async def test_rejected_order(self, make_flash_event, make_risk):
        executor = AsyncMock()
        executor.create_order = AsyncMock(return_value=OrderResult(success=False, error="no liquidity"))
        engine = _engine(executor)
        event = make_flash_event()

        result = await engine.execute_flash_move(event, make_risk(recommended_strategy=Strategy.CONSERVATIVE))

        assert result.success is False
        assert result.strategy == "conservative"
        assert result.error_msg == "no liquidity"
        assert engine.get_position(event.token_id) is None
        assert engine.get_stats()["total"] == 1
        assert engine.get_stats()["successful"] == 0

    async def test_executor_exception(self, make_flash_event, make_risk):
        executor = AsyncMock()
        executor.create_order = AsyncMock(side_effect=RuntimeError("boom"))
        engine = _engine(executor)
        event = make_flash_event()

        result = await engine.execute_flash_move(event, make_risk())

        assert result.success is False
        assert result.strategy == "error"
        assert result.error_msg == "boom"
        # in-flight guard released
        executor.create_order = AsyncMock(return_value=OrderResult(success=True, order_id="o", shares_filled=1, price_filled=0.5))
        assert (await engine.execute_flash_move(event, make_risk())).success is True


class TestRefusals:
    async def test_kill_switch(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        result = await engine.execute_flash_move(make_flash_event(risk_score=95.0), make_risk())

        assert result.success is False
        assert result.strategy == "killed"
        assert fake_executor.requests == []

    async def test_kill_switch_disabled(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor, enable_volatility_kill_switch=False)
        result = await engine.execute_flash_move(make_flash_event(risk_score=95.0), make_risk())
        assert result.success is True

    async def test_open_position_blocks_repeat(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        event = make_flash_event()
        await engine.execute_flash_move(event, make_risk())

        result = await engine.execute_flash_move(event, make_risk())

        assert result.strategy == "duplicate"
        assert len(fake_executor.requests) == 1

    async def test_concurrent_limit(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor, max_concurrent_trades=2)
        for _ in range(2):
            assert (await engine.execute_flash_move(make_flash_event(), make_risk())).success

        result = await engine.execute_flash_move(make_flash_event(), make_risk())
        assert result.success is False
        assert result.strategy == "limited"
        assert len(engine.get_active_positions()) == 2

    async def test_in_flight_guard(self, make_flash_event, make_risk):
        gate = asyncio.Event()

        class SlowExecutor:
            calls = 0

            async def create_order(self, request):
                SlowExecutor.calls += 1
                await gate.wait()
                return OrderResult(success=True, order_id="slow", shares_filled=1, price_filled=0.5)

        engine = _engine(SlowExecutor())
        event = make_flash_event()

        first = asyncio.create_task(engine.execute_flash_move(event, make_risk()))
        await asyncio.sleep(0)
        second = await engine.execute_flash_move(event, make_risk())
        gate.set()
        await first

        assert second.strategy == "duplicate"
        assert SlowExecutor.calls == 1

    async def test_refusals_not_counted(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        await engine.execute_flash_move(make_flash_event(risk_score=99.0), make_risk())
        assert engine.get_stats()["total"] == 0


# ----------------------------------------------------------------------
# Positions
# ----------------------------------------------------------------------

class TestPositions:
    async def test_close_sends_offsetting_order(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        event = make_flash_event()
        await engine.execute_flash_move(event, make_risk())
        engine.update_price(event.token_id, 0.60)
        shares = engine.get_position(event.token_id).shares

        assert await engine.close_position(event.token_id, "Take profit") is True

        exit_order = fake_executor.requests[-1]
        assert exit_order.side == "SELL"
        assert exit_order.order_type == "GTC"
        assert exit_order.price_limit == 0.60
        assert exit_order.shares == shares
        assert engine.get_position(event.token_id) is None

    async def test_close_is_idempotent(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        event = make_flash_event()
        await engine.execute_flash_move(event, make_risk())

        assert await engine.close_position(event.token_id, "manual") is True
        assert await engine.close_position(event.token_id, "manual") is False
        assert await engine.close_position("unknown", "manual") is False
        assert len(fake_executor.requests) == 2

    async def test_failed_close_keeps_position_open(self, make_flash_event, make_risk):
        executor = AsyncMock()
        executor.create_order = AsyncMock(return_value=OrderResult(
            success=True, order_id="o1", shares_filled=10, price_filled=0.5
        ))
        engine = _engine(executor)
        event = make_flash_event()
        await engine.execute_flash_move(event, make_risk())

        executor.create_order = AsyncMock(return_value=OrderResult(success=False, error="rejected"))
        assert await engine.close_position(event.token_id, "manual") is False
        assert engine.get_position(event.token_id).state == PositionState.OPEN

    async def test_active_positions_is_a_copy(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        await engine.execute_flash_move(make_flash_event(), make_risk())

        positions = engine.get_active_positions()
        positions.clear()
        assert len(engine.get_active_positions()) == 1

    async def test_cleanup_expires_old_positions(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        old, fresh = make_flash_event(), make_flash_event()
        await engine.execute_flash_move(old, make_risk())
        await engine.execute_flash_move(fresh, make_risk())
        engine.get_position(old.token_id).timestamp -= 400

        expired = engine.cleanup()

        assert expired == [old.token_id]
        assert engine.get_position(fresh.token_id) is not None

    async def test_stats(self, fake_executor, make_flash_event, make_risk):
        engine = _engine(fake_executor)
        await engine.execute_flash_move(make_flash_event(), make_risk())

        stats = engine.get_stats()
        assert stats["total"] == 1
        assert stats["successful"] == 1
        assert stats["success_rate"] == 100.0
        assert stats["active_positions"] == 1
