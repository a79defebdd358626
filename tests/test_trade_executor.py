"""Tests for the trade executors - validation, paper fills and CLOB submission."""

from unittest.mock import MagicMock

from py_clob_client.clob_types import OrderType

from signal_engine.execution.trade_executor import (
    ClobTradeExecutor,
    OrderRequest,
    PaperTradeExecutor,
    validate_order,
)


def _request(**overrides):
    defaults = {
        "token_id": "tok",
        "side": "BUY",
        "price_limit": 0.50,
        "size_usd": 20.0,
        "order_type": "FAK",
        "market_title": "Will X happen?",
    }
    defaults.update(overrides)
    return OrderRequest(**defaults)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

class TestValidateOrder:
    def test_valid(self):
        assert validate_order(_request()) is None

    def test_price_bounds(self):
        assert "Invalid price" in validate_order(_request(price_limit=0.0))
        assert "Invalid price" in validate_order(_request(price_limit=1.0))

    def test_side_and_type(self):
        assert "side" in validate_order(_request(side="HOLD"))
        assert "order type" in validate_order(_request(order_type="IOC"))

    def test_size(self):
        assert validate_order(_request(size_usd=0)) == "Order size must be positive"

    def test_shares_override_usd(self):
        request = _request(shares=12.5)
        assert request.share_count == 12.5
        assert _request().share_count == 40.0


# ----------------------------------------------------------------------
# Paper
# ----------------------------------------------------------------------

class TestPaperExecutor:
    async def test_fills_at_limit(self):
        executor = PaperTradeExecutor()
        result = await executor.create_order(_request())

        assert result.success is True
        assert result.order_id == "paper_1"
        assert result.shares_filled == 40.0
        assert result.price_filled == 0.50
        assert executor.get_stats()["orders_filled"] == 1

    async def test_rejects_invalid(self):
        executor = PaperTradeExecutor()
        result = await executor.create_order(_request(price_limit=1.5))

        assert result.success is False
        assert executor.orders == []
        assert executor.get_stats()["orders_rejected"] == 1


# ----------------------------------------------------------------------
# CLOB
# ----------------------------------------------------------------------

class TestClobExecutor:
    async def test_dry_run_never_touches_client(self):
        client = MagicMock()
        executor = ClobTradeExecutor(private_key="0xkey", client=client, dry_run=True)

        result = await executor.create_order(_request())

        assert result.success is True
        assert result.order_id.startswith("dry_")
        client.post_order.assert_not_called()
        executor.shutdown()

    async def test_caps_usd_size(self):
        executor = ClobTradeExecutor(private_key="0xkey", client=MagicMock(), max_order_usd=10.0)

        result = await executor.create_order(_request(size_usd=50.0))

        assert result.shares_filled == 20.0
        executor.shutdown()

    async def test_share_orders_not_capped(self):
        executor = ClobTradeExecutor(private_key="0xkey", client=MagicMock(), max_order_usd=10.0)

        result = await executor.create_order(_request(shares=100.0, size_usd=50.0))

        assert result.shares_filled == 100.0
        executor.shutdown()

    async def test_invalid_price_rejected(self):
        client = MagicMock()
        executor = ClobTradeExecutor(private_key="0xkey", client=client, dry_run=False)

        result = await executor.create_order(_request(price_limit=1.2))

        assert result.success is False
        client.create_order.assert_not_called()
        executor.shutdown()

    async def test_live_order_submitted(self):
        client = MagicMock()
        client.create_order.return_value = "signed"
        client.post_order.return_value = {"success": True, "orderID": "0xorder"}
        executor = ClobTradeExecutor(private_key="0xkey", client=client, dry_run=False)

        result = await executor.create_order(_request(order_type="FOK"))

        assert result.success is True
        assert result.order_id == "0xorder"
        order_args = client.create_order.call_args.args[0]
        assert order_args.token_id == "tok"
        assert order_args.side == "BUY"
        assert order_args.size == 40.0
        client.post_order.assert_called_once_with("signed", OrderType.FOK)
        assert executor.get_stats()["orders_submitted"] == 1
        executor.shutdown()

    async def test_live_order_rejected(self):
        client = MagicMock()
        client.post_order.return_value = {"success": False, "errorMsg": "not enough balance"}
        executor = ClobTradeExecutor(private_key="0xkey", client=client, dry_run=False)

        result = await executor.create_order(_request())

        assert result.success is False
        assert result.error == "not enough balance"
        assert executor.get_stats()["orders_failed"] == 1
        executor.shutdown()

    async def test_live_order_exception(self):
        client = MagicMock()
        client.post_order.side_effect = ConnectionError("timeout")
        executor = ClobTradeExecutor(private_key="0xkey", client=client, dry_run=False)

        result = await executor.create_order(_request())

        assert result.success is False
        assert "timeout" in result.error
        executor.shutdown()

    async def test_no_key_cannot_initialize(self, monkeypatch):
        monkeypatch.delenv("PRIVATE_KEY", raising=False)
        executor = ClobTradeExecutor(dry_run=False)

        assert executor.initialize() is False
        result = await executor.create_order(_request())
        assert result.success is False
        assert result.error == "CLOB executor not initialized"
        executor.shutdown()
