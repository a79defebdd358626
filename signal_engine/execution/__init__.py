"""
Order execution for flash-move trades.
Supports paper trading and live (or dry-run) submission to the Polymarket CLOB.
"""

from .trade_executor import (
    ClobTradeExecutor,
    OrderRequest,
    OrderResult,
    PaperTradeExecutor,
    TradeExecutor,
)

__all__ = ["TradeExecutor", "OrderRequest", "OrderResult", "PaperTradeExecutor", "ClobTradeExecutor"]
