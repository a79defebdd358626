"""
Order submission for flash-move trades.

Two executors share one contract, ``async create_order(OrderRequest) -> OrderResult``:
- PaperTradeExecutor fills every valid order at its limit price
- ClobTradeExecutor submits to Polymarket's CLOB using py-clob-client

IMPORTANT: ClobTradeExecutor with dry_run=False executes REAL trades with REAL money.
"""

import abc
import asyncio
import itertools
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import OrderArgs, OrderType

logger = logging.getLogger(__name__)

ORDER_TYPES = ("FAK", "FOK", "GTC")


@dataclass
class OrderRequest:
    token_id: str
    side: str  # BUY or SELL
    price_limit: float
    size_usd: float
    order_type: str = "FAK"
    market_id: str = ""
    shares: Optional[float] = None  # overrides size_usd / price_limit
    market_title: str = ""

    @property
    def share_count(self) -> float:
        if self.shares is not None:
            return self.shares
        return self.size_usd / self.price_limit


@dataclass
class OrderResult:
    success: bool
    order_id: Optional[str] = None
    shares_filled: Optional[float] = None
    price_filled: Optional[float] = None
    error: Optional[str] = None


def validate_order(request: OrderRequest) -> Optional[str]:
    """Return an error message for an order that must not be sent"""
    if request.side not in ("BUY", "SELL"):
        return f"Invalid side {request.side!r}"
    if request.order_type not in ORDER_TYPES:
        return f"Invalid order type {request.order_type!r}"
    if request.price_limit <= 0 or request.price_limit >= 1:
        return f"Invalid price {request.price_limit}. Must be between 0 and 1."
    if request.share_count <= 0:
        return "Order size must be positive"
    return None


class TradeExecutor(abc.ABC):
    """Contract the flash execution engine trades through"""

    @abc.abstractmethod
    async def create_order(self, request: OrderRequest) -> OrderResult:
        ...

    def get_stats(self) -> dict:
        return {}

    def shutdown(self):
        pass


class PaperTradeExecutor(TradeExecutor):
    """Simulated fills at the limit price. Nothing leaves the process."""

    def __init__(self):
        self.orders: List[OrderRequest] = []
        self._ids = itertools.count(1)
        self._filled = 0
        self._rejected = 0

    async def create_order(self, request: OrderRequest) -> OrderResult:
        error = validate_order(request)
        if error:
            self._rejected += 1
            logger.warning(f"[PAPER] Rejected order: {error}")
            return OrderResult(success=False, error=error)

        self.orders.append(request)
        self._filled += 1
        shares = request.share_count
        order_id = f"paper_{next(self._ids)}"
        logger.info(
            f"[PAPER] {request.side} {shares:.2f} shares @ {request.price_limit:.4f} "
            f"({request.order_type}) = ${shares * request.price_limit:.2f} | {request.market_title[:40]}"
        )
        return OrderResult(
            success=True,
            order_id=order_id,
            shares_filled=shares,
            price_filled=request.price_limit,
        )

    def get_stats(self) -> dict:
        return {"mode": "PAPER", "orders_filled": self._filled, "orders_rejected": self._rejected}


class ClobTradeExecutor(TradeExecutor):
    """
    Order execution against Polymarket's CLOB.

    Safety features:
    - Configurable max order size
    - Price validation
    - Dry-run mode (default) that logs instead of submitting
    """

    CLOB_BASE_URL = "https://clob.polymarket.com"
    POLYGON_CHAIN_ID = 137

    DEFAULT_MAX_ORDER_USD = 100.0

    def __init__(
        self,
        private_key: Optional[str] = None,
        funder: Optional[str] = None,
        max_order_usd: float = DEFAULT_MAX_ORDER_USD,
        dry_run: bool = True,
        client: Optional[ClobClient] = None,
    ):
        self.private_key = private_key or os.getenv("PRIVATE_KEY")
        self.funder = funder or os.getenv("FUNDER_ADDRESS")
        self.max_order_usd = max_order_usd
        self.dry_run = dry_run

        self._client = client
        self._executor = ThreadPoolExecutor(max_workers=2)
        self._initialized = client is not None

        self._orders: Dict[str, OrderResult] = {}
        self._orders_submitted = 0
        self._orders_failed = 0

    def initialize(self) -> bool:
        """Create the CLOB client and derive API credentials"""
        if self._initialized:
            return True

        if not self.private_key:
            logger.error("No private key provided. Set PRIVATE_KEY environment variable.")
            return False

        try:
            client_kwargs = {
                "host": self.CLOB_BASE_URL,
                "key": self.private_key,
                "chain_id": self.POLYGON_CHAIN_ID,
            }
            if self.funder:
                client_kwargs["signature_type"] = 2  # POLY_GNOSIS_SAFE
                client_kwargs["funder"] = self.funder
            else:
                logger.warning("No FUNDER_ADDRESS set - using EOA wallet directly")

            self._client = ClobClient(**client_kwargs)
            self._client.set_api_creds(self._client.create_or_derive_api_creds())
            self._client.get_ok()

            self._initialized = True
            mode = "DRY RUN" if self.dry_run else "LIVE"
            logger.info(f"CLOB executor initialized ({mode}) | max ${self.max_order_usd:.2f}/order")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize CLOB executor: {e}")
            return False

    async def create_order(self, request: OrderRequest) -> OrderResult:
        error = validate_order(request)
        if error:
            logger.error(error)
            return OrderResult(success=False, error=error)

        if request.shares is None and request.size_usd > self.max_order_usd:
            logger.debug(f"Order ${request.size_usd:.2f} > max ${self.max_order_usd:.2f}, capping")
            request = OrderRequest(
                token_id=request.token_id,
                side=request.side,
                price_limit=request.price_limit,
                size_usd=self.max_order_usd,
                order_type=request.order_type,
                market_id=request.market_id,
                market_title=request.market_title,
            )

        shares = request.share_count

        if self.dry_run:
            order_id = f"dry_{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S%f')}"
            logger.info(
                f"[DRY RUN] {request.side} {shares:.2f} shares @ {request.price_limit:.4f} "
                f"({request.order_type}) | {request.market_title[:40]}"
            )
            result = OrderResult(
                success=True,
                order_id=order_id,
                shares_filled=shares,
                price_filled=request.price_limit,
            )
            self._orders[order_id] = result
            return result

        if not self._initialized and not self.initialize():
            self._orders_failed += 1
            return OrderResult(success=False, error="CLOB executor not initialized")

        try:
            logger.info(
                f"LIVE {request.side} {shares:.2f} shares @ {request.price_limit:.4f} "
                f"({request.order_type}) | {request.market_title[:40]}"
            )
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                self._executor, self._execute_order_sync, request, shares
            )
        except Exception as e:
            self._orders_failed += 1
            logger.error(f"Order execution error: {e}")
            return OrderResult(success=False, error=str(e))

        if not response or not response.get("success", True):
            self._orders_failed += 1
            message = (response or {}).get("errorMsg") or "Order submission returned no result"
            logger.error(f"Order failed: {message}")
            return OrderResult(success=False, error=message)

        self._orders_submitted += 1
        order_id = response.get("orderID") or response.get("orderId")
        logger.info(f"Order submitted successfully: {order_id}")

        # Marketable orders are assumed filled at the limit
        result = OrderResult(
            success=True,
            order_id=order_id,
            shares_filled=shares,
            price_filled=request.price_limit,
        )
        self._orders[order_id] = result
        return result

    def _execute_order_sync(self, request: OrderRequest, shares: float) -> Optional[dict]:
        """Sign and post an order (called from the thread pool)"""
        order_args = OrderArgs(
            token_id=request.token_id,
            price=request.price_limit,
            size=shares,
            side=request.side,
        )
        signed_order = self._client.create_order(order_args)
        return self._client.post_order(signed_order, getattr(OrderType, request.order_type))

    def get_stats(self) -> dict:
        return {
            "mode": "DRY RUN" if self.dry_run else "LIVE",
            "initialized": self._initialized,
            "orders_submitted": self._orders_submitted,
            "orders_failed": self._orders_failed,
        }

    def shutdown(self):
        self._executor.shutdown(wait=False)
        logger.debug("CLOB executor shutdown complete")
