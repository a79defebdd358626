"""
REST polling fallback for quotes.

While the market socket is down, periodically fetches order books from the
CLOB REST API and publishes them as QuoteUpdate events, so downstream
consumers keep receiving prices regardless of the transport. Unlike the
socket feed, books carry depth, so best-ask size is populated here.
"""

import asyncio
from typing import Callable, Dict, List, Optional

import aiohttp
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import PollerConfig
from ..events import EventBus, QuoteUpdate


class RateLimited(Exception):
    """HTTP 429 from the CLOB API"""


class OrderBookPoller:
    """
    Fetches order books in fixed-size batches with a pause between batches.

    Lifecycle is explicit: construct, ``start()``, ``update_targets()`` as
    markets appear, ``stop()``.
    """

    def __init__(
        self,
        bus: EventBus,
        is_socket_connected: Callable[[], bool],
        config: Optional[PollerConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            bus: Destination for QuoteUpdate events
            is_socket_connected: Polling is skipped while this returns True
            config: Poller parameters
            session: Optional shared aiohttp session (created if not provided)
        """
        self.bus = bus
        self.is_socket_connected = is_socket_connected
        self.config = config or PollerConfig()

        self._session = session
        self._owns_session = session is None
        self._task: Optional[asyncio.Task] = None
        self._running = False

        # asset_id -> market_id
        self._targets: Dict[str, str] = {}

        # Stats
        self._polls = 0
        self._books_fetched = 0
        self._fetch_errors = 0
        self._parse_errors = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def targets(self) -> Dict[str, str]:
        return dict(self._targets)

    def update_targets(self, targets: Dict[str, str]):
        """Replace the asset -> market map to poll"""
        self._targets = {a: m for a, m in targets.items() if a and m}

    async def start(self):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Order book poller started ({len(self._targets)} targets)")

    async def stop(self):
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        logger.info("Order book poller stopped")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def _poll_loop(self):
        while self._running:
            if not self.is_socket_connected() and self._targets:
                try:
                    await self.poll_once()
                except Exception as e:
                    logger.error(f"Polling pass failed: {e}")
            await asyncio.sleep(self.config.interval_seconds)

    async def poll_once(self) -> int:
        """Fetch every target once; returns the number of quotes published"""
        self._polls += 1
        published = 0
        asset_ids = list(self._targets)

        for i, batch in enumerate(_batches(asset_ids, self.config.batch_size)):
            if i > 0:
                await asyncio.sleep(self.config.batch_delay)

            books = await asyncio.gather(
                *(self._safe_fetch(asset_id) for asset_id in batch)
            )
            for asset_id, book in zip(batch, books):
                if not book:
                    continue
                try:
                    if self._publish_book(asset_id, book):
                        published += 1
                except (AttributeError, TypeError, ValueError) as e:
                    self._parse_errors += 1
                    logger.warning(f"Skipping malformed book for {asset_id[:20]}...: {e}")

        logger.debug(f"Polled {len(asset_ids)} books, {published} quotes published")
        return published

    async def _safe_fetch(self, asset_id: str) -> Optional[dict]:
        try:
            book = await self._fetch_book(asset_id)
            self._books_fetched += 1
            return book
        except Exception as e:
            self._fetch_errors += 1
            logger.warning(f"Book fetch failed for {asset_id[:20]}...: {e}")
            return None

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError, RateLimited)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def _fetch_book(self, asset_id: str) -> Optional[dict]:
        session = await self._get_session()
        url = f"{self.config.clob_url}/book"
        async with session.get(url, params={"token_id": asset_id}) as resp:
            if resp.status == 429:
                raise RateLimited(f"Rate limited fetching book for {asset_id[:20]}...")
            if resp.status == 404:
                return None
            resp.raise_for_status()
            return await resp.json()

    def _publish_book(self, asset_id: str, book: dict) -> bool:
        asks = book.get("asks") or []
        bids = book.get("bids") or []
        if not asks:
            return False

        best_ask_level = min(asks, key=lambda lvl: float(lvl.get("price", 1)))
        best_ask = float(best_ask_level.get("price", 1))
        ask_size = float(best_ask_level.get("size", 0) or 0)
        best_bid = max((float(b.get("price", 0)) for b in bids), default=0.0)

        market_id = self._targets.get(asset_id) or book.get("market")
        if not market_id:
            return False

        self.bus.publish(QuoteUpdate(
            market_id=market_id,
            asset_id=asset_id,
            best_bid=best_bid,
            best_ask=best_ask,
            ask_size=ask_size,
        ))
        return True

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "targets": len(self._targets),
            "polls": self._polls,
            "books_fetched": self._books_fetched,
            "fetch_errors": self._fetch_errors,
            "parse_errors": self._parse_errors,
        }


def _batches(items: List[str], size: int):
    size = max(1, size)
    for i in range(0, len(items), size):
        yield items[i:i + size]
