"""
Market metadata lookups for enriching flash-move events.

Checks the in-memory market store first (no I/O), then the Gamma API.
Lookups never fail: a placeholder is returned when nothing is found.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import aiohttp
from loguru import logger

from ..arbitrage.market_state import PENDING_QUESTION, MarketStateStore

GAMMA_API_BASE = "https://gamma-api.polymarket.com"


@dataclass(frozen=True)
class MarketMetadata:
    condition_id: str
    question: str
    image: str = ""
    market_slug: str = ""


def placeholder_metadata(token_id: str) -> MarketMetadata:
    return MarketMetadata(condition_id="", question=f"Market {token_id}")


class MarketMetadataResolver:
    """Resolves token id -> market metadata with a TTL cache"""

    def __init__(
        self,
        store: Optional[MarketStateStore] = None,
        session: Optional[aiohttp.ClientSession] = None,
        gamma_url: str = GAMMA_API_BASE,
        cache_ttl: float = 3600.0,
        miss_ttl: float = 60.0,
    ):
        self.store = store
        self.gamma_url = gamma_url
        self.cache_ttl = cache_ttl
        self.miss_ttl = miss_ttl
        self._session = session
        self._owns_session = session is None
        # token_id -> (metadata, expires_at); misses expire after miss_ttl
        self._cache: Dict[str, Tuple[MarketMetadata, float]] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def resolve(self, token_id: str) -> MarketMetadata:
        cached = self._cache.get(token_id)
        if cached and time.time() < cached[1]:
            return cached[0]

        metadata = self._from_store(token_id)
        if metadata is None:
            metadata = await self._from_gamma(token_id)

        if metadata is None:
            placeholder = placeholder_metadata(token_id)
            self._cache[token_id] = (placeholder, time.time() + self.miss_ttl)
            return placeholder

        self._cache[token_id] = (metadata, time.time() + self.cache_ttl)
        return metadata

    def _from_store(self, token_id: str) -> Optional[MarketMetadata]:
        if self.store is None:
            return None
        market_id = self.store.market_for_token(token_id)
        if not market_id:
            return None
        snapshot = self.store.get(market_id)
        if snapshot is None or snapshot.question == PENDING_QUESTION:
            return None
        return MarketMetadata(condition_id=market_id, question=snapshot.question)

    async def _from_gamma(self, token_id: str) -> Optional[MarketMetadata]:
        try:
            session = await self._get_session()
            url = f"{self.gamma_url}/markets"
            async with session.get(url, params={"clob_token_ids": token_id}) as resp:
                if resp.status != 200:
                    logger.debug(f"Gamma lookup for {token_id[:20]}... returned {resp.status}")
                    return None
                markets = await resp.json()
        except Exception as e:
            logger.warning(f"Failed to enrich metadata for {token_id[:20]}...: {e}")
            return None

        if not markets:
            return None
        market = markets[0] if isinstance(markets, list) else markets
        return MarketMetadata(
            condition_id=market.get("conditionId", "") or "",
            question=market.get("question", "") or f"Market {token_id}",
            image=market.get("image", "") or "",
            market_slug=market.get("slug", "") or "",
        )

    def clear(self):
        self._cache.clear()
