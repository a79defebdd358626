"""
Database initialization and session management for flash-move persistence.
"""

from datetime import datetime, timezone
from typing import List
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from loguru import logger

from ..flash.models import EnhancedFlashMoveEvent, FlashMoveResult, RiskAssessment
from .models import Base, FlashMoveRecord


class Database:
    """Async database connection and session management"""

    def __init__(self, db_path: str = "signal_engine.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or full connection URL
        """
        if db_path.startswith("sqlite"):
            self.db_url = db_path
        else:
            self.db_url = f"sqlite+aiosqlite:///{db_path}"
        self.db_path = db_path

        self.async_engine = None
        self.AsyncSessionLocal = None
        self._async_initialized = False

    async def initialize(self):
        """Initialize async database connection and create tables"""
        if self._async_initialized:
            return

        self.async_engine = create_async_engine(self.db_url, echo=False)

        async with self.async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.AsyncSessionLocal = async_sessionmaker(
            self.async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        self._async_initialized = True
        logger.info(f"Async database initialized at {self.db_path}")

    async def close(self):
        """Close async database connection"""
        if self.async_engine:
            await self.async_engine.dispose()
            self._async_initialized = False

    @asynccontextmanager
    async def session(self):
        """Get an async database session with automatic cleanup"""
        if not self._async_initialized:
            await self.initialize()

        async with self.AsyncSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Database error: {e}")
                raise

    async def save_flash_move(
        self,
        event: EnhancedFlashMoveEvent,
        risk: RiskAssessment,
        result: FlashMoveResult,
    ) -> FlashMoveRecord:
        """Record a flash move and its execution outcome"""
        record = FlashMoveRecord(
            token_id=event.token_id,
            condition_id=event.condition_id or None,
            question=event.question or None,
            market_slug=event.market_slug or None,
            old_price=event.old_price,
            new_price=event.new_price,
            velocity=event.velocity,
            momentum=event.momentum,
            volume_spike=event.volume_spike,
            confidence=event.confidence,
            detection_strategy=event.strategy,
            detected_at=datetime.fromtimestamp(event.timestamp, tz=timezone.utc).replace(tzinfo=None),
            risk_score=risk.risk_score,
            risk_reason=risk.reason,
            position_size_usd=risk.position_size,
            max_slippage=risk.max_slippage,
            executed=result.success,
            execution_strategy=result.strategy,
            order_id=result.order_id,
            shares_filled=result.shares_filled,
            price_filled=result.price_filled,
            slippage=result.slippage,
            execution_time_ms=result.execution_time * 1000,
            error_msg=result.error_msg,
        )

        async with self.session() as session:
            session.add(record)
            await session.flush()

        logger.debug(f"Saved flash move {event.token_id[:20]}... (executed={result.success})")
        return record

    async def get_recent_flash_moves(self, limit: int = 50, executed_only: bool = False) -> List[FlashMoveRecord]:
        """Get recent flash moves, newest first"""
        query = select(FlashMoveRecord).order_by(FlashMoveRecord.detected_at.desc())
        if executed_only:
            query = query.where(FlashMoveRecord.executed.is_(True))

        async with self.session() as session:
            rows = await session.execute(query.limit(limit))
            return list(rows.scalars().all())
