"""
Database models for the signal engine
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Text, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FlashMoveRecord(Base):
    """A flash move that passed the risk gate, with its execution outcome"""
    __tablename__ = "flash_moves"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Event
    token_id = Column(String(255), nullable=False)
    condition_id = Column(String(255), nullable=True)
    question = Column(Text, nullable=True)
    market_slug = Column(String(255), nullable=True)
    old_price = Column(Float, nullable=False)
    new_price = Column(Float, nullable=False)
    velocity = Column(Float, nullable=False)
    momentum = Column(Float, default=0.0)
    volume_spike = Column(Float, default=1.0)
    confidence = Column(Float, nullable=False)
    detection_strategy = Column(String(20), nullable=True)  # micro-tick, momentum, volume, velocity
    detected_at = Column(DateTime, nullable=False)

    # Risk
    risk_score = Column(Float, nullable=False)
    risk_reason = Column(Text, nullable=True)
    position_size_usd = Column(Float, nullable=False)
    max_slippage = Column(Float, nullable=False)

    # Execution
    executed = Column(Boolean, default=False)
    execution_strategy = Column(String(20), nullable=True)
    order_id = Column(String(255), nullable=True)
    shares_filled = Column(Float, nullable=True)
    price_filled = Column(Float, nullable=True)
    slippage = Column(Float, nullable=True)
    execution_time_ms = Column(Float, nullable=True)
    error_msg = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        Index('idx_flash_token_detected', 'token_id', 'detected_at'),
        Index('idx_flash_executed', 'executed'),
    )

    def __repr__(self):
        return f"<FlashMoveRecord {self.token_id[:10]}... {self.velocity:+.2%} executed={self.executed}>"
