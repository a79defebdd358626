"""
Shared test fixtures for the signal engine test suite.
All tests run offline with in-memory SQLite and mocked external services.
"""

import json
import time

import pytest

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from signal_engine.config import FlashMoveConfig
from signal_engine.database.db import Database
from signal_engine.database.models import Base
from signal_engine.events import EventBus
from signal_engine.execution.trade_executor import OrderResult, TradeExecutor
from signal_engine.flash.models import EnhancedFlashMoveEvent, RiskAssessment, Strategy


@pytest.fixture
async def db():
    """
    Create an in-memory async SQLite database for testing.
    Each test gets a completely fresh database.
    """
    database = Database.__new__(Database)
    database.db_path = ":memory:"
    database.db_url = "sqlite+aiosqlite://"

    database.async_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with database.async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    database.AsyncSessionLocal = async_sessionmaker(
        database.async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    database._async_initialized = True

    yield database

    await database.async_engine.dispose()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def collect(bus):
    """Subscribe a recorder to an event type: ``seen = collect(PriceTick)``"""
    def _collect(event_type):
        seen = []
        bus.subscribe(event_type, seen.append)
        return seen

    return _collect


@pytest.fixture
def flash_config():
    return FlashMoveConfig()


@pytest.fixture
def make_flash_event():
    """Factory for EnhancedFlashMoveEvent instances with unique token ids."""
    _counter = [0]

    def _factory(**overrides):
        _counter[0] += 1
        defaults = {
            "token_id": f"token_{_counter[0]}",
            "condition_id": "condition_abc123",
            "old_price": 0.50,
            "new_price": 0.53,
            "velocity": 0.06,
            "momentum": 0.05,
            "volume_spike": 1.0,
            "confidence": 0.75,
            "timestamp": time.time(),
            "question": "Will X happen?",
            "strategy": "velocity",
            "risk_score": 40.0,
        }
        defaults.update(overrides)
        return EnhancedFlashMoveEvent(**defaults)

    return _factory


@pytest.fixture
def make_risk():
    """Factory for RiskAssessment instances."""
    def _factory(**overrides):
        defaults = {
            "is_too_risky": False,
            "reason": "Normal market conditions",
            "risk_score": 30.0,
            "recommended_strategy": Strategy.ADAPTIVE,
            "position_size": 40.0,
            "max_slippage": 0.02,
        }
        defaults.update(overrides)
        return RiskAssessment(**defaults)

    return _factory


class FakeExecutor(TradeExecutor):
    """Fills every order at its limit price and records the requests"""

    def __init__(self):
        self.requests = []

    async def create_order(self, request):
        self.requests.append(request)
        return OrderResult(
            success=True,
            order_id=f"order_{len(self.requests)}",
            shares_filled=request.share_count,
            price_filled=request.price_limit,
        )


@pytest.fixture
def fake_executor():
    return FakeExecutor()


class FakeSocket:
    """
    Stand-in for a websockets client connection.

    Yields the queued frames, then either ends (clean close) or raises
    ``error`` to simulate a dropped connection.
    """

    def __init__(self, frames=(), error=None):
        self.frames = list(frames)
        self.error = error
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.error is not None:
            raise self.error

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True

    def sent_json(self):
        return [json.loads(s) for s in self.sent if s != "PING"]


@pytest.fixture
def fake_socket():
    return FakeSocket
