from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import redis.exceptions
from sqlalchemy.pool import NullPool

from price_checker.database import create_engine, create_session_factory, init_db
from price_checker.models import Quote
from price_checker.price_store import PriceStore
from price_checker.registry import MonitoringRepository, SymbolRegistry

T0 = datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc)


class FakeRedis:
    """Dict-backed stand-in for the few redis.asyncio calls the cache makes."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.get_calls = 0

    async def get(self, key):  # noqa: ANN001
        self.get_calls += 1
        return self.store.get(key)

    async def setex(self, key, ttl, value):  # noqa: ANN001
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def aclose(self) -> None:
        return None


class BrokenRedis(FakeRedis):
    async def get(self, key):  # noqa: ANN001
        raise redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379")

    async def setex(self, key, ttl, value):  # noqa: ANN001
        raise redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379")


class StubProvider:
    """Quote provider with canned prices and errors, recording every call."""

    name = "Stub"

    def __init__(self, prices=None, errors=None, delay: float = 0.0) -> None:  # noqa: ANN001
        self.prices = prices or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: list[str] = []

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        self.calls.append(symbol)
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.errors:
            raise self.errors[symbol]
        return Quote(symbol=symbol, current_price=self.prices.get(symbol, 100.0))

    async def is_healthy(self) -> bool:
        return True


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


@pytest.fixture
async def engine(tmp_path):
    # File database with one connection per session, like a real server
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'prices.db'}", poolclass=NullPool, pool_pre_ping=False)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> PriceStore:
    return PriceStore(session_factory)


@pytest.fixture
def repository(session_factory) -> MonitoringRepository:
    return MonitoringRepository(session_factory)


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def registry(repository, stub_provider) -> SymbolRegistry:
    return SymbolRegistry(repository, stub_provider)
