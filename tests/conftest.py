"""
Configuration for pytest.

Every test gets its own in-memory SQLite database and a clock it controls.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from remindbot.db.database import init_db
from remindbot.db.reminder_repository import ReminderRepository
from remindbot.db.store import KVStore
from remindbot.services.reminder_service import ReminderService

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return KVStore(async_sessionmaker(engine, expire_on_commit=False))


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def repository(store, clock):
    return ReminderRepository(store, clock=clock)


@pytest.fixture
def service(repository):
    return ReminderService(repository)


@pytest.fixture
def notifier():
    """Notifier whose send always succeeds."""
    notifier = MagicMock()
    notifier.send = AsyncMock(return_value=None)
    return notifier
