"""
Shared pytest configuration.

Service tests run against an in-memory SQLite database (aiosqlite). A
StaticPool keeps every session on the same connection so data written by
one session is visible to the next, and ``db.AsyncSessionLocal`` is
pointed at it for code that opens its own sessions (the reset worker).
"""

import os

# Must be set before the application modules are imported
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SETTINGS_CACHE_ENABLED"] = "false"
os.environ.pop("TOURNAMENT_CODE", None)

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import pytz  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from rallygogo.database import db  # noqa: E402
from rallygogo.database.db import Base  # noqa: E402
from rallygogo.database.models import Profile, QueueEntry  # noqa: E402
from rallygogo.utils import datetime_utils  # noqa: E402

# 12:15 UTC is 21:15 at the venue (Asia/Seoul)
FIXED_NOW = datetime(2026, 10, 16, 12, 15, tzinfo=pytz.UTC)


@pytest.fixture(autouse=True)
def venue_timezone(monkeypatch):
    """Pin the venue timezone so departure-time tests are deterministic."""
    monkeypatch.setattr(datetime_utils, "VENUE_TIMEZONE", "Asia/Seoul")


@pytest.fixture
def now():
    return FIXED_NOW


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine, monkeypatch):
    maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    monkeypatch.setattr(db, "AsyncSessionLocal", maker)
    return maker


@pytest_asyncio.fixture
async def db_session(session_maker):
    """Create a test database session."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def make_profile(db_session):
    """Factory inserting a profile with default ratings unless overridden."""
    counter = {"n": 0}

    async def _make(name=None, gender="Male", **fields):
        counter["n"] += 1
        profile = Profile(name=name or f"Player {counter['n']}", gender=gender, **fields)
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest_asyncio.fixture
async def enqueue(db_session):
    """Factory adding a queue entry for an existing profile."""

    async def _enqueue(player_id, joined_at=None, departure_time=None, priority_score=0):
        entry = QueueEntry(
            player_id=player_id,
            joined_at=joined_at or FIXED_NOW,
            departure_time=departure_time,
            priority_score=priority_score,
            is_active=True,
        )
        db_session.add(entry)
        await db_session.commit()
        return entry

    return _enqueue
