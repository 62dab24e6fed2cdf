"""Shared test fixtures.

Every test that touches the database gets its own SQLite file under
``tmp_path`` with the schema created from the ORM metadata and the badge
catalog seeded.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from habitquest.config import get_settings
from habitquest.database import close_db, create_schema, get_session_factory, init_db
from habitquest.db.models import Badge, Challenge, Habit, User
from habitquest.gamification.engine import GamificationEngine
from habitquest.gamification.events import EventChannel, GamificationEvent
from habitquest.gamification.seed import seed_badges


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database with schema and badge catalog."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'habitquest.db'}")
    await create_schema()
    factory = get_session_factory()
    async with factory() as db:
        await seed_badges(db)
    yield factory
    await close_db()


@pytest.fixture
def recorded_events() -> list[GamificationEvent]:
    return []


@pytest_asyncio.fixture
async def engine(session_factory, recorded_events) -> GamificationEngine:
    """Engine whose channel records every published event."""
    channel = EventChannel()
    channel.attach(recorded_events.append)
    return GamificationEngine(session_factory, channel)


@pytest.fixture
def make_user(session_factory) -> Callable[..., Awaitable[int]]:
    async def _make(display_name: str = "tester", week_start: int = 1, total_xp: int = 0) -> int:
        async with session_factory() as db:
            user = User(display_name=display_name, week_start=week_start, total_xp=total_xp)
            db.add(user)
            await db.commit()
            return user.id

    return _make


@pytest.fixture
def make_habit(session_factory) -> Callable[..., Awaitable[int]]:
    async def _make(user_id: int, title: str = "Read 10 pages") -> int:
        async with session_factory() as db:
            habit = Habit(user_id=user_id, title=title)
            db.add(habit)
            await db.commit()
            return habit.id

    return _make


@pytest.fixture
def make_challenge(session_factory) -> Callable[..., Awaitable[int]]:
    async def _make(
        target_type: str = "daily_completions",
        target_value: int = 7,
        xp_reward: int = 100,
        status: str = "active",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        title: str = "Test Challenge",
        challenge_type: str = "global",
    ) -> int:
        now = datetime.now(timezone.utc)
        async with session_factory() as db:
            challenge = Challenge(
                title=title,
                type=challenge_type,
                target_type=target_type,
                target_value=target_value,
                difficulty="medium",
                xp_reward=xp_reward,
                start_date=start_date or now - timedelta(days=1),
                end_date=end_date if end_date is not None else now + timedelta(days=7),
                status=status,
                is_active=True,
            )
            db.add(challenge)
            await db.commit()
            return challenge.id

    return _make


@pytest.fixture
def fetch(session_factory) -> Callable[[Any], Awaitable[list[Any]]]:
    """Run a SELECT in a short-lived session and return all rows' first column."""

    async def _fetch(stmt: Any) -> list[Any]:
        async with session_factory() as db:
            return list((await db.execute(stmt)).scalars().all())

    return _fetch


@pytest.fixture
def badge_id(fetch) -> Callable[[str], Awaitable[int]]:
    async def _lookup(name: str) -> int:
        ids = await fetch(select(Badge.id).where(Badge.name == name))
        return ids[0]

    return _lookup


@pytest_asyncio.fixture
async def client(tmp_path, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the full app lifespan, backed by a SQLite file."""
    monkeypatch.setenv("HQ_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("HQ_REDIS_URL", "")
    monkeypatch.setenv("HQ_AUTO_CREATE_SCHEMA", "true")
    monkeypatch.setenv("HQ_LOG_FORMAT", "console")
    get_settings.cache_clear()

    from habitquest.main import create_app

    app = create_app()
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    get_settings.cache_clear()
