"""Shared test fixtures for the funraise engine and store tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.api.db.models import (
    Achievement,
    AchievementCriterion,
    Base,
    EndCondition,
    Event,
    EventEndConditionGroup,
    Participation,
    User,
)
from funraise.constants import EventStatus, EventType

# In-memory SQLite for isolated store tests
_engine = create_async_engine("sqlite+aiosqlite:///", echo=False)


@event.listens_for(_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_conn: object, connection_record: object) -> None:
    cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


_session_factory = async_sessionmaker(bind=_engine, class_=AsyncSession, expire_on_commit=False)

# (name, operator, value)
ConditionSpec = tuple[str, str, str]

UserFactory = Callable[..., Awaitable[User]]
EventFactory = Callable[..., Awaitable[Event]]
DepositFactory = Callable[..., Awaitable[Participation]]
AchievementFactory = Callable[..., Awaitable[Achievement]]


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """The session factory bound to the in-memory test engine."""
    return _session_factory


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema and one open session per test."""
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with _session_factory() as session:
        yield session

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def make_user(db: AsyncSession) -> UserFactory:
    """Factory fixture: insert a user and return it."""
    counter = {"n": 0}

    async def _make(username: str | None = None) -> User:
        counter["n"] += 1
        name = username or f"user{counter['n']}"
        user = User(username=name, email=f"{name}@example.com")
        db.add(user)
        await db.flush()
        return user

    return _make


@pytest.fixture
def make_event(db: AsyncSession) -> EventFactory:
    """Factory fixture: insert an event with one group per entry of ``groups``."""

    async def _make(
        groups: Sequence[Sequence[ConditionSpec]] = (),
        *,
        status: EventStatus = EventStatus.IN_PROGRESS,
        event_type: EventType = EventType.DONATION,
        creator_id: int | None = None,
        recipient_id: int | None = None,
    ) -> Event:
        ev = Event(
            name="Charity run",
            type=event_type.value,
            status=status.value,
            creator_id=creator_id,
            recipient_id=recipient_id,
        )
        db.add(ev)
        await db.flush()
        for specs in groups:
            group = EventEndConditionGroup(event_id=ev.id)
            db.add(group)
            await db.flush()
            for name, operator, value in specs:
                db.add(EndCondition(group_id=group.id, name=name, operator=operator, value=value))
        await db.flush()
        return ev

    return _make


@pytest.fixture
def deposit(db: AsyncSession) -> DepositFactory:
    """Factory fixture: record a participation with a deposit."""

    async def _deposit(event_id: int, user_id: int, amount: float) -> Participation:
        row = Participation(event_id=event_id, user_id=user_id, deposit=amount)
        db.add(row)
        await db.flush()
        return row

    return _deposit


@pytest.fixture
def make_achievement(db: AsyncSession) -> AchievementFactory:
    """Factory fixture: insert an achievement with ``(type, target)`` criteria."""

    async def _make(name: str, criteria: Sequence[tuple[str, float]]) -> Achievement:
        achievement = Achievement(name=name, icon="star")
        achievement.criteria = [
            AchievementCriterion(type=str(ctype), target=float(target))
            for ctype, target in criteria
        ]
        db.add(achievement)
        await db.flush()
        return achievement

    return _make
