"""Repository interfaces for the evaluation engine and their SQLAlchemy implementations.

The engine services only talk to the ``EventRepository`` / ``AchievementRepository``
protocols. Event status changes are a compare-and-set so that only one writer
per event wins.
Writes flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from backend.api.db.models import (
    Achievement,
    AchievementCriterion,
    EndCondition,
    Event,
    EventEndConditionGroup,
    Participation,
    User,
    UserAchievement,
    UserCriterionProgress,
)
from funraise.achievements import CriterionProgress, StatusChange
from funraise.constants import AchievementStatus, ConditionName, EventStatus


@dataclass(frozen=True, slots=True)
class EventMeasurements:
    """Current measured values for an event's measured conditions."""

    bank_total: float
    participation_count: int

    def for_condition(self, name: ConditionName | str) -> float | None:
        """Measurement feeding a condition of ``name``; ``None`` for clock-driven TIME."""
        if name == ConditionName.BANK:
            return self.bank_total
        if name == ConditionName.PARTICIPATION_COUNT:
            return float(self.participation_count)
        return None


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class EventRepository(Protocol):
    """Storage the condition engine reads from and writes to."""

    async def get_event(self, event_id: int) -> Event | None: ...

    async def get_condition(self, condition_id: int) -> EndCondition | None: ...

    async def get_group(self, group_id: int) -> EventEndConditionGroup | None: ...

    async def list_groups(self, event_id: int) -> list[EventEndConditionGroup]: ...

    async def list_conditions(self, group_id: int) -> list[EndCondition]: ...

    async def mark_condition_completed(self, condition: EndCondition) -> None: ...

    async def mark_group_completed(self, group: EventEndConditionGroup) -> None: ...

    async def mark_group_failed(self, group: EventEndConditionGroup) -> None: ...

    async def set_event_status(
        self, event: Event, status: EventStatus, *, expected: EventStatus = EventStatus.IN_PROGRESS
    ) -> bool: ...

    async def measure_event(self, event_id: int) -> EventMeasurements: ...

    async def list_participations(self, event_id: int) -> list[Participation]: ...

    async def list_events_with_time_conditions(self) -> list[int]: ...

    async def list_user_activity(self, user_id: int) -> list[datetime]: ...


class AchievementRepository(Protocol):
    """Storage the achievement engine reads from and writes to."""

    async def user_exists(self, user_id: int) -> bool: ...

    async def list_achievements(self) -> list[Achievement]: ...

    async def list_criteria(self, achievement_id: int) -> list[AchievementCriterion]: ...

    async def list_criteria_by_type(self, criterion_type: str) -> list[AchievementCriterion]: ...

    async def get_user_achievement(
        self, user_id: int, achievement_id: int
    ) -> UserAchievement | None: ...

    async def get_user_achievement_by_id(self, user_achievement_id: int) -> UserAchievement | None: ...

    async def list_user_achievements(self, user_id: int) -> list[UserAchievement]: ...

    async def create_user_achievement(self, user_id: int, achievement_id: int) -> UserAchievement: ...

    async def get_progress(
        self, user_achievement_id: int, criterion_id: int
    ) -> UserCriterionProgress | None: ...

    async def list_progress(self, user_achievement_id: int) -> list[UserCriterionProgress]: ...

    async def create_progress(
        self, user_achievement_id: int, criterion_id: int
    ) -> UserCriterionProgress: ...

    async def save_progress(
        self, row: UserCriterionProgress, progress: CriterionProgress
    ) -> None: ...

    async def save_status(self, row: UserAchievement, change: StatusChange) -> None: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------


class SqlEventRepository:
    """``EventRepository`` backed by an ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_event(self, event_id: int) -> Event | None:
        return await self.db.get(Event, event_id)

    async def get_condition(self, condition_id: int) -> EndCondition | None:
        return await self.db.get(EndCondition, condition_id)

    async def get_group(self, group_id: int) -> EventEndConditionGroup | None:
        return await self.db.get(EventEndConditionGroup, group_id)

    async def list_groups(self, event_id: int) -> list[EventEndConditionGroup]:
        result = await self.db.execute(
            select(EventEndConditionGroup)
            .where(EventEndConditionGroup.event_id == event_id)
            .order_by(EventEndConditionGroup.id)
        )
        return list(result.scalars().all())

    async def list_conditions(self, group_id: int) -> list[EndCondition]:
        result = await self.db.execute(
            select(EndCondition).where(EndCondition.group_id == group_id).order_by(EndCondition.id)
        )
        return list(result.scalars().all())

    async def mark_condition_completed(self, condition: EndCondition) -> None:
        condition.is_completed = True
        await self.db.flush()

    async def mark_group_completed(self, group: EventEndConditionGroup) -> None:
        group.is_completed = True
        await self.db.flush()

    async def mark_group_failed(self, group: EventEndConditionGroup) -> None:
        group.is_failed = True
        await self.db.flush()

    async def set_event_status(
        self, event: Event, status: EventStatus, *, expected: EventStatus = EventStatus.IN_PROGRESS
    ) -> bool:
        """Compare-and-set the event status; False when another writer got there first."""
        await self.db.flush()
        result = await self.db.execute(
            update(Event)
            .where(Event.id == event.id, Event.status == expected.value)
            .values(status=status.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.refresh(event, ["status"])
            return False
        set_committed_value(event, "status", status.value)
        return True

    async def measure_event(self, event_id: int) -> EventMeasurements:
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(Participation.deposit), 0.0),
                func.count(Participation.id),
            ).where(Participation.event_id == event_id)
        )
        bank_total, count = result.one()
        return EventMeasurements(bank_total=float(bank_total or 0.0), participation_count=count)

    async def list_participations(self, event_id: int) -> list[Participation]:
        result = await self.db.execute(
            select(Participation)
            .where(Participation.event_id == event_id)
            .order_by(Participation.id)
        )
        return list(result.scalars().all())

    async def list_events_with_time_conditions(self) -> list[int]:
        result = await self.db.execute(
            select(Event.id)
            .join(EventEndConditionGroup, EventEndConditionGroup.event_id == Event.id)
            .join(EndCondition, EndCondition.group_id == EventEndConditionGroup.id)
            .where(
                Event.status == EventStatus.IN_PROGRESS.value,
                EndCondition.name == ConditionName.TIME.value,
            )
            .distinct()
            .order_by(Event.id)
        )
        return [row[0] for row in result.all()]

    async def list_user_activity(self, user_id: int) -> list[datetime]:
        """Creation times of the user's events and participations."""
        created = await self.db.execute(
            select(Event.created_at).where(Event.creator_id == user_id)
        )
        joined = await self.db.execute(
            select(Participation.created_at).where(Participation.user_id == user_id)
        )
        return [t for t in [*created.scalars(), *joined.scalars()] if t is not None]


class SqlAchievementRepository:
    """``AchievementRepository`` backed by an ``AsyncSession``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def user_exists(self, user_id: int) -> bool:
        return await self.db.get(User, user_id) is not None

    async def list_achievements(self) -> list[Achievement]:
        result = await self.db.execute(
            select(Achievement).options(selectinload(Achievement.criteria)).order_by(Achievement.id)
        )
        return list(result.scalars().all())

    async def list_criteria(self, achievement_id: int) -> list[AchievementCriterion]:
        result = await self.db.execute(
            select(AchievementCriterion)
            .where(AchievementCriterion.achievement_id == achievement_id)
            .order_by(AchievementCriterion.id)
        )
        return list(result.scalars().all())

    async def list_criteria_by_type(self, criterion_type: str) -> list[AchievementCriterion]:
        result = await self.db.execute(
            select(AchievementCriterion)
            .where(AchievementCriterion.type == criterion_type)
            .order_by(AchievementCriterion.id)
        )
        return list(result.scalars().all())

    async def get_user_achievement(
        self, user_id: int, achievement_id: int
    ) -> UserAchievement | None:
        result = await self.db.execute(
            select(UserAchievement).where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_id == achievement_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_user_achievement_by_id(self, user_achievement_id: int) -> UserAchievement | None:
        return await self.db.get(UserAchievement, user_achievement_id)

    async def list_user_achievements(self, user_id: int) -> list[UserAchievement]:
        result = await self.db.execute(
            select(UserAchievement)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.achievement_id)
        )
        return list(result.scalars().all())

    async def create_user_achievement(self, user_id: int, achievement_id: int) -> UserAchievement:
        row = UserAchievement(
            user_id=user_id,
            achievement_id=achievement_id,
            status=AchievementStatus.IN_PROGRESS.value,
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def get_progress(
        self, user_achievement_id: int, criterion_id: int
    ) -> UserCriterionProgress | None:
        result = await self.db.execute(
            select(UserCriterionProgress).where(
                UserCriterionProgress.user_achievement_id == user_achievement_id,
                UserCriterionProgress.criterion_id == criterion_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_progress(self, user_achievement_id: int) -> list[UserCriterionProgress]:
        result = await self.db.execute(
            select(UserCriterionProgress)
            .where(UserCriterionProgress.user_achievement_id == user_achievement_id)
            .order_by(UserCriterionProgress.criterion_id)
        )
        return list(result.scalars().all())

    async def create_progress(
        self, user_achievement_id: int, criterion_id: int
    ) -> UserCriterionProgress:
        row = UserCriterionProgress(
            user_achievement_id=user_achievement_id,
            criterion_id=criterion_id,
            current_value=0.0,
            completed=False,
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def save_progress(self, row: UserCriterionProgress, progress: CriterionProgress) -> None:
        row.current_value = progress.current_value
        row.completed = progress.completed
        row.completed_at = progress.completed_at
        await self.db.flush()

    async def save_status(self, row: UserAchievement, change: StatusChange) -> None:
        row.status = change.status.value
        row.unlocked_at = change.unlocked_at
        await self.db.flush()


def completed_criterion_ids(progress: Sequence[UserCriterionProgress]) -> set[int]:
    """Criterion ids whose progress row is completed."""
    return {p.criterion_id for p in progress if p.completed}
