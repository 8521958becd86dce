"""SQLAlchemy 2.0 async ORM models."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from funraise.constants import AchievementStatus, EventStatus


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp that always reads back in UTC.

    Backends without a native timezone type (SQLite) drop the offset, so values
    are normalised to UTC on the way in and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class User(Base):
    """A platform user. Credentials and linked accounts live elsewhere."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())

    achievements: Mapped[list[UserAchievement]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Event(Base):
    """A fundraising event closed by any one of its end-condition groups."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False)  # DONATION / FUNDRAISING / JACKPOT
    status: Mapped[str] = mapped_column(String, nullable=False, default=EventStatus.IN_PROGRESS)
    creator_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    recipient_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())

    groups: Mapped[list[EventEndConditionGroup]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )
    participations: Mapped[list[Participation]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_events_status", "status"),)


class EventEndConditionGroup(Base):
    """An AND-group of end conditions belonging to one event."""

    __tablename__ = "event_end_condition_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_failed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    event: Mapped[Event] = relationship(back_populates="groups")
    conditions: Mapped[list[EndCondition]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (is_completed AND is_failed)", name="check_group_not_completed_and_failed"
        ),
    )


class EndCondition(Base):
    """One comparable predicate (name / operator / string target)."""

    __tablename__ = "end_conditions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("event_end_condition_groups.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)  # BANK / TIME / PARTICIPATION_COUNT
    operator: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[str] = mapped_column(String, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    group: Mapped[EventEndConditionGroup] = relationship(back_populates="conditions")

    __table_args__ = (Index("ix_end_conditions_group", "group_id"),)


class Participation(Base):
    """A user's deposit into an event."""

    __tablename__ = "participations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    deposit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())

    event: Mapped[Event] = relationship(back_populates="participations")


class Transaction(Base):
    """A balance ledger entry."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


class Achievement(Base):
    """A badge unlocked once all of its criteria are reached."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)

    criteria: Mapped[list[AchievementCriterion]] = relationship(
        back_populates="achievement", cascade="all, delete-orphan"
    )


class AchievementCriterion(Base):
    """A reached-or-exceeded threshold on one user statistic."""

    __tablename__ = "achievement_criteria"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    achievement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    target: Mapped[float] = mapped_column(Float, nullable=False)

    achievement: Mapped[Achievement] = relationship(back_populates="criteria")

    __table_args__ = (Index("ix_achievement_criteria_type", "type"),)


class UserAchievement(Base):
    """A user's state for one achievement."""

    __tablename__ = "user_achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    achievement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=AchievementStatus.IN_PROGRESS
    )
    unlocked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    user: Mapped[User] = relationship(back_populates="achievements")
    progress: Mapped[list[UserCriterionProgress]] = relationship(
        back_populates="user_achievement", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("user_id", "achievement_id"),)


class UserCriterionProgress(Base):
    """A user's current measurement toward one achievement criterion."""

    __tablename__ = "user_criterion_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_achievement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_achievements.id", ondelete="CASCADE"), nullable=False
    )
    criterion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievement_criteria.id", ondelete="CASCADE"), nullable=False
    )
    current_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    user_achievement: Mapped[UserAchievement] = relationship(back_populates="progress")

    __table_args__ = (UniqueConstraint("user_achievement_id", "criterion_id"),)
