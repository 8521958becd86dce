"""Pydantic schemas for achievement endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from funraise.constants import CriterionType, UpdateMode


class CriterionProgressSchema(BaseModel):
    """Progress toward one criterion of an achievement."""

    criterion_id: int
    type: str
    target: float
    current_value: float
    completed: bool
    completed_at: datetime | None = None


class AchievementSchema(BaseModel):
    """A single achievement with the user's status."""

    achievement_id: int
    name: str
    icon: str | None = None
    status: str
    unlocked_at: datetime | None = None
    criteria: list[CriterionProgressSchema]


class AchievementListResponse(BaseModel):
    """Response for listing a user's achievements."""

    achievements: list[AchievementSchema]


class StatisticUpdateRequest(BaseModel):
    """A change to one user statistic tracked by achievement criteria."""

    criterion_type: CriterionType
    value: float = Field(ge=0)
    mode: UpdateMode = UpdateMode.SET


class StatisticUpdateResponse(BaseModel):
    """Achievements unlocked by a statistic update."""

    unlocked_achievement_ids: list[int]
