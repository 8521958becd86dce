"""User achievement endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.database import get_db
from backend.api.dependencies import get_achievement_repository
from backend.api.schemas.achievement import (
    AchievementListResponse,
    AchievementSchema,
    CriterionProgressSchema,
    StatisticUpdateRequest,
    StatisticUpdateResponse,
)
from backend.api.services import reconciliation
from backend.api.services.achievement_engine import get_user_achievements
from backend.api.services.repositories import SqlAchievementRepository
from funraise.notifications import UserStatisticChanged

router = APIRouter()


@router.get("/{user_id}/achievements", response_model=AchievementListResponse)
async def list_achievements(
    user_id: int,
    repo: Annotated[SqlAchievementRepository, Depends(get_achievement_repository)],
) -> AchievementListResponse:
    """Return all achievements with the user's status and criterion progress."""
    views = await get_user_achievements(repo, user_id)
    return AchievementListResponse(
        achievements=[
            AchievementSchema(
                achievement_id=v.achievement_id,
                name=v.name,
                icon=v.icon,
                status=v.status,
                unlocked_at=v.unlocked_at,
                criteria=[
                    CriterionProgressSchema(
                        criterion_id=c.criterion_id,
                        type=c.type,
                        target=c.target,
                        current_value=c.current_value,
                        completed=c.completed,
                        completed_at=c.completed_at,
                    )
                    for c in v.criteria
                ],
            )
            for v in views
        ]
    )


@router.post("/{user_id}/statistics", response_model=StatisticUpdateResponse)
async def update_statistic(
    user_id: int,
    body: StatisticUpdateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> StatisticUpdateResponse:
    """Feed a changed user statistic to the achievement engine."""
    result = await reconciliation.handle(
        db,
        UserStatisticChanged(
            user_id=user_id,
            criterion_type=body.criterion_type,
            value=body.value,
            mode=body.mode,
        ),
        now=datetime.now(UTC),
    )
    return StatisticUpdateResponse(
        unlocked_achievement_ids=[aid for _, aid in result.unlocked],
    )
