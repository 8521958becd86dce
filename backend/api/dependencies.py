"""FastAPI dependency injection functions."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.config import Settings
from backend.api.db.database import get_db
from backend.api.services.repositories import SqlAchievementRepository, SqlEventRepository


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton application settings."""
    return Settings()


def get_event_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SqlEventRepository:
    """Event repository bound to the request's session."""
    return SqlEventRepository(db)


def get_achievement_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SqlAchievementRepository:
    """Achievement repository bound to the request's session."""
    return SqlAchievementRepository(db)
