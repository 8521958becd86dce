"""Event end-condition endpoints: status read-out and evaluation triggers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.database import get_db
from backend.api.dependencies import get_event_repository
from backend.api.schemas.event import (
    ConditionGroupSchema,
    ConditionSchema,
    EventConditionsResponse,
    ReconcileResponse,
    TimeCheckRequest,
    TimeCheckResponse,
)
from backend.api.services import reconciliation
from backend.api.services.condition_engine import get_event_conditions_status
from backend.api.services.repositories import SqlEventRepository
from funraise.errors import EntityNotFoundError
from funraise.notifications import TimeTick

router = APIRouter()


@router.get("/{event_id}/conditions", response_model=EventConditionsResponse)
async def event_conditions(
    event_id: int,
    repo: Annotated[SqlEventRepository, Depends(get_event_repository)],
) -> EventConditionsResponse:
    """Return every end-condition group of an event with its progress."""
    status = await get_event_conditions_status(repo, event_id)
    return EventConditionsResponse(
        event_id=status.event_id,
        status=status.status,
        groups=[
            ConditionGroupSchema(
                id=g.id,
                is_completed=g.is_completed,
                is_failed=g.is_failed,
                progress_percent=g.progress_percent,
                conditions=[
                    ConditionSchema(
                        id=c.id,
                        name=c.name,
                        operator=c.operator,
                        value=c.value,
                        is_completed=c.is_completed,
                        is_malformed=c.is_malformed,
                    )
                    for c in g.conditions
                ],
            )
            for g in status.groups
        ],
    )


@router.post("/{event_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_event(
    event_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReconcileResponse:
    """Re-measure and re-evaluate one event now."""
    result = await reconciliation.handle(db, TimeTick(now=datetime.now(UTC), event_id=event_id))
    event = await SqlEventRepository(db).get_event(event_id)
    if event is None:
        raise EntityNotFoundError("Event", event_id)
    return ReconcileResponse(
        event_id=event_id,
        status=event.status,
        transitioned=event_id in result.transitions,
        unlocked=result.unlocked,
    )


@router.post("/time-check", response_model=TimeCheckResponse)
async def time_check(
    db: Annotated[AsyncSession, Depends(get_db)],
    body: Annotated[TimeCheckRequest | None, Body()] = None,
) -> TimeCheckResponse:
    """Run the TIME-condition sweep over every open event."""
    now = body.now if body is not None and body.now is not None else datetime.now(UTC)
    result = await reconciliation.handle(db, TimeTick(now=now))
    return TimeCheckResponse(
        transitions={eid: str(status) for eid, status in result.transitions.items()},
        unlocked=result.unlocked,
    )
