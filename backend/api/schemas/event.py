"""Pydantic schemas for event condition endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ConditionSchema(BaseModel):
    """A stored end condition and whether it has been met."""

    id: int
    name: str
    operator: str
    value: str
    is_completed: bool
    is_malformed: bool = False


class ConditionGroupSchema(BaseModel):
    """An AND-group of conditions with its completion percentage."""

    id: int
    is_completed: bool
    is_failed: bool
    progress_percent: int
    conditions: list[ConditionSchema]


class EventConditionsResponse(BaseModel):
    """Response for an event's end-condition read-out."""

    event_id: int
    status: str
    groups: list[ConditionGroupSchema]


class ReconcileResponse(BaseModel):
    """Result of reconciling one event."""

    event_id: int
    status: str
    transitioned: bool
    unlocked: list[tuple[int, int]] = []


class TimeCheckRequest(BaseModel):
    """Optional clock override for a manual time sweep."""

    now: datetime | None = None


class TimeCheckResponse(BaseModel):
    """Events whose status changed during a time sweep."""

    transitions: dict[int, str]
    unlocked: list[tuple[int, int]] = []
