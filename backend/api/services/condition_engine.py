"""Persisted end-condition evaluation.

Wraps the pure evaluator, aggregator and resolver from ``funraise`` with the
read-modify-write against an ``EventRepository``. Each function is one explicit
step; nothing here cascades on its own. ``reconcile_event`` and
``sweep_time_conditions`` are the callers that chain the steps together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from backend.api.db.models import EndCondition, Event
from backend.api.services.repositories import EventMeasurements, EventRepository
from funraise import aggregation, resolution
from funraise.conditions import Condition, load_condition
from funraise.conditions import evaluate_condition as evaluate_pure
from funraise.constants import ConditionName, EventStatus
from funraise.errors import EntityNotFoundError, MalformedConditionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConditionStatus:
    """Read-out of one stored condition."""

    id: int
    name: str
    operator: str
    value: str
    is_completed: bool
    is_malformed: bool = False


@dataclass(frozen=True, slots=True)
class GroupStatus:
    """Read-out of one end-condition group with its progress."""

    id: int
    is_completed: bool
    is_failed: bool
    progress_percent: int
    conditions: list[ConditionStatus] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class EventConditionsStatus:
    """Read-out of an event's end conditions."""

    event_id: int
    status: str
    groups: list[GroupStatus] = field(default_factory=list)


def _to_condition(row: EndCondition) -> Condition | None:
    """Parse a stored row, logging and returning None when it is malformed."""
    try:
        return load_condition(row.id, row.name, row.operator, row.value, row.is_completed)
    except MalformedConditionError as exc:
        logger.warning("Skipping malformed condition %s: %s", row.id, exc)
        return None


async def _evaluate_row(
    repo: EventRepository,
    row: EndCondition,
    current_measurement: float | None,
    now: datetime,
) -> Condition | None:
    condition = _to_condition(row)
    if condition is None:
        return None
    updated = evaluate_pure(condition, current_measurement, now=now)
    if updated.is_completed and not row.is_completed:
        await repo.mark_condition_completed(row)
        logger.info("Condition %s (%s) completed", row.id, row.name)
    return updated


async def _apply_transition(
    repo: EventRepository, event: Event, result: resolution.EventResolution
) -> resolution.EventResolution:
    """Write a resolved transition; losing the compare-and-set reports no transition."""
    if not result.transitioned:
        return result
    if not await repo.set_event_status(event, result.new_status):
        logger.info("Event %s already left IN_PROGRESS (now %s)", event.id, event.status)
        return resolution.EventResolution(new_status=EventStatus(event.status), transitioned=False)
    logger.info("Event %s -> %s", event.id, result.new_status)
    return result


# ---------------------------------------------------------------------------
# Single steps
# ---------------------------------------------------------------------------


async def evaluate_condition(
    repo: EventRepository,
    condition_id: int,
    current_measurement: float | None = None,
    *,
    now: datetime | None = None,
) -> Condition | None:
    """Evaluate one stored condition and persist its completion.

    ``is_completed`` is only ever written from False to True. Returns the
    updated condition, or ``None`` when the stored row is malformed (reported as
    not satisfied). Group and event state are left untouched. Conditions of a
    failed group are frozen and come back unevaluated.
    """
    row = await repo.get_condition(condition_id)
    if row is None:
        raise EntityNotFoundError("Condition", condition_id)
    group = await repo.get_group(row.group_id)
    if group is not None and group.is_failed:
        logger.debug("Condition %s belongs to failed group %s", row.id, group.id)
        return _to_condition(row)
    return await _evaluate_row(repo, row, current_measurement, now or datetime.now(UTC))


async def aggregate_group(repo: EventRepository, group_id: int) -> aggregation.GroupAggregate:
    """Aggregate a group's stored conditions and mark it completed when they all are."""
    group = await repo.get_group(group_id)
    if group is None:
        raise EntityNotFoundError("Group", group_id)

    conditions = await repo.list_conditions(group_id)
    result = aggregation.aggregate_group(conditions)
    if result.is_completed and not group.is_completed and not group.is_failed:
        await repo.mark_group_completed(group)
        logger.info("Group %s of event %s completed", group.id, group.event_id)
    return result


async def resolve_event(repo: EventRepository, event_id: int) -> resolution.EventResolution:
    """Complete an IN_PROGRESS event when any of its groups is completed."""
    event = await repo.get_event(event_id)
    if event is None:
        raise EntityNotFoundError("Event", event_id)

    groups = await repo.list_groups(event_id)
    result = resolution.resolve_event(event.status, groups, event_id=event_id)
    return await _apply_transition(repo, event, result)


async def fail_expired_groups(
    repo: EventRepository,
    event_id: int,
    *,
    now: datetime | None = None,
) -> resolution.EventResolution:
    """Mark groups whose deadline passed unmet as failed, then fail the event if none remain.

    A group is never failed once completed. Malformed conditions in a group
    keep it from being judged, so it stays open.
    """
    now = now or datetime.now(UTC)
    event = await repo.get_event(event_id)
    if event is None:
        raise EntityNotFoundError("Event", event_id)

    groups = await repo.list_groups(event_id)
    for group in groups:
        if group.is_completed or group.is_failed:
            continue
        rows = await repo.list_conditions(group.id)
        parsed = [_to_condition(row) for row in rows]
        if any(c is None for c in parsed):
            continue
        if aggregation.group_deadline_failed(parsed, now):
            await repo.mark_group_failed(group)
            logger.info("Group %s of event %s failed: deadline passed", group.id, event_id)

    result = resolution.resolve_event_failure(event.status, groups, event_id=event_id)
    return await _apply_transition(repo, event, result)


# ---------------------------------------------------------------------------
# Chained callers
# ---------------------------------------------------------------------------


async def reconcile_event(
    repo: EventRepository,
    event_id: int,
    *,
    now: datetime | None = None,
    measurements: EventMeasurements | None = None,
) -> resolution.EventResolution:
    """Re-measure an event, evaluate every open condition, aggregate, and resolve.

    Terminal events are returned as-is without touching their conditions.
    """
    now = now or datetime.now(UTC)
    event = await repo.get_event(event_id)
    if event is None:
        raise EntityNotFoundError("Event", event_id)

    status = EventStatus(event.status)
    if status is not EventStatus.IN_PROGRESS:
        return resolution.resolve_event(status, [], event_id=event_id)

    if measurements is None:
        measurements = await repo.measure_event(event_id)

    for group in await repo.list_groups(event_id):
        if group.is_completed or group.is_failed:
            continue
        for row in await repo.list_conditions(group.id):
            if row.is_completed:
                continue
            await _evaluate_row(repo, row, measurements.for_condition(row.name), now)
        await aggregate_group(repo, group.id)

    return await resolve_event(repo, event_id)


async def sweep_time_conditions(
    repo: EventRepository,
    *,
    now: datetime | None = None,
) -> dict[int, EventStatus]:
    """Run the periodic clock check over every IN_PROGRESS event with TIME conditions.

    Each event is reconciled and then put through the deadline failure policy.
    Returns the events whose status changed, mapped to their new status.
    """
    now = now or datetime.now(UTC)
    changed: dict[int, EventStatus] = {}
    for event_id in await repo.list_events_with_time_conditions():
        outcome = await reconcile_event(repo, event_id, now=now)
        if not outcome.transitioned:
            outcome = await fail_expired_groups(repo, event_id, now=now)
        if outcome.transitioned:
            changed[event_id] = outcome.new_status
    if changed:
        logger.info("Time sweep changed %d event(s): %s", len(changed), changed)
    return changed


async def get_event_conditions_status(
    repo: EventRepository, event_id: int
) -> EventConditionsStatus:
    """Read-only view of an event's groups, conditions and progress."""
    event = await repo.get_event(event_id)
    if event is None:
        raise EntityNotFoundError("Event", event_id)

    groups: list[GroupStatus] = []
    for group in await repo.list_groups(event_id):
        rows = await repo.list_conditions(group.id)
        summary = aggregation.aggregate_group(rows)
        groups.append(
            GroupStatus(
                id=group.id,
                is_completed=group.is_completed,
                is_failed=group.is_failed,
                progress_percent=summary.progress_percent,
                conditions=[
                    ConditionStatus(
                        id=row.id,
                        name=row.name,
                        operator=row.operator,
                        value=row.value,
                        is_completed=row.is_completed,
                        is_malformed=_is_malformed(row),
                    )
                    for row in rows
                ],
            )
        )
    return EventConditionsStatus(event_id=event.id, status=event.status, groups=groups)


def _is_malformed(row: EndCondition) -> bool:
    try:
        load_condition(row.id, row.name, row.operator, row.value)
    except MalformedConditionError:
        return True
    return False


def has_time_condition(rows: list[EndCondition]) -> bool:
    """True when any of the rows is a TIME condition."""
    return any(row.name == ConditionName.TIME for row in rows)
