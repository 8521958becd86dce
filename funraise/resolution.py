"""Event status resolution from end-condition group states.

Groups combine with OR: one completed group completes the event. Terminal
statuses never change, so resolving twice is always safe.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from funraise.constants import TERMINAL_EVENT_STATUSES, EventStatus
from funraise.errors import EventNotInProgressError


class GroupState(Protocol):
    """Completion flags of one end-condition group."""

    @property
    def is_completed(self) -> bool: ...


class FailableGroupState(GroupState, Protocol):
    @property
    def is_failed(self) -> bool: ...


@dataclass(frozen=True, slots=True)
class EventResolution:
    """Outcome of resolving an event."""

    new_status: EventStatus
    transitioned: bool


def _check_resolvable(status: EventStatus | str, event_id: object) -> EventStatus | None:
    current = EventStatus(status)
    if current in TERMINAL_EVENT_STATUSES:
        return None
    if current is not EventStatus.IN_PROGRESS:
        raise EventNotInProgressError(event_id, current)
    return current


def resolve_event(
    status: EventStatus | str,
    groups: Sequence[GroupState],
    *,
    event_id: object = None,
) -> EventResolution:
    """Decide whether an IN_PROGRESS event completes.

    Terminal events are left alone (``transitioned=False``). Events that have
    not started raise ``EventNotInProgressError``.
    """
    current = _check_resolvable(status, event_id)
    if current is None:
        return EventResolution(new_status=EventStatus(status), transitioned=False)

    if any(g.is_completed for g in groups):
        return EventResolution(new_status=EventStatus.COMPLETED, transitioned=True)
    return EventResolution(new_status=current, transitioned=False)


def resolve_event_failure(
    status: EventStatus | str,
    groups: Sequence[FailableGroupState],
    *,
    event_id: object = None,
) -> EventResolution:
    """Fail an IN_PROGRESS event once every one of its groups has failed.

    An event without groups, or with any completed group, is never failed here.
    """
    current = _check_resolvable(status, event_id)
    if current is None:
        return EventResolution(new_status=EventStatus(status), transitioned=False)

    if groups and not any(g.is_completed for g in groups) and all(g.is_failed for g in groups):
        return EventResolution(new_status=EventStatus.FAILED, transitioned=True)
    return EventResolution(new_status=current, transitioned=False)
