"""Aggregation of evaluated conditions into end-condition group state.

A group is an AND of its conditions. Aggregation is a pure read over condition
states that have already been evaluated; it never calls the comparator.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from funraise.conditions import Condition, TimeTarget
from funraise.constants import ConditionName


class HasCompletion(Protocol):
    """Anything carrying a completion flag (parsed conditions or ORM rows)."""

    @property
    def is_completed(self) -> bool: ...


@dataclass(frozen=True, slots=True)
class GroupAggregate:
    """Completion summary for one end-condition group."""

    is_completed: bool
    progress_percent: int
    completed_count: int
    total_count: int


def progress_percent(completed: int, total: int) -> int:
    """Percentage of completed items, rounded half up. 0 for an empty set."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def aggregate_group(conditions: Iterable[HasCompletion]) -> GroupAggregate:
    """Summarise a group's conditions.

    The group is completed only when it has at least one condition and every
    condition is completed; a group with no conditions never completes.
    """
    flags = [bool(c.is_completed) for c in conditions]
    total = len(flags)
    completed = sum(flags)
    return GroupAggregate(
        is_completed=total > 0 and completed == total,
        progress_percent=progress_percent(completed, total),
        completed_count=completed,
        total_count=total,
    )


def group_deadline_failed(conditions: Sequence[Condition], now: datetime) -> bool:
    """Return True when a group's deadline has passed with work still outstanding.

    That is: the group holds a TIME condition whose timestamp is at or before
    ``now`` and at least one non-TIME condition is not completed.
    """
    deadline_passed = any(
        isinstance(c.target, TimeTarget) and c.target.has_passed(now) for c in conditions
    )
    if not deadline_passed:
        return False
    return any(not c.is_completed for c in conditions if c.name is not ConditionName.TIME)
