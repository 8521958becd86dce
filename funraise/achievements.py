"""Achievement criterion progress and unlock rules.

Unlike event end conditions, criteria have a single fixed comparison: a
criterion is reached once the measurement is at or above its target. Progress
is cumulative, so a reached criterion stays completed even if the measurement
later drops (refunds do not take an earned achievement away).
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from funraise.constants import ACTIVITY_WINDOW_DAYS, AchievementStatus, UpdateMode
from funraise.errors import StatusAlreadySetError


@dataclass(frozen=True, slots=True)
class CriterionProgress:
    """A user's progress toward one criterion."""

    current_value: float = 0.0
    completed: bool = False
    completed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ProgressResult:
    """Outcome of recording one measurement."""

    criterion_completed: bool
    achievement_unlocked: bool


@dataclass(frozen=True, slots=True)
class StatusChange:
    """New status fields for a user achievement."""

    status: AchievementStatus
    unlocked_at: datetime | None


def criterion_reached(value: float, target: float) -> bool:
    """Reached-or-exceeded check shared by every criterion type."""
    return value >= target


def next_progress(
    progress: CriterionProgress,
    measurement: float,
    target: float,
    *,
    now: datetime,
) -> CriterionProgress:
    """Overwrite the current value with ``measurement`` and update completion.

    ``completed`` only ever goes from False to True; ``completed_at`` records
    the first time it did.
    """
    completed = progress.completed or criterion_reached(measurement, target)
    completed_at = progress.completed_at
    if completed and not progress.completed:
        completed_at = now
    return CriterionProgress(
        current_value=measurement,
        completed=completed,
        completed_at=completed_at,
    )


def next_measurement(mode: UpdateMode | str, current: float, value: float) -> float:
    """Turn a raw statistic into the absolute measurement to record."""
    update_mode = UpdateMode(mode)
    if update_mode is UpdateMode.SET:
        return value
    if update_mode is UpdateMode.MAX:
        return max(current, value)
    return current + value


def all_criteria_completed(
    criterion_ids: Iterable[int],
    completed_ids: Collection[int],
) -> bool:
    """True when the achievement has criteria and every one of them is completed."""
    ids = list(criterion_ids)
    return bool(ids) and all(cid in completed_ids for cid in ids)


def transition_status(
    current: AchievementStatus | str,
    new: AchievementStatus | str,
    *,
    now: datetime,
) -> StatusChange:
    """Validate a status change and compute the matching ``unlocked_at``.

    Writing the status a record already holds raises ``StatusAlreadySetError``;
    this is what stops a duplicate unlock notification from applying twice.
    """
    current_status = AchievementStatus(current)
    new_status = AchievementStatus(new)
    if current_status is new_status:
        raise StatusAlreadySetError(new_status)
    unlocked_at = now if new_status is AchievementStatus.COMPLETED else None
    return StatusChange(status=new_status, unlocked_at=unlocked_at)


def count_active_days(
    moments: Iterable[datetime],
    *,
    now: datetime,
    window_days: int = ACTIVITY_WINDOW_DAYS,
) -> int:
    """Distinct UTC calendar days with activity in the ``window_days`` before ``now``."""
    since = now - timedelta(days=window_days)
    return len({m.astimezone(UTC).date() for m in moments if since < m <= now})
