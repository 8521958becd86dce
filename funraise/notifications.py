"""Measurement-changed notifications consumed by the reconciliation step.

Services that change something the engine measures publish one of these
instead of calling the evaluators inline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from funraise.constants import CriterionType, UpdateMode


@dataclass(frozen=True, slots=True)
class DepositRecorded:
    """A deposit changed the bank total of an event."""

    event_id: int
    user_id: int
    amount: float


@dataclass(frozen=True, slots=True)
class ParticipationChanged:
    """A new participation was added to an event."""

    event_id: int
    user_id: int


@dataclass(frozen=True, slots=True)
class EventCreated:
    """A new event with its end conditions has been stored."""

    event_id: int
    creator_id: int


@dataclass(frozen=True, slots=True)
class TimeTick:
    """Periodic clock reading for TIME conditions. ``event_id=None`` sweeps all."""

    now: datetime
    event_id: int | None = None


@dataclass(frozen=True, slots=True)
class UserStatisticChanged:
    """A user statistic tracked by achievement criteria changed."""

    user_id: int
    criterion_type: CriterionType
    value: float
    mode: UpdateMode = UpdateMode.SET


Notification = (
    DepositRecorded | ParticipationChanged | EventCreated | TimeTick | UserStatisticChanged
)
