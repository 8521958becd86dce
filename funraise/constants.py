"""Shared enums and constants for the funraise engine.

Every enum is a ``StrEnum`` so values round-trip through the database and JSON
as plain strings.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Events and end conditions
# ---------------------------------------------------------------------------


class EventType(StrEnum):
    """Kind of fundraising event; drives the payout split."""

    DONATION = "DONATION"
    FUNDRAISING = "FUNDRAISING"
    JACKPOT = "JACKPOT"


class EventStatus(StrEnum):
    """Lifecycle of an event. COMPLETED and FAILED are terminal."""

    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_EVENT_STATUSES: frozenset[EventStatus] = frozenset(
    {EventStatus.COMPLETED, EventStatus.FAILED}
)


class ConditionName(StrEnum):
    """What an end condition measures. Also decides how its value is parsed."""

    BANK = "BANK"
    TIME = "TIME"
    PARTICIPATION_COUNT = "PARTICIPATION_COUNT"


class Operator(StrEnum):
    """Comparison operators available to end conditions."""

    EQUALS = "EQUALS"
    GREATER = "GREATER"
    GREATER_EQUALS = "GREATER_EQUALS"
    LESS = "LESS"
    LESS_EQUALS = "LESS_EQUALS"


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class CriterionType(StrEnum):
    """User statistic an achievement criterion is measured against."""

    EVENT_BANK_COMPLETED = "EVENT_BANK_COMPLETED"  # bank of a completed event joined
    EVENT_PEOPLE_COMPLETED = "EVENT_PEOPLE_COMPLETED"  # participants of a completed event
    EVENT_TIME_COMPLETED = "EVENT_TIME_COMPLETED"  # completed events with a time condition
    EVENT_INCOME_ONETIME = "EVENT_INCOME_ONETIME"  # largest single event income
    EVENT_INCOME_ALL = "EVENT_INCOME_ALL"  # income summed over completed events
    EVENT_COUNT_ALL = "EVENT_COUNT_ALL"  # events created or joined
    EVENT_COUNT_CREATED = "EVENT_COUNT_CREATED"
    EVENT_COUNT_COMPLETED = "EVENT_COUNT_COMPLETED"
    USER_ACTIVITY = "USER_ACTIVITY"  # active-day streak
    USER_BANK = "USER_BANK"  # account balance


class AchievementStatus(StrEnum):
    """Lifecycle of a user's achievement record."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UpdateMode(StrEnum):
    """How a raw statistic turns into an absolute criterion measurement."""

    INCREMENT = "increment"
    SET = "set"
    MAX = "max"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class TransactionType(StrEnum):
    """Balance ledger entry kinds."""

    BALANCE_INCOME = "BALANCE_INCOME"
    BALANCE_OUTCOME = "BALANCE_OUTCOME"
    EVENT_INCOME = "EVENT_INCOME"
    EVENT_OUTCOME = "EVENT_OUTCOME"
    GIFT = "GIFT"


OUTGOING_TRANSACTION_TYPES: frozenset[TransactionType] = frozenset(
    {TransactionType.BALANCE_OUTCOME, TransactionType.EVENT_OUTCOME}
)


# Share of the bank paid out on completion; the rest is commission.
PAYOUT_PERCENTAGES: dict[EventType, float] = {
    EventType.DONATION: 0.96,
    EventType.FUNDRAISING: 0.98,
    EventType.JACKPOT: 0.90,
}
DEFAULT_PAYOUT_PERCENTAGE: float = 1.0

# Jackpot draw: every participant gets a bank-proportional base ticket count
# on top of their deposit weight.
JACKPOT_RANDOMNESS_COEFFICIENT: float = 0.2
JACKPOT_MINIMUM_BASE_TICKETS: int = 5

# USER_ACTIVITY counts distinct active days within this trailing window.
ACTIVITY_WINDOW_DAYS: int = 30
