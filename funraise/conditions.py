"""End-condition targets and the single-condition evaluator.

A stored condition keeps its target as an untyped string whose meaning depends
on the condition name. ``parse_target`` turns that string into a typed target
once, at load time, so evaluation never re-parses and an unparsable condition
is rejected before it reaches the comparator:

    BANK                -> BankTarget(amount: float)
    PARTICIPATION_COUNT -> ParticipationTarget(count: int)
    TIME                -> TimeTarget(epoch_ms: int)

TIME conditions compare the stored timestamp against the evaluation clock,
reading the operator from the timestamp's side: ``target <op> now``.  A
``LESS_EQUALS`` deadline is therefore satisfied once the deadline has passed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import ClassVar

from funraise.comparator import compare, parse_operator, to_epoch_ms
from funraise.constants import ConditionName, Operator
from funraise.errors import InvalidConditionValueError

# ---------------------------------------------------------------------------
# Typed targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BankTarget:
    """Total deposits the event bank is compared against."""

    amount: float
    name: ClassVar[ConditionName] = ConditionName.BANK


@dataclass(frozen=True, slots=True)
class ParticipationTarget:
    """Number of participations the event is compared against."""

    count: int
    name: ClassVar[ConditionName] = ConditionName.PARTICIPATION_COUNT


@dataclass(frozen=True, slots=True)
class TimeTarget:
    """A point in time, as epoch milliseconds."""

    epoch_ms: int
    name: ClassVar[ConditionName] = ConditionName.TIME

    def has_passed(self, now: datetime) -> bool:
        """Return True once ``now`` is at or after this timestamp."""
        return self.epoch_ms <= to_epoch_ms(now)


ConditionTarget = BankTarget | ParticipationTarget | TimeTarget


def _parse_bank(value: str) -> BankTarget:
    amount = float(value)
    if not math.isfinite(amount):
        raise ValueError("amount must be finite")
    return BankTarget(amount=amount)


def _parse_participation(value: str) -> ParticipationTarget:
    try:
        count = int(value)
    except ValueError:
        as_float = float(value)
        if not as_float.is_integer():
            raise ValueError("count must be a whole number") from None
        count = int(as_float)
    if count < 0:
        raise ValueError("count must not be negative")
    return ParticipationTarget(count=count)


def _parse_time(value: str) -> TimeTarget:
    return TimeTarget(epoch_ms=to_epoch_ms(datetime.fromisoformat(value)))


_PARSERS = {
    ConditionName.BANK: _parse_bank,
    ConditionName.PARTICIPATION_COUNT: _parse_participation,
    ConditionName.TIME: _parse_time,
}


def parse_target(name: ConditionName | str, value: str | None) -> ConditionTarget:
    """Parse a stored condition value according to the condition name.

    Raises ``InvalidConditionValueError`` for unknown names and for values
    that do not parse as the name's declared type.
    """
    try:
        condition_name = ConditionName(name)
    except ValueError:
        raise InvalidConditionValueError(name, value, "unknown condition name") from None

    if value is None or not str(value).strip():
        raise InvalidConditionValueError(condition_name, value, "empty value")

    try:
        return _PARSERS[condition_name](str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidConditionValueError(condition_name, value, str(exc)) from None


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Condition:
    """A parsed end condition, ready for evaluation."""

    id: int | None
    operator: Operator
    target: ConditionTarget
    is_completed: bool = False

    @property
    def name(self) -> ConditionName:
        return self.target.name


def load_condition(
    condition_id: int | None,
    name: ConditionName | str,
    operator: Operator | str,
    value: str | None,
    is_completed: bool = False,
) -> Condition:
    """Build a ``Condition`` from its stored columns.

    Raises a ``MalformedConditionError`` subclass when the operator or value is
    unusable.
    """
    return Condition(
        id=condition_id,
        operator=parse_operator(operator),
        target=parse_target(name, value),
        is_completed=bool(is_completed),
    )


def is_satisfied(
    condition: Condition,
    current_measurement: float | None = None,
    *,
    now: datetime | None = None,
) -> bool:
    """Evaluate the condition's predicate, ignoring its stored completion flag.

    TIME conditions read the clock (``now``, defaulting to the current UTC
    time). Measured conditions need ``current_measurement``; without one they
    are not satisfied.
    """
    target = condition.target

    if isinstance(target, TimeTarget):
        moment = now if now is not None else datetime.now(UTC)
        return compare(condition.operator, target.epoch_ms, to_epoch_ms(moment))

    if current_measurement is None:
        return False

    if isinstance(target, BankTarget):
        return compare(condition.operator, float(current_measurement), target.amount)
    return compare(condition.operator, current_measurement, target.count)


def evaluate_condition(
    condition: Condition,
    current_measurement: float | None = None,
    *,
    now: datetime | None = None,
) -> Condition:
    """Return the condition with ``is_completed`` updated for this measurement.

    Completion is sticky: a condition that is already completed is returned
    unchanged whatever the measurement says.
    """
    if condition.is_completed:
        return condition
    if is_satisfied(condition, current_measurement, now=now):
        return replace(condition, is_completed=True)
    return condition
