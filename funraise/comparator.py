"""Comparison operator DSL used by event end conditions."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from funraise.constants import Operator
from funraise.errors import InvalidOperatorError

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_operator(operator: Operator | str) -> Operator:
    """Return the ``Operator`` for a stored string, or raise ``InvalidOperatorError``."""
    if isinstance(operator, Operator):
        return operator
    try:
        return Operator(operator)
    except ValueError:
        raise InvalidOperatorError(operator) from None


def compare(operator: Operator | str, actual: float, target: float) -> bool:
    """Evaluate ``actual <operator> target``.

    Raises ``InvalidOperatorError`` for anything outside the five supported
    operators.
    """
    op = parse_operator(operator)

    if op is Operator.EQUALS:
        return actual == target
    if op is Operator.GREATER:
        return actual > target
    if op is Operator.GREATER_EQUALS:
        return actual >= target
    if op is Operator.LESS:
        return actual < target
    if op is Operator.LESS_EQUALS:
        return actual <= target

    raise InvalidOperatorError(operator)


def to_epoch_ms(moment: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds. Naive values are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return (moment - _EPOCH) // timedelta(milliseconds=1)
