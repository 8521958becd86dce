"""Exception taxonomy for the evaluation engine.

Two families matter to callers:

* ``MalformedConditionError`` - one stored condition cannot be evaluated.
  The evaluator logs it and treats the condition as not satisfied.
* ``ContractViolationError`` - the caller asked for an illegal transition.
  Always raised, never ignored.
"""

from __future__ import annotations


class FunraiseError(Exception):
    """Base class for engine errors."""


class MalformedConditionError(FunraiseError, ValueError):
    """A condition's operator or value cannot be interpreted."""


class InvalidOperatorError(MalformedConditionError):
    """Operator is not one of the supported comparison operators."""

    def __init__(self, operator: object) -> None:
        super().__init__(f"Unsupported operator: {operator!r}")
        self.operator = operator


class InvalidConditionValueError(MalformedConditionError):
    """Stored value does not parse for the condition's declared type."""

    def __init__(self, name: object, value: object, reason: str = "") -> None:
        msg = f"Invalid value {value!r} for condition {name}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.name = name
        self.value = value


class ContractViolationError(FunraiseError):
    """The caller requested a transition the state machine forbids."""


class EventNotInProgressError(ContractViolationError):
    """Event resolution was requested for an event that has not started."""

    def __init__(self, event_id: object, status: object) -> None:
        super().__init__(f"Event {event_id} is {status}, expected IN_PROGRESS")
        self.event_id = event_id
        self.status = status


class StatusAlreadySetError(ContractViolationError):
    """A status update would write the value the record already holds."""

    def __init__(self, status: object) -> None:
        super().__init__(f"Status is already set to {status}")
        self.status = status


class EntityNotFoundError(FunraiseError, LookupError):
    """A referenced record does not exist in the store."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id
