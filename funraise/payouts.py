"""Payout split and jackpot draw for completed events."""

from __future__ import annotations

import math
import random
from collections.abc import Sequence
from dataclasses import dataclass

from funraise.constants import (
    DEFAULT_PAYOUT_PERCENTAGE,
    JACKPOT_MINIMUM_BASE_TICKETS,
    JACKPOT_RANDOMNESS_COEFFICIENT,
    PAYOUT_PERCENTAGES,
    EventType,
)


@dataclass(frozen=True, slots=True)
class Payout:
    """Split of an event bank into payout and platform commission."""

    payout: int
    commission: float


@dataclass(frozen=True, slots=True)
class Entrant:
    """One participant in a jackpot draw."""

    user_id: int
    deposit: float


def payout_percentage(event_type: EventType | str) -> float:
    """Share of the bank paid out for an event type."""
    try:
        return PAYOUT_PERCENTAGES[EventType(event_type)]
    except (KeyError, ValueError):
        return DEFAULT_PAYOUT_PERCENTAGE


def split_bank(total: float, event_type: EventType | str) -> Payout:
    """Split ``total`` into a floored payout and the remaining commission."""
    payout = math.floor(total * payout_percentage(event_type))
    return Payout(payout=payout, commission=total - payout)


def jackpot_tickets(total: float, deposit: float) -> int:
    """Ticket count for one entrant: bank-proportional base plus deposit weight."""
    base = max(JACKPOT_MINIMUM_BASE_TICKETS, math.floor(total * JACKPOT_RANDOMNESS_COEFFICIENT))
    return base + max(1, math.floor(deposit or 1))


def draw_jackpot_winner(
    entrants: Sequence[Entrant],
    rng: random.Random | None = None,
) -> int | None:
    """Pick a winner weighted by tickets. ``None`` when nobody entered."""
    if not entrants:
        return None
    total = sum(e.deposit or 0 for e in entrants)
    weights = [jackpot_tickets(total, e.deposit) for e in entrants]
    chooser = rng if rng is not None else random.Random()
    return chooser.choices([e.user_id for e in entrants], weights=weights, k=1)[0]
