"""Balance ledger writes for completed events."""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.models import Event, Participation, Transaction
from funraise.constants import OUTGOING_TRANSACTION_TYPES, EventType, TransactionType
from funraise.payouts import Entrant, draw_jackpot_winner, split_bank

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EventPayout:
    """Who got paid for a completed event, and how much."""

    beneficiary_id: int | None
    payout: int
    commission: float


def _beneficiary(
    event: Event, participations: Sequence[Participation], rng: random.Random | None
) -> int | None:
    if event.type == EventType.JACKPOT:
        entrants = [Entrant(user_id=p.user_id, deposit=p.deposit) for p in participations]
        return draw_jackpot_winner(entrants, rng)
    return event.recipient_id


async def pay_out_event(
    db: AsyncSession,
    event: Event,
    participations: Sequence[Participation],
    *,
    rng: random.Random | None = None,
) -> EventPayout:
    """Credit the event bank, minus commission, to the recipient or jackpot winner.

    Writes one EVENT_INCOME transaction. Nothing is written when the bank is
    empty or there is nobody to pay.
    """
    total = sum(p.deposit or 0 for p in participations)
    split = split_bank(total, event.type)
    beneficiary = _beneficiary(event, participations, rng)

    if beneficiary is None or split.payout <= 0:
        logger.info("Event %s completed with nothing to pay out", event.id)
        return EventPayout(beneficiary_id=None, payout=0, commission=split.commission)

    db.add(
        Transaction(
            user_id=beneficiary,
            amount=float(split.payout),
            type=TransactionType.EVENT_INCOME.value,
            event_id=event.id,
        )
    )
    await db.flush()
    logger.info(
        "Event %s paid %d to user %s (commission %.2f)",
        event.id,
        split.payout,
        beneficiary,
        split.commission,
    )
    return EventPayout(beneficiary_id=beneficiary, payout=split.payout, commission=split.commission)


async def user_balance(db: AsyncSession, user_id: int) -> float:
    """Current balance: incoming transactions minus outgoing ones."""
    outgoing = [t.value for t in OUTGOING_TRANSACTION_TYPES]
    signed = case((Transaction.type.in_(outgoing), -Transaction.amount), else_=Transaction.amount)
    result = await db.execute(
        select(func.coalesce(func.sum(signed), 0.0)).where(Transaction.user_id == user_id)
    )
    return float(result.scalar_one() or 0.0)
