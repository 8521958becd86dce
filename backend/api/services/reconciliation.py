"""Reconciliation step: consumes measurement-changed notifications.

Services that move money or participants publish a notification instead of
calling the evaluators themselves; ``handle`` turns it into the explicit
evaluate -> aggregate -> resolve chain and runs the completion side effects
(payout, achievement credit) when an event closes.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.services import achievement_engine, condition_engine
from backend.api.services.ledger import pay_out_event, user_balance
from backend.api.services.repositories import SqlAchievementRepository, SqlEventRepository
from funraise.achievements import count_active_days
from funraise.constants import EventStatus, EventType
from funraise.errors import EntityNotFoundError
from funraise.notifications import (
    DepositRecorded,
    EventCreated,
    Notification,
    ParticipationChanged,
    TimeTick,
    UserStatisticChanged,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """What one notification changed."""

    transitions: dict[int, EventStatus] = field(default_factory=dict)
    unlocked: list[tuple[int, int]] = field(default_factory=list)  # (user_id, achievement_id)

    def add_unlocked(self, user_id: int, achievement_ids: list[int]) -> None:
        self.unlocked.extend((user_id, aid) for aid in achievement_ids)


async def handle(
    db: AsyncSession,
    notification: Notification,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> ReconciliationResult:
    """Apply one notification inside the caller's transaction.

    A ``TimeTick`` carries its own clock reading; ``now`` overrides it.
    """
    if now is None:
        now = notification.now if isinstance(notification, TimeTick) else datetime.now(UTC)
    events = SqlEventRepository(db)
    achievements = SqlAchievementRepository(db)
    result = ReconciliationResult()

    if isinstance(notification, UserStatisticChanged):
        unlocked = await achievement_engine.track_statistic(
            achievements,
            notification.user_id,
            notification.criterion_type,
            notification.value,
            notification.mode,
            now=now,
        )
        result.add_unlocked(notification.user_id, unlocked)
        return result

    if isinstance(notification, TimeTick):
        if notification.event_id is None:
            changed = await condition_engine.sweep_time_conditions(events, now=now)
        else:
            changed = {}
            outcome = await condition_engine.reconcile_event(events, notification.event_id, now=now)
            if not outcome.transitioned:
                outcome = await condition_engine.fail_expired_groups(
                    events, notification.event_id, now=now
                )
            if outcome.transitioned:
                changed[notification.event_id] = outcome.new_status
        for event_id, status in changed.items():
            result.transitions[event_id] = status
            if status is EventStatus.COMPLETED:
                await _on_event_completed(db, event_id, result, now=now, rng=rng)
        return result

    if isinstance(notification, EventCreated):
        unlocked = await achievement_engine.credit_event_created(
            achievements, notification.creator_id, now=now
        )
        result.add_unlocked(notification.creator_id, unlocked)
        await _credit_activity(events, achievements, notification.creator_id, result, now=now)
    elif isinstance(notification, ParticipationChanged):
        unlocked = await achievement_engine.credit_participation(
            achievements, notification.user_id, now=now
        )
        result.add_unlocked(notification.user_id, unlocked)
        await _credit_activity(events, achievements, notification.user_id, result, now=now)
    elif not isinstance(notification, DepositRecorded):
        raise TypeError(f"Unsupported notification: {type(notification).__name__}")

    outcome = await condition_engine.reconcile_event(events, notification.event_id, now=now)
    if outcome.transitioned:
        result.transitions[notification.event_id] = outcome.new_status
        if outcome.new_status is EventStatus.COMPLETED:
            await _on_event_completed(db, notification.event_id, result, now=now, rng=rng)
    return result


async def sweep_once(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> ReconciliationResult:
    """Run one TIME-condition sweep, one transaction per event.

    A failing event is logged and rolled back without stopping the others.
    """
    now = now or datetime.now(UTC)
    async with session_factory() as db:
        event_ids = await SqlEventRepository(db).list_events_with_time_conditions()

    total = ReconciliationResult()
    for event_id in event_ids:
        async with session_factory() as db:
            try:
                result = await handle(db, TimeTick(now=now, event_id=event_id), now=now, rng=rng)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception("Time sweep failed for event %s", event_id)
                continue
        total.transitions.update(result.transitions)
        total.unlocked.extend(result.unlocked)
    return total


async def _credit_activity(
    events: SqlEventRepository,
    achievements: SqlAchievementRepository,
    user_id: int,
    result: ReconciliationResult,
    *,
    now: datetime,
) -> None:
    days = count_active_days(await events.list_user_activity(user_id), now=now)
    result.add_unlocked(
        user_id, await achievement_engine.credit_activity(achievements, user_id, days, now=now)
    )


async def _on_event_completed(
    db: AsyncSession,
    event_id: int,
    result: ReconciliationResult,
    *,
    now: datetime,
    rng: random.Random | None,
) -> None:
    """Pay out a freshly completed event and credit everyone involved."""
    events = SqlEventRepository(db)
    achievements = SqlAchievementRepository(db)

    event = await events.get_event(event_id)
    if event is None:
        raise EntityNotFoundError("Event", event_id)
    participations = await events.list_participations(event_id)
    payout = await pay_out_event(db, event, participations, rng=rng)
    if payout.beneficiary_id is not None:
        balance = await user_balance(db, payout.beneficiary_id)
        unlocked = await achievement_engine.credit_balance(
            achievements, payout.beneficiary_id, balance, now=now
        )
        result.add_unlocked(payout.beneficiary_id, unlocked)

    rows = []
    for group in await events.list_groups(event_id):
        rows += await events.list_conditions(group.id)
    had_time_condition = condition_engine.has_time_condition(rows)

    bank_total = sum(p.deposit or 0 for p in participations)
    participant_ids = list(dict.fromkeys(p.user_id for p in participations))

    async def credit(user_id: int, income: float) -> None:
        unlocked = await achievement_engine.credit_event_completed(
            achievements,
            user_id,
            bank_total=bank_total,
            participants=len(participations),
            income=income,
            had_time_condition=had_time_condition,
            now=now,
        )
        result.add_unlocked(user_id, unlocked)

    for user_id in participant_ids:
        income = 0.0
        if event.type == EventType.JACKPOT and user_id == payout.beneficiary_id:
            income = float(payout.payout)
        await credit(user_id, income)

    if event.creator_id is not None and event.creator_id not in participant_ids:
        await credit(event.creator_id, 0.0)

    recipient = event.recipient_id
    if recipient is not None and recipient != event.creator_id and recipient not in participant_ids:
        income = float(payout.payout) if payout.beneficiary_id == recipient else 0.0
        await credit(recipient, income)

    logger.info(
        "Event %s completion processed for %d participant(s)", event_id, len(participant_ids)
    )
