"""Achievement evaluation engine.

Defines seed achievements, records criterion progress and unlocks badges.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.models import (
    Achievement,
    AchievementCriterion,
    UserAchievement,
    UserCriterionProgress,
)
from backend.api.services.repositories import AchievementRepository, completed_criterion_ids
from funraise.achievements import (
    CriterionProgress,
    ProgressResult,
    all_criteria_completed,
    next_measurement,
    next_progress,
    transition_status,
)
from funraise.constants import AchievementStatus, CriterionType, UpdateMode
from funraise.errors import EntityNotFoundError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

SEED_ACHIEVEMENTS: list[dict[str, object]] = [
    {
        "name": "FIRST_STEPS_1",
        "icon": "rocket",
        "criteria": [
            (CriterionType.EVENT_COUNT_CREATED, 1),
            (CriterionType.USER_BANK, 5),
        ],
    },
    {
        "name": "BANKER_1",
        "icon": "money-bag",
        "criteria": [(CriterionType.USER_BANK, 50)],
    },
    {
        "name": "BANKER_2",
        "icon": "bank",
        "criteria": [(CriterionType.USER_BANK, 100)],
    },
    {
        "name": "BANKER_3",
        "icon": "gem",
        "criteria": [(CriterionType.USER_BANK, 500)],
    },
    {
        "name": "ACTIVE_PARTICIPANT_1",
        "icon": "star",
        "criteria": [
            (CriterionType.EVENT_COUNT_CREATED, 2),
            (CriterionType.EVENT_COUNT_COMPLETED, 5),
        ],
    },
    {
        "name": "ACTIVE_PARTICIPANT_2",
        "icon": "glowing-star",
        "criteria": [
            (CriterionType.EVENT_COUNT_CREATED, 5),
            (CriterionType.EVENT_COUNT_COMPLETED, 10),
        ],
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Insert seed achievements that don't already exist. Returns how many were added."""
    existing = await db.execute(select(Achievement.name))
    existing_names = {row[0] for row in existing.all()}

    added = 0
    for defn in SEED_ACHIEVEMENTS:
        if defn["name"] in existing_names:
            continue
        achievement = Achievement(name=defn["name"], icon=defn["icon"])
        achievement.criteria = [
            AchievementCriterion(type=str(ctype), target=float(target))
            for ctype, target in defn["criteria"]  # type: ignore[attr-defined]
        ]
        db.add(achievement)
        added += 1

    await db.flush()
    if added:
        logger.info("Seeded %d achievement(s)", added)
    return added


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CriterionView:
    criterion_id: int
    type: str
    target: float
    current_value: float
    completed: bool
    completed_at: datetime | None


@dataclass(frozen=True, slots=True)
class UserAchievementView:
    achievement_id: int
    name: str
    icon: str | None
    status: str
    unlocked_at: datetime | None
    criteria: list[CriterionView] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


async def _ensure_user_achievement(
    repo: AchievementRepository, user_id: int, achievement_id: int
) -> UserAchievement:
    row = await repo.get_user_achievement(user_id, achievement_id)
    if row is None:
        row = await repo.create_user_achievement(user_id, achievement_id)
    return row


async def _ensure_progress(
    repo: AchievementRepository, user_achievement_id: int, criterion_id: int
) -> UserCriterionProgress:
    row = await repo.get_progress(user_achievement_id, criterion_id)
    if row is None:
        row = await repo.create_progress(user_achievement_id, criterion_id)
    return row


async def record_progress(
    repo: AchievementRepository,
    user_id: int,
    criterion: AchievementCriterion,
    new_measurement: float,
    *,
    now: datetime | None = None,
) -> ProgressResult:
    """Store the latest absolute measurement for one criterion and unlock if due.

    ``completed`` never goes back to False. The achievement unlocks when every
    one of its criteria is completed and the record was still IN_PROGRESS
    before this call. Missing user-achievement and progress rows are created.
    """
    now = now or datetime.now(UTC)
    user_achievement = await _ensure_user_achievement(repo, user_id, criterion.achievement_id)
    row = await _ensure_progress(repo, user_achievement.id, criterion.id)

    before = CriterionProgress(
        current_value=row.current_value,
        completed=row.completed,
        completed_at=row.completed_at,
    )
    after = next_progress(before, new_measurement, criterion.target, now=now)
    await repo.save_progress(row, after)

    was_in_progress = user_achievement.status == AchievementStatus.IN_PROGRESS
    unlocked = False
    if was_in_progress and after.completed:
        criteria = await repo.list_criteria(criterion.achievement_id)
        progress = await repo.list_progress(user_achievement.id)
        if all_criteria_completed((c.id for c in criteria), completed_criterion_ids(progress)):
            change = transition_status(
                user_achievement.status, AchievementStatus.COMPLETED, now=now
            )
            await repo.save_status(user_achievement, change)
            unlocked = True
            logger.info(
                "User %s unlocked achievement %s", user_id, criterion.achievement_id
            )

    return ProgressResult(criterion_completed=after.completed, achievement_unlocked=unlocked)


async def update_status(
    repo: AchievementRepository,
    user_achievement_id: int,
    status: AchievementStatus | str,
    *,
    now: datetime | None = None,
) -> UserAchievement:
    """Set a user achievement's status. Writing the current status is rejected."""
    row = await repo.get_user_achievement_by_id(user_achievement_id)
    if row is None:
        raise EntityNotFoundError("UserAchievement", user_achievement_id)
    change = transition_status(row.status, status, now=now or datetime.now(UTC))
    await repo.save_status(row, change)
    return row


async def track_statistic(
    repo: AchievementRepository,
    user_id: int,
    criterion_type: CriterionType | str,
    value: float,
    mode: UpdateMode | str = UpdateMode.SET,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Feed a user statistic to every criterion of its type.

    ``mode`` turns ``value`` into the absolute measurement per criterion
    (add to, replace, or keep the maximum of the stored value). Returns the ids
    of achievements unlocked by this call.
    """
    ctype = CriterionType(criterion_type)
    if not await repo.user_exists(user_id):
        raise EntityNotFoundError("User", user_id)

    now = now or datetime.now(UTC)
    unlocked: list[int] = []
    for criterion in await repo.list_criteria_by_type(ctype):
        user_achievement = await _ensure_user_achievement(repo, user_id, criterion.achievement_id)
        row = await _ensure_progress(repo, user_achievement.id, criterion.id)
        measurement = next_measurement(mode, row.current_value, value)
        result = await record_progress(repo, user_id, criterion, measurement, now=now)
        if result.achievement_unlocked:
            unlocked.append(criterion.achievement_id)
    return unlocked


async def credit_event_completed(
    repo: AchievementRepository,
    user_id: int,
    *,
    bank_total: float,
    participants: int,
    income: float = 0.0,
    had_time_condition: bool = False,
    now: datetime | None = None,
) -> list[int]:
    """Apply the statistics a completed event contributes to one user."""
    updates: list[tuple[CriterionType, float, UpdateMode]] = []
    if bank_total:
        updates.append((CriterionType.EVENT_BANK_COMPLETED, bank_total, UpdateMode.MAX))
    if participants:
        updates.append((CriterionType.EVENT_PEOPLE_COMPLETED, participants, UpdateMode.MAX))
    if had_time_condition:
        updates.append((CriterionType.EVENT_TIME_COMPLETED, 1, UpdateMode.INCREMENT))
    if income:
        updates.append((CriterionType.EVENT_INCOME_ONETIME, income, UpdateMode.MAX))
        updates.append((CriterionType.EVENT_INCOME_ALL, income, UpdateMode.INCREMENT))
    updates.append((CriterionType.EVENT_COUNT_COMPLETED, 1, UpdateMode.INCREMENT))
    updates.append((CriterionType.EVENT_COUNT_ALL, 1, UpdateMode.INCREMENT))

    unlocked: list[int] = []
    for ctype, value, mode in updates:
        unlocked += await track_statistic(repo, user_id, ctype, value, mode, now=now)
    return unlocked


async def credit_event_created(
    repo: AchievementRepository, user_id: int, *, now: datetime | None = None
) -> list[int]:
    unlocked = await track_statistic(
        repo, user_id, CriterionType.EVENT_COUNT_CREATED, 1, UpdateMode.INCREMENT, now=now
    )
    unlocked += await track_statistic(
        repo, user_id, CriterionType.EVENT_COUNT_ALL, 1, UpdateMode.INCREMENT, now=now
    )
    return unlocked


async def credit_participation(
    repo: AchievementRepository, user_id: int, *, now: datetime | None = None
) -> list[int]:
    return await track_statistic(
        repo, user_id, CriterionType.EVENT_COUNT_ALL, 1, UpdateMode.INCREMENT, now=now
    )


async def credit_balance(
    repo: AchievementRepository, user_id: int, balance: float, *, now: datetime | None = None
) -> list[int]:
    """Feed the user's current balance to USER_BANK criteria."""
    return await track_statistic(
        repo, user_id, CriterionType.USER_BANK, balance, UpdateMode.SET, now=now
    )


async def credit_activity(
    repo: AchievementRepository, user_id: int, active_days: int, *, now: datetime | None = None
) -> list[int]:
    """Feed the user's active-day count to USER_ACTIVITY criteria; idle users are skipped."""
    if active_days <= 0:
        return []
    return await track_statistic(
        repo, user_id, CriterionType.USER_ACTIVITY, active_days, UpdateMode.SET, now=now
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


async def initialize_user_achievements(repo: AchievementRepository, user_id: int) -> int:
    """Create IN_PROGRESS records and zero progress for every achievement.

    Existing rows are left alone. Returns the number of user achievements created.
    """
    if not await repo.user_exists(user_id):
        raise EntityNotFoundError("User", user_id)

    created = 0
    for achievement in await repo.list_achievements():
        user_achievement = await repo.get_user_achievement(user_id, achievement.id)
        if user_achievement is None:
            user_achievement = await repo.create_user_achievement(user_id, achievement.id)
            created += 1
        for criterion in achievement.criteria:
            await _ensure_progress(repo, user_achievement.id, criterion.id)
    return created


async def get_user_achievements(
    repo: AchievementRepository, user_id: int
) -> list[UserAchievementView]:
    """Every achievement with the user's status and per-criterion progress."""
    if not await repo.user_exists(user_id):
        raise EntityNotFoundError("User", user_id)

    records = {ua.achievement_id: ua for ua in await repo.list_user_achievements(user_id)}
    views: list[UserAchievementView] = []
    for achievement in await repo.list_achievements():
        record = records.get(achievement.id)
        progress: dict[int, UserCriterionProgress] = {}
        if record is not None:
            progress = {p.criterion_id: p for p in await repo.list_progress(record.id)}

        criteria: list[CriterionView] = []
        for criterion in sorted(achievement.criteria, key=lambda c: c.id):
            row = progress.get(criterion.id)
            criteria.append(
                CriterionView(
                    criterion_id=criterion.id,
                    type=criterion.type,
                    target=criterion.target,
                    current_value=row.current_value if row else 0.0,
                    completed=row.completed if row else False,
                    completed_at=row.completed_at if row else None,
                )
            )

        views.append(
            UserAchievementView(
                achievement_id=achievement.id,
                name=achievement.name,
                icon=achievement.icon,
                status=record.status if record else AchievementStatus.IN_PROGRESS.value,
                unlocked_at=record.unlocked_at if record else None,
                criteria=criteria,
            )
        )
    return views
