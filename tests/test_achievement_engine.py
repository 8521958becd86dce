"""Tests for achievement engine seed data, progress recording and unlocks."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.models import Achievement, UserCriterionProgress
from backend.api.services.achievement_engine import (
    SEED_ACHIEVEMENTS,
    get_user_achievements,
    initialize_user_achievements,
    record_progress,
    seed_achievements,
    track_statistic,
    update_status,
)
from backend.api.services.repositories import SqlAchievementRepository
from funraise.constants import AchievementStatus, CriterionType, UpdateMode
from funraise.errors import EntityNotFoundError, StatusAlreadySetError

NOW = datetime(2030, 6, 1, tzinfo=UTC)


class TestSeedAchievements:
    """Validate the seed achievement definitions."""

    def test_names_unique(self) -> None:
        names = [a["name"] for a in SEED_ACHIEVEMENTS]
        assert len(names) == len(set(names))

    def test_criterion_types_valid(self) -> None:
        for a in SEED_ACHIEVEMENTS:
            for ctype, target in a["criteria"]:  # type: ignore[attr-defined]
                assert CriterionType(ctype)
                assert target > 0

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db: AsyncSession) -> None:
        assert await seed_achievements(db) == len(SEED_ACHIEVEMENTS)
        assert await seed_achievements(db) == 0

        result = await db.execute(select(Achievement.name))
        assert {row[0] for row in result.all()} == {a["name"] for a in SEED_ACHIEVEMENTS}


class TestRecordProgress:
    @pytest.mark.asyncio
    async def test_timestamps_read_back_in_utc(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement("BANKER_1", [(CriterionType.USER_BANK, 50)])
        (criterion,) = achievement.criteria
        repo = SqlAchievementRepository(db)
        local_now = NOW.astimezone(timezone(timedelta(hours=2)))

        await record_progress(repo, user.id, criterion, 50, now=local_now)
        await db.commit()
        db.expire_all()

        ua = await repo.get_user_achievement(user.id, achievement.id)
        assert ua is not None
        row = await repo.get_progress(ua.id, criterion.id)
        assert row is not None
        assert row.completed_at == NOW
        assert row.completed_at.tzinfo == UTC
        assert ua.unlocked_at == NOW
        assert ua.unlocked_at.tzinfo == UTC

    @pytest.mark.asyncio
    async def test_completes_exactly_at_target_and_never_resets(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement("BANKER_1", [(CriterionType.USER_BANK, 50)])
        (criterion,) = achievement.criteria
        repo = SqlAchievementRepository(db)

        below = await record_progress(repo, user.id, criterion, 49, now=NOW)
        reached = await record_progress(repo, user.id, criterion, 50, now=NOW)
        regressed = await record_progress(
            repo, user.id, criterion, 49, now=NOW + timedelta(days=1)
        )

        assert below.criterion_completed is False
        assert reached.criterion_completed is True
        assert regressed.criterion_completed is True
        ua = await repo.get_user_achievement(user.id, achievement.id)
        assert ua is not None
        row = await repo.get_progress(ua.id, criterion.id)
        assert row is not None
        assert row.current_value == 49
        assert row.completed is True
        assert row.completed_at == NOW

    @pytest.mark.asyncio
    async def test_final_criterion_unlocks(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement(
            "FIRST_STEPS_1",
            [(CriterionType.EVENT_COUNT_CREATED, 1), (CriterionType.USER_BANK, 5)],
        )
        created, bank = achievement.criteria
        repo = SqlAchievementRepository(db)

        first = await record_progress(repo, user.id, created, 1, now=NOW)
        assert first.criterion_completed is True
        assert first.achievement_unlocked is False

        second = await record_progress(repo, user.id, bank, 5, now=NOW)
        assert second.achievement_unlocked is True

        ua = await repo.get_user_achievement(user.id, achievement.id)
        assert ua is not None
        assert ua.status == AchievementStatus.COMPLETED
        assert ua.unlocked_at == NOW

        with pytest.raises(StatusAlreadySetError):
            await update_status(repo, ua.id, AchievementStatus.COMPLETED, now=NOW)

    @pytest.mark.asyncio
    async def test_unlocks_only_once(self, db: AsyncSession, make_user, make_achievement) -> None:
        user = await make_user()
        achievement = await make_achievement("BANKER_2", [(CriterionType.USER_BANK, 100)])
        (criterion,) = achievement.criteria
        repo = SqlAchievementRepository(db)

        assert (await record_progress(repo, user.id, criterion, 100, now=NOW)).achievement_unlocked
        again = await record_progress(repo, user.id, criterion, 150, now=NOW)

        assert again.criterion_completed is True
        assert again.achievement_unlocked is False

    @pytest.mark.asyncio
    async def test_failed_record_does_not_unlock(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement("BANKER_3", [(CriterionType.USER_BANK, 500)])
        (criterion,) = achievement.criteria
        repo = SqlAchievementRepository(db)
        ua = await repo.create_user_achievement(user.id, achievement.id)
        await update_status(repo, ua.id, AchievementStatus.FAILED, now=NOW)

        result = await record_progress(repo, user.id, criterion, 500, now=NOW)

        assert result.criterion_completed is True
        assert result.achievement_unlocked is False
        assert ua.status == AchievementStatus.FAILED
        assert ua.unlocked_at is None

    @pytest.mark.asyncio
    async def test_creates_missing_rows(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement("ACTIVE", [(CriterionType.EVENT_COUNT_ALL, 3)])
        (criterion,) = achievement.criteria
        repo = SqlAchievementRepository(db)

        await record_progress(repo, user.id, criterion, 1, now=NOW)

        result = await db.execute(select(UserCriterionProgress))
        (row,) = result.scalars().all()
        assert row.criterion_id == criterion.id
        assert row.current_value == 1


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_unknown_record(self, db: AsyncSession) -> None:
        with pytest.raises(EntityNotFoundError):
            await update_status(SqlAchievementRepository(db), 77, "COMPLETED", now=NOW)

    @pytest.mark.asyncio
    async def test_manual_completion_sets_unlocked_at(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement("MANUAL", [(CriterionType.USER_ACTIVITY, 30)])
        repo = SqlAchievementRepository(db)
        ua = await repo.create_user_achievement(user.id, achievement.id)

        await update_status(repo, ua.id, AchievementStatus.COMPLETED, now=NOW)

        assert ua.status == AchievementStatus.COMPLETED
        assert ua.unlocked_at == NOW


class TestTrackStatistic:
    @pytest.mark.asyncio
    async def test_increment_accumulates(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        achievement = await make_achievement(
            "ACTIVE_PARTICIPANT", [(CriterionType.EVENT_COUNT_COMPLETED, 3)]
        )
        repo = SqlAchievementRepository(db)

        unlocked: list[int] = []
        for _ in range(3):
            unlocked += await track_statistic(
                repo, user.id, CriterionType.EVENT_COUNT_COMPLETED, 1, UpdateMode.INCREMENT, now=NOW
            )

        assert unlocked == [achievement.id]

    @pytest.mark.asyncio
    async def test_max_keeps_best(self, db: AsyncSession, make_user, make_achievement) -> None:
        user = await make_user()
        achievement = await make_achievement("BIG_EVENT", [(CriterionType.EVENT_BANK_COMPLETED, 1000)])
        (criterion,) = achievement.criteria
        repo = SqlAchievementRepository(db)

        await track_statistic(repo, user.id, "EVENT_BANK_COMPLETED", 800, "max", now=NOW)
        await track_statistic(repo, user.id, "EVENT_BANK_COMPLETED", 300, "max", now=NOW)

        ua = await repo.get_user_achievement(user.id, achievement.id)
        assert ua is not None
        row = await repo.get_progress(ua.id, criterion.id)
        assert row is not None
        assert row.current_value == 800

    @pytest.mark.asyncio
    async def test_feeds_every_criterion_of_type(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        small = await make_achievement("B1", [(CriterionType.USER_BANK, 50)])
        large = await make_achievement("B2", [(CriterionType.USER_BANK, 100)])
        await make_achievement("OTHER", [(CriterionType.USER_ACTIVITY, 1)])
        repo = SqlAchievementRepository(db)

        unlocked = await track_statistic(repo, user.id, CriterionType.USER_BANK, 75, now=NOW)

        assert unlocked == [small.id]
        large_ua = await repo.get_user_achievement(user.id, large.id)
        assert large_ua is not None
        assert large_ua.status == AchievementStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_unknown_user(self, db: AsyncSession) -> None:
        with pytest.raises(EntityNotFoundError):
            await track_statistic(SqlAchievementRepository(db), 5, CriterionType.USER_BANK, 1)

    @pytest.mark.asyncio
    async def test_unknown_criterion_type(self, db: AsyncSession, make_user) -> None:
        user = await make_user()
        with pytest.raises(ValueError):
            await track_statistic(SqlAchievementRepository(db), user.id, "KARMA", 1)


class TestUserAchievements:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, db: AsyncSession, make_user) -> None:
        user = await make_user()
        await seed_achievements(db)
        repo = SqlAchievementRepository(db)

        assert await initialize_user_achievements(repo, user.id) == len(SEED_ACHIEVEMENTS)
        assert await initialize_user_achievements(repo, user.id) == 0

        records = await repo.list_user_achievements(user.id)
        assert {r.status for r in records} == {AchievementStatus.IN_PROGRESS}
        result = await db.execute(select(UserCriterionProgress))
        criteria_count = sum(len(a["criteria"]) for a in SEED_ACHIEVEMENTS)  # type: ignore[arg-type]
        assert len(result.scalars().all()) == criteria_count

    @pytest.mark.asyncio
    async def test_view_without_records(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        await make_achievement("BANKER_1", [(CriterionType.USER_BANK, 50)])

        (view,) = await get_user_achievements(SqlAchievementRepository(db), user.id)

        assert view.name == "BANKER_1"
        assert view.status == AchievementStatus.IN_PROGRESS
        assert view.criteria[0].current_value == 0
        assert view.criteria[0].completed is False

    @pytest.mark.asyncio
    async def test_view_reflects_progress(
        self, db: AsyncSession, make_user, make_achievement
    ) -> None:
        user = await make_user()
        await make_achievement("BANKER_1", [(CriterionType.USER_BANK, 50)])
        repo = SqlAchievementRepository(db)
        await track_statistic(repo, user.id, CriterionType.USER_BANK, 60, now=NOW)

        (view,) = await get_user_achievements(repo, user.id)

        assert view.status == AchievementStatus.COMPLETED
        assert view.unlocked_at == NOW
        assert view.criteria[0].current_value == 60
        assert view.criteria[0].completed_at == NOW
