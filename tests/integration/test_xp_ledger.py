"""XP ledger: idempotent awards, level-ups and transaction boundaries."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from habitquest.db.models import User, XpTransaction
from habitquest.exceptions import NotFoundError, ValidationError
from habitquest.gamification.enums import XpSource
from habitquest.gamification.events import EventType


class TestAwardXp:
    @pytest.mark.asyncio
    async def test_award_updates_total_and_ledger(self, engine, make_user, fetch):
        user_id = await make_user()

        result = await engine.ledger.award_xp(user_id, 24, XpSource.HABIT_COMPLETE, source_id="1")

        assert result.awarded is True
        assert result.new_total == 24
        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [24]
        assert await fetch(select(XpTransaction.amount).where(XpTransaction.user_id == user_id)) == [24]

    @pytest.mark.asyncio
    async def test_duplicate_same_day_is_ignored(self, engine, make_user, fetch):
        user_id = await make_user()
        morning = datetime.now(timezone.utc).replace(hour=1)

        first = await engine.ledger.award_xp(user_id, 10, "habit_complete", source_id="5", when=morning)
        second = await engine.ledger.award_xp(
            user_id, 10, "habit_complete", source_id="5", when=morning + timedelta(hours=20)
        )

        assert first.awarded is True
        assert second.awarded is False
        assert second.new_total == 10
        count = await fetch(select(func.count()).select_from(XpTransaction))
        assert count == [1]

    @pytest.mark.asyncio
    async def test_same_entity_next_day_awards_again(self, engine, make_user):
        user_id = await make_user()
        day = datetime.now(timezone.utc)

        await engine.ledger.award_xp(user_id, 10, XpSource.HABIT_COMPLETE, source_id="5", when=day)
        again = await engine.ledger.award_xp(
            user_id, 10, XpSource.HABIT_COMPLETE, source_id="5", when=day + timedelta(days=1)
        )

        assert again.awarded is True
        assert again.new_total == 20

    @pytest.mark.asyncio
    async def test_concurrent_awards_with_same_key_pay_once(self, engine, make_user, fetch):
        user_id = await make_user()

        results = await asyncio.gather(*[
            engine.ledger.award_xp(user_id, 50, XpSource.BADGE_UNLOCK, source_id="2")
            for _ in range(4)
        ])

        assert sum(1 for r in results if r.awarded) == 1
        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [50]

    @pytest.mark.asyncio
    async def test_level_up_is_reported_and_published(self, engine, make_user, fetch, recorded_events):
        user_id = await make_user(total_xp=130)

        result = await engine.ledger.award_xp(user_id, 20, XpSource.CHALLENGE_COMPLETE, source_id="9")

        assert result.level_up is not None
        assert (result.level_up.old_level, result.level_up.new_level) == (1, 2)
        assert await fetch(select(User.level).where(User.id == user_id)) == [2]
        assert [e.type for e in recorded_events] == [EventType.XP_GAINED, EventType.LEVEL_UP]
        assert recorded_events[1].data == {"old_level": 1, "new_level": 2}

    @pytest.mark.asyncio
    async def test_no_level_up_within_level(self, engine, make_user, recorded_events):
        user_id = await make_user()

        result = await engine.ledger.award_xp(user_id, 10, XpSource.HABIT_COMPLETE, source_id="1")

        assert result.level_up is None
        assert [e.type for e in recorded_events] == [EventType.XP_GAINED]

    @pytest.mark.asyncio
    async def test_negative_total_rejected(self, engine, make_user, fetch):
        user_id = await make_user(total_xp=10)

        with pytest.raises(ValidationError):
            await engine.ledger.award_xp(user_id, -20, XpSource.HABIT_COMPLETE, source_id="1")

        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [10]
        assert await fetch(select(XpTransaction.id)) == []

    @pytest.mark.asyncio
    async def test_missing_user(self, engine):
        with pytest.raises(NotFoundError):
            await engine.ledger.award_xp(999, 10, XpSource.HABIT_COMPLETE)

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self, engine, make_user):
        user_id = await make_user()
        with pytest.raises(ValueError):
            await engine.ledger.award_xp(user_id, 10, "gift")


class TestTransactionBoundaries:
    @pytest.mark.asyncio
    async def test_joined_unit_of_work_rolls_back_with_owner(self, engine, make_user, fetch, recorded_events):
        user_id = await make_user()

        with pytest.raises(RuntimeError):
            async with engine.uow.scope() as work:
                await engine.ledger.award_xp(user_id, 10, XpSource.HABIT_COMPLETE, source_id="1", uow=work)
                assert len(work.pending_events) == 1
                raise RuntimeError("owner failed")

        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [0]
        assert await fetch(select(XpTransaction.id)) == []
        assert recorded_events == []

    @pytest.mark.asyncio
    async def test_failed_savepoint_keeps_outer_work(self, engine, make_user, fetch, recorded_events):
        user_id = await make_user()

        async with engine.uow.scope() as work:
            await engine.ledger.award_xp(user_id, 10, XpSource.HABIT_COMPLETE, source_id="1", uow=work)
            with pytest.raises(RuntimeError):
                async with work.savepoint():
                    await engine.ledger.award_xp(user_id, 25, XpSource.BADGE_UNLOCK, source_id="3", uow=work)
                    raise RuntimeError("badge write failed")

        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [10]
        assert await fetch(select(XpTransaction.source)) == ["habit_complete"]
        assert [e.data["source"] for e in recorded_events] == ["habit_complete"]


class TestXpReads:
    @pytest.mark.asyncio
    async def test_summary(self, engine, make_user):
        user_id = await make_user(total_xp=200)

        summary = await engine.ledger.get_xp_summary(user_id)

        assert summary["user_id"] == user_id
        assert summary["total_xp"] == 200
        assert summary["level"] == 2
        assert summary["xp_to_next_level"] == 59

    @pytest.mark.asyncio
    async def test_history_paginates_newest_first(self, engine, make_user):
        user_id = await make_user()
        for i in range(5):
            await engine.ledger.award_xp(user_id, 10 + i, XpSource.HABIT_COMPLETE, source_id=str(i))

        first_page, total = await engine.ledger.get_xp_history(user_id, page=1, per_page=2)
        third_page, _ = await engine.ledger.get_xp_history(user_id, page=3, per_page=2)

        assert total == 5
        assert [e.amount for e in first_page] == [14, 13]
        assert [e.amount for e in third_page] == [10]

    @pytest.mark.asyncio
    async def test_balance_for_missing_user(self, engine):
        with pytest.raises(NotFoundError):
            await engine.ledger.get_balance(12345)
