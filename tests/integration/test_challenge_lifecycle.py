"""Challenge lifecycle: sweep, participation, listings, leaderboard and history."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from habitquest.db.models import Challenge, ChallengeParticipant, User, XpTransaction
from habitquest.exceptions import NotFoundError, ValidationError
from habitquest.gamification.events import EventType


@pytest.fixture
def set_participation(session_factory):
    async def _set(challenge_id: int, user_id: int, **values) -> None:
        async with session_factory() as db:
            await db.execute(
                update(ChallengeParticipant)
                .where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.user_id == user_id,
                )
                .values(**values)
            )
            await db.commit()

    return _set


@pytest.fixture
def end_challenge(session_factory):
    async def _end(challenge_id: int) -> None:
        async with session_factory() as db:
            await db.execute(
                update(Challenge)
                .where(Challenge.id == challenge_id)
                .values(end_date=datetime.now(timezone.utc) - timedelta(minutes=5))
            )
            await db.commit()

    return _end


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TestSweep:
    @pytest.mark.asyncio
    async def test_promotes_started_upcoming_challenges(self, engine, make_challenge, fetch):
        started = await make_challenge(status="upcoming", start_date=_now() - timedelta(hours=1))
        later = await make_challenge(status="upcoming", start_date=_now() + timedelta(days=2))

        result = await engine.scheduler.process_expired_challenges()

        assert result.promoted == [started]
        statuses = dict(
            zip(
                await fetch(select(Challenge.id).order_by(Challenge.id)),
                await fetch(select(Challenge.status).order_by(Challenge.id)),
            )
        )
        assert statuses == {started: "active", later: "upcoming"}

    @pytest.mark.asyncio
    async def test_closes_expired_and_settles_participants(
        self, engine, make_user, make_challenge, set_participation, end_challenge, fetch, recorded_events
    ):
        winner = await make_user("winner")
        loser = await make_user("loser")
        quitter = await make_user("quitter")
        challenge_id = await make_challenge(target_value=7, xp_reward=100)
        for user_id in (winner, loser, quitter):
            await engine.challenges.join_challenge(user_id, challenge_id)
        await set_participation(challenge_id, winner, progress=7)
        await set_participation(challenge_id, loser, progress=3)
        await engine.challenges.leave_challenge(quitter, challenge_id)
        await end_challenge(challenge_id)
        recorded_events.clear()

        result = await engine.scheduler.process_expired_challenges()

        assert result.closed == [challenge_id]
        assert result.winners_paid == 1
        assert await fetch(select(Challenge.status).where(Challenge.id == challenge_id)) == ["completed"]
        states = {
            p.user_id: p.state
            for p in await fetch(
                select(ChallengeParticipant).where(ChallengeParticipant.challenge_id == challenge_id)
            )
        }
        assert states == {winner: "completed", loser: "failed", quitter: "withdrawn"}
        assert await fetch(select(User.total_xp).where(User.id == winner)) == [100]
        assert await fetch(select(User.total_xp).where(User.id == loser)) == [0]
        assert [e.user_id for e in recorded_events if e.type == EventType.CHALLENGE_COMPLETED] == [winner]

    @pytest.mark.asyncio
    async def test_resweep_is_a_no_op(self, engine, make_user, make_challenge, set_participation, end_challenge, fetch):
        user_id = await make_user()
        challenge_id = await make_challenge(target_value=7, xp_reward=100)
        await engine.challenges.join_challenge(user_id, challenge_id)
        await set_participation(challenge_id, user_id, progress=7)
        await end_challenge(challenge_id)

        first = await engine.scheduler.process_expired_challenges()
        second = await engine.scheduler.process_expired_challenges()

        assert first.closed == [challenge_id]
        assert second.closed == []
        assert second.winners_paid == 0
        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [100]

    @pytest.mark.asyncio
    async def test_early_finisher_not_paid_twice(
        self, engine, make_user, make_challenge, set_participation, end_challenge, fetch
    ):
        user_id = await make_user()
        challenge_id = await make_challenge(target_value=7, xp_reward=100)
        await engine.challenges.join_challenge(user_id, challenge_id)
        await set_participation(challenge_id, user_id, progress=6)
        await engine.challenges.update_challenge_progress(user_id, _now().date(), 1, 10)
        await end_challenge(challenge_id)

        result = await engine.scheduler.process_expired_challenges()

        assert result.closed == [challenge_id]
        assert result.winners_paid == 0
        rewards = await fetch(select(XpTransaction.id).where(XpTransaction.source == "challenge_complete"))
        assert len(rewards) == 1
        assert await fetch(select(User.total_xp).where(User.id == user_id)) == [100]

    @pytest.mark.asyncio
    async def test_open_ended_challenges_never_expire(self, engine, session_factory, make_challenge, fetch):
        challenge_id = await make_challenge()
        async with session_factory() as db:
            await db.execute(update(Challenge).where(Challenge.id == challenge_id).values(end_date=None))
            await db.commit()

        result = await engine.scheduler.process_expired_challenges(now=_now() + timedelta(days=365))

        assert result.closed == []
        assert await fetch(select(Challenge.status).where(Challenge.id == challenge_id)) == ["active"]


class TestParticipation:
    @pytest.mark.asyncio
    async def test_create_upcoming_challenge_auto_joins_creator(self, engine, make_user, fetch, recorded_events):
        user_id = await make_user()

        challenge = await engine.challenges.create_challenge(
            user_id,
            "Morning pages",
            "daily_completions",
            5,
            _now() + timedelta(days=1),
            end_date=_now() + timedelta(days=8),
        )

        assert challenge.type == "group"
        assert challenge.status == "upcoming"
        assert challenge.created_by == user_id
        assert await fetch(
            select(ChallengeParticipant.state).where(ChallengeParticipant.challenge_id == challenge.id)
        ) == ["active"]
        assert [e.type for e in recorded_events] == [EventType.CHALLENGE_JOINED]

    @pytest.mark.asyncio
    async def test_create_started_challenge_is_active(self, engine, make_user):
        user_id = await make_user()

        challenge = await engine.challenges.create_challenge(
            user_id, "Stretch daily", "streak_days", 5, _now() - timedelta(minutes=1)
        )

        assert challenge.status == "active"
        assert challenge.end_date is None

    @pytest.mark.asyncio
    async def test_create_rejects_end_before_start(self, engine, make_user):
        user_id = await make_user()
        with pytest.raises(ValidationError):
            await engine.challenges.create_challenge(
                user_id, "Backwards", "daily_completions", 5, _now(), end_date=_now() - timedelta(days=1)
            )

    @pytest.mark.asyncio
    async def test_create_for_missing_user(self, engine):
        with pytest.raises(NotFoundError):
            await engine.challenges.create_challenge(77, "Ghost", "daily_completions", 5, _now())

    @pytest.mark.asyncio
    async def test_join_twice_is_idempotent(self, engine, make_user, make_challenge, recorded_events):
        user_id = await make_user()
        challenge_id = await make_challenge()

        assert await engine.challenges.join_challenge(user_id, challenge_id) is True
        assert await engine.challenges.join_challenge(user_id, challenge_id) is False
        assert [e.type for e in recorded_events] == [EventType.CHALLENGE_JOINED]

    @pytest.mark.asyncio
    async def test_join_requires_active_challenge(self, engine, make_user, make_challenge):
        user_id = await make_user()
        upcoming = await make_challenge(status="upcoming", start_date=_now() + timedelta(days=1))

        with pytest.raises(ValidationError):
            await engine.challenges.join_challenge(user_id, upcoming)
        with pytest.raises(NotFoundError):
            await engine.challenges.join_challenge(user_id, 9999)

    @pytest.mark.asyncio
    async def test_cannot_rejoin_after_leaving(self, engine, make_user, make_challenge):
        user_id = await make_user()
        challenge_id = await make_challenge()
        await engine.challenges.join_challenge(user_id, challenge_id)

        assert await engine.challenges.leave_challenge(user_id, challenge_id) == "withdrawn"
        assert await engine.challenges.leave_challenge(user_id, challenge_id) == "withdrawn"
        with pytest.raises(ValidationError):
            await engine.challenges.join_challenge(user_id, challenge_id)

    @pytest.mark.asyncio
    async def test_leave_completed_keeps_state(self, engine, make_user, make_challenge, set_participation):
        user_id = await make_user()
        challenge_id = await make_challenge()
        await engine.challenges.join_challenge(user_id, challenge_id)
        await set_participation(challenge_id, user_id, state="completed", progress=7)

        assert await engine.challenges.leave_challenge(user_id, challenge_id) == "completed"

    @pytest.mark.asyncio
    async def test_leave_without_joining(self, engine, make_user, make_challenge):
        user_id = await make_user()
        challenge_id = await make_challenge()
        with pytest.raises(NotFoundError):
            await engine.challenges.leave_challenge(user_id, challenge_id)


class TestChallengeReads:
    @pytest.mark.asyncio
    async def test_list_shows_open_challenges_with_user_state(
        self, engine, make_user, make_challenge, end_challenge
    ):
        user_id = await make_user()
        other = await make_user("other")
        joined = await make_challenge(title="Joined")
        open_one = await make_challenge(title="Open")
        upcoming = await make_challenge(
            title="Soon", status="upcoming", start_date=_now() + timedelta(days=3), end_date=_now() + timedelta(days=10)
        )
        finished = await make_challenge(title="Finished")
        await engine.challenges.join_challenge(user_id, joined)
        await engine.challenges.join_challenge(other, joined)
        await end_challenge(finished)

        views = {v.id: v for v in await engine.challenges.list_challenges(user_id)}

        assert set(views) == {joined, open_one, upcoming}
        assert views[joined].joined is True
        assert views[joined].user_state == "active"
        assert views[joined].participant_count == 2
        assert views[open_one].joined is False
        assert views[open_one].user_progress == 0
        assert views[upcoming].status == "upcoming"

    @pytest.mark.asyncio
    async def test_detail_reports_time_remaining(self, engine, make_user, make_challenge):
        user_id = await make_user()
        challenge_id = await make_challenge(end_date=_now() + timedelta(days=2, hours=1))

        view = await engine.challenges.get_challenge_detail(user_id, challenge_id)

        assert view.days_remaining == 3
        assert 2 * 86400 < view.time_remaining <= 2 * 86400 + 3600

    @pytest.mark.asyncio
    async def test_detail_missing(self, engine, make_user):
        user_id = await make_user()
        with pytest.raises(NotFoundError):
            await engine.challenges.get_challenge_detail(user_id, 9999)

    @pytest.mark.asyncio
    async def test_leaderboard_competition_ranking(self, engine, make_user, make_challenge, set_participation):
        challenge_id = await make_challenge(target_value=10)
        ada = await make_user("ada")
        bob = await make_user("bob")
        cy = await make_user("cy")
        dee = await make_user("dee")
        for user_id, progress in ((ada, 5), (bob, 5), (cy, 2), (dee, 9)):
            await engine.challenges.join_challenge(user_id, challenge_id)
            await set_participation(challenge_id, user_id, progress=progress)
        await engine.challenges.leave_challenge(dee, challenge_id)

        board = await engine.challenges.get_challenge_leaderboard(challenge_id, user_id=bob)

        assert [(e.display_name, e.rank, e.is_tied) for e in board] == [
            ("ada", 1, True),
            ("bob", 1, True),
            ("cy", 3, False),
        ]
        assert [e.is_current_user for e in board] == [False, True, False]

    @pytest.mark.asyncio
    async def test_leaderboard_missing_challenge(self, engine):
        with pytest.raises(NotFoundError):
            await engine.challenges.get_challenge_leaderboard(9999)

    @pytest.mark.asyncio
    async def test_history_lists_finished_participations(
        self, engine, make_user, make_challenge, set_participation, end_challenge
    ):
        user_id = await make_user()
        won = await make_challenge(title="Won", target_value=3)
        lost = await make_challenge(title="Lost", target_value=3)
        left = await make_challenge(title="Left")
        ongoing = await make_challenge(title="Ongoing")
        for challenge_id in (won, lost, left, ongoing):
            await engine.challenges.join_challenge(user_id, challenge_id)
        await set_participation(won, user_id, progress=3)
        await engine.challenges.leave_challenge(user_id, left)
        await end_challenge(won)
        await end_challenge(lost)
        await engine.scheduler.process_expired_challenges()

        records, total = await engine.challenges.get_challenge_history(user_id)
        first_page, _ = await engine.challenges.get_challenge_history(user_id, limit=2)

        assert total == 3
        assert {r.title: r.state for r in records} == {"Won": "completed", "Lost": "failed", "Left": "withdrawn"}
        assert len(first_page) == 2
