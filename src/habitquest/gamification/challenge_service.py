"""Challenge participation and progress tracking.

Progress updates fan out to every active participation whose challenge window
covers the completion day. Each participation is updated in its own savepoint
so one bad row cannot block the others.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select, update

from habitquest.db.models import Challenge, ChallengeParticipant, User
from habitquest.db.upsert import insert_for
from habitquest.exceptions import NotFoundError, ValidationError
from habitquest.gamification.challenge_scheduler import ChallengeScheduler
from habitquest.gamification.enums import (
    ChallengeDifficulty,
    ChallengeStatus,
    ChallengeTargetType,
    ChallengeType,
    ParticipantState,
    XpSource,
)
from habitquest.gamification.events import EventType, GamificationEvent
from habitquest.gamification.unit_of_work import UnitOfWork, UnitOfWorkFactory
from habitquest.gamification.xp_service import XpLedger

logger = logging.getLogger(__name__)

TERMINAL_STATES = (
    ParticipantState.COMPLETED.value,
    ParticipantState.WITHDRAWN.value,
    ParticipantState.FAILED.value,
)


def progress_increment(
    target_type: str,
    target_value: int,
    progress: int,
    current_streak: int,
    xp_earned: int,
) -> int:
    """How much one habit completion advances a participation."""
    target = ChallengeTargetType(target_type)
    if target in (ChallengeTargetType.DAILY_COMPLETIONS, ChallengeTargetType.TOTAL_COMPLETIONS):
        return 1
    if target == ChallengeTargetType.STREAK_DAYS:
        return max(0, min(target_value, current_streak) - progress)
    if target == ChallengeTargetType.XP_GAIN:
        return max(xp_earned, 0)
    # TODO: perfect_week challenges need a weekly evaluation job before they can progress.
    return 0


def challenge_timing(end_date: datetime | None, now: datetime) -> tuple[int | None, int | None]:
    """Seconds and whole days (rounded up) until ``end_date``; None for open-ended challenges."""
    if end_date is None:
        return None, None
    seconds = max(int((end_date - now).total_seconds()), 0)
    return seconds, math.ceil(seconds / 86400)


def _progress_percent(progress: int | None, target: int) -> int:
    if not progress or target <= 0:
        return 0
    return min(100, round(progress / target * 100))


@dataclass(frozen=True)
class ChallengeView:
    id: int
    title: str
    description: str | None
    type: str
    target_type: str
    target_value: int
    difficulty: str
    xp_reward: int
    start_date: datetime
    end_date: datetime | None
    status: str
    participant_count: int
    joined: bool
    user_state: str | None
    user_progress: int
    user_completed_at: datetime | None
    progress_percent: int
    time_remaining: int | None
    days_remaining: int | None


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    display_name: str | None
    progress: int
    state: str
    completed_at: datetime | None
    is_tied: bool
    is_current_user: bool


@dataclass(frozen=True)
class ParticipationRecord:
    challenge_id: int
    title: str
    target_type: str
    target_value: int
    xp_reward: int
    state: str
    progress: int
    joined_at: datetime
    completed_at: datetime | None
    updated_at: datetime


class ChallengeTracker:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        ledger: XpLedger,
        scheduler: ChallengeScheduler,
    ) -> None:
        self._uow = uow_factory
        self._ledger = ledger
        self._scheduler = scheduler

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def update_challenge_progress(
        self,
        user_id: int,
        completion_date: date | datetime,
        current_streak: int,
        xp_earned: int,
        uow: UnitOfWork | None = None,
    ) -> list[int]:
        """Advance the user's active participations. Returns ids of challenges just completed."""
        day = completion_date.date() if isinstance(completion_date, datetime) else completion_date
        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)
        completed: list[int] = []

        async with self._uow.scope(uow) as work:
            rows = (
                await work.session.execute(
                    select(
                        ChallengeParticipant.challenge_id,
                        ChallengeParticipant.progress,
                        Challenge.title,
                        Challenge.target_type,
                        Challenge.target_value,
                        Challenge.xp_reward,
                    )
                    .join(Challenge, Challenge.id == ChallengeParticipant.challenge_id)
                    .where(
                        ChallengeParticipant.user_id == user_id,
                        ChallengeParticipant.state == ParticipantState.ACTIVE.value,
                        Challenge.status == ChallengeStatus.ACTIVE.value,
                        Challenge.is_active.is_(True),
                        # Completions are per day, so any start within the day admits it
                        Challenge.start_date < day_end,
                        or_(Challenge.end_date.is_(None), Challenge.end_date >= day_start),
                    )
                )
            ).all()

            for row in rows:
                increment = progress_increment(
                    row.target_type, row.target_value, row.progress, current_streak, xp_earned
                )
                if increment <= 0:
                    continue
                try:
                    async with work.savepoint():
                        done = await self._apply_progress(work, user_id, row, increment)
                except Exception:
                    logger.warning(
                        "Challenge progress update failed for user %s challenge %s",
                        user_id, row.challenge_id, exc_info=True,
                    )
                    continue
                if done:
                    completed.append(row.challenge_id)

        return completed

    async def _apply_progress(self, work: UnitOfWork, user_id: int, row: Any, increment: int) -> bool:
        now = datetime.now(timezone.utc)
        new_progress = min(row.progress + increment, row.target_value)
        reached = new_progress >= row.target_value

        values: dict[str, Any] = {"progress": new_progress, "updated_at": now}
        if reached:
            values.update(state=ParticipantState.COMPLETED.value, completed_at=now)

        written = (
            await work.session.execute(
                update(ChallengeParticipant)
                .where(
                    ChallengeParticipant.challenge_id == row.challenge_id,
                    ChallengeParticipant.user_id == user_id,
                    ChallengeParticipant.state == ParticipantState.ACTIVE.value,
                )
                .values(**values)
                .returning(ChallengeParticipant.challenge_id),
                execution_options={"synchronize_session": False},
            )
        ).scalar_one_or_none()
        if written is None or not reached:
            return False

        await self._ledger.award_xp(
            user_id,
            row.xp_reward,
            XpSource.CHALLENGE_COMPLETE,
            source_id=str(row.challenge_id),
            when=now,
            uow=work,
        )
        work.record(GamificationEvent(
            type=EventType.CHALLENGE_COMPLETED,
            user_id=user_id,
            data={
                "challenge_id": row.challenge_id,
                "title": row.title,
                "xp_reward": row.xp_reward,
            },
        ))
        logger.info("User %s completed challenge %s", user_id, row.challenge_id)
        return True

    # ------------------------------------------------------------------
    # Participation
    # ------------------------------------------------------------------

    async def create_challenge(
        self,
        user_id: int,
        title: str,
        target_type: ChallengeTargetType | str,
        target_value: int,
        start_date: datetime,
        end_date: datetime | None = None,
        description: str | None = None,
        difficulty: ChallengeDifficulty | str = ChallengeDifficulty.MEDIUM,
        xp_reward: int = 50,
        now: datetime | None = None,
        uow: UnitOfWork | None = None,
    ) -> Challenge:
        """Create a group challenge; the creator joins it immediately."""
        now = now or datetime.now(timezone.utc)
        target_type = ChallengeTargetType(target_type)
        difficulty = ChallengeDifficulty(difficulty)
        if target_value < 1:
            raise ValidationError("target_value must be at least 1")
        if xp_reward < 0:
            raise ValidationError("xp_reward must not be negative")
        if start_date.tzinfo is None:
            start_date = start_date.replace(tzinfo=timezone.utc)
        if end_date is not None:
            if end_date.tzinfo is None:
                end_date = end_date.replace(tzinfo=timezone.utc)
            if end_date <= start_date:
                raise ValidationError("end_date must be after start_date")

        async with self._uow.scope(uow) as work:
            db = work.session
            if await db.scalar(select(User.id).where(User.id == user_id)) is None:
                raise NotFoundError(f"User {user_id} not found")

            challenge = Challenge(
                title=title,
                description=description,
                type=ChallengeType.GROUP.value,
                target_type=target_type.value,
                target_value=target_value,
                difficulty=difficulty.value,
                xp_reward=xp_reward,
                start_date=start_date,
                end_date=end_date,
                status=(
                    ChallengeStatus.UPCOMING.value if start_date > now else ChallengeStatus.ACTIVE.value
                ),
                created_by=user_id,
                is_active=True,
                created_at=now,
            )
            db.add(challenge)
            await db.flush()
            await self._add_participant(work, challenge, user_id, now)
            logger.info("User %s created challenge %s (%s)", user_id, challenge.id, title)
            return challenge

    async def join_challenge(
        self,
        user_id: int,
        challenge_id: int,
        uow: UnitOfWork | None = None,
    ) -> bool:
        """Join an active challenge. Returns False if already an active participant."""
        now = datetime.now(timezone.utc)
        async with self._uow.scope(uow) as work:
            db = work.session
            challenge = await db.get(Challenge, challenge_id)
            if challenge is None or not challenge.is_active:
                raise NotFoundError(f"Challenge {challenge_id} not found")
            if challenge.status != ChallengeStatus.ACTIVE:
                raise ValidationError("Challenge is not active")

            state = await db.scalar(
                select(ChallengeParticipant.state).where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.user_id == user_id,
                )
            )
            if state == ParticipantState.ACTIVE:
                return False
            if state is not None:
                raise ValidationError(f"Challenge participation already {state}")

            return await self._add_participant(work, challenge, user_id, now)

    async def _add_participant(
        self,
        work: UnitOfWork,
        challenge: Challenge,
        user_id: int,
        now: datetime,
    ) -> bool:
        db = work.session
        inserted = (
            await db.execute(
                insert_for(db, ChallengeParticipant)
                .values(
                    challenge_id=challenge.id,
                    user_id=user_id,
                    progress=0,
                    state=ParticipantState.ACTIVE.value,
                    joined_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["challenge_id", "user_id"])
                .returning(ChallengeParticipant.user_id)
            )
        ).scalar_one_or_none()
        if inserted is None:
            return False
        work.record(GamificationEvent(
            type=EventType.CHALLENGE_JOINED,
            user_id=user_id,
            data={"challenge_id": challenge.id, "title": challenge.title},
        ))
        return True

    async def leave_challenge(
        self,
        user_id: int,
        challenge_id: int,
        uow: UnitOfWork | None = None,
    ) -> str:
        """Withdraw from a challenge. Returns the participation's resulting state."""
        now = datetime.now(timezone.utc)
        async with self._uow.scope(uow) as work:
            db = work.session
            withdrawn = (
                await db.execute(
                    update(ChallengeParticipant)
                    .where(
                        ChallengeParticipant.challenge_id == challenge_id,
                        ChallengeParticipant.user_id == user_id,
                        ChallengeParticipant.state == ParticipantState.ACTIVE.value,
                    )
                    .values(state=ParticipantState.WITHDRAWN.value, updated_at=now)
                    .returning(ChallengeParticipant.state),
                    execution_options={"synchronize_session": False},
                )
            ).scalar_one_or_none()
            if withdrawn is not None:
                return withdrawn

            state = await db.scalar(
                select(ChallengeParticipant.state).where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.user_id == user_id,
                )
            )
            if state is None:
                raise NotFoundError(f"Not a participant of challenge {challenge_id}")
            return state

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _view_query(self, user_id: int) -> Any:
        counts = (
            select(
                ChallengeParticipant.challenge_id,
                func.count().label("participant_count"),
            )
            .where(ChallengeParticipant.state != ParticipantState.WITHDRAWN.value)
            .group_by(ChallengeParticipant.challenge_id)
            .subquery()
        )
        mine = (
            select(
                ChallengeParticipant.challenge_id,
                ChallengeParticipant.state,
                ChallengeParticipant.progress,
                ChallengeParticipant.completed_at,
            )
            .where(ChallengeParticipant.user_id == user_id)
            .subquery()
        )
        return (
            select(
                Challenge,
                func.coalesce(counts.c.participant_count, 0),
                mine.c.state,
                mine.c.progress,
                mine.c.completed_at,
            )
            .outerjoin(counts, counts.c.challenge_id == Challenge.id)
            .outerjoin(mine, mine.c.challenge_id == Challenge.id)
            .where(Challenge.is_active.is_(True))
        )

    @staticmethod
    def _to_view(row: Any, now: datetime) -> ChallengeView:
        challenge, participant_count, state, progress, completed_at = row
        time_remaining, days_remaining = challenge_timing(challenge.end_date, now)
        return ChallengeView(
            id=challenge.id,
            title=challenge.title,
            description=challenge.description,
            type=challenge.type,
            target_type=challenge.target_type,
            target_value=challenge.target_value,
            difficulty=challenge.difficulty,
            xp_reward=challenge.xp_reward,
            start_date=challenge.start_date,
            end_date=challenge.end_date,
            status=challenge.status,
            participant_count=participant_count,
            joined=state is not None and state != ParticipantState.WITHDRAWN,
            user_state=state,
            user_progress=progress or 0,
            user_completed_at=completed_at,
            progress_percent=_progress_percent(progress, challenge.target_value),
            time_remaining=time_remaining,
            days_remaining=days_remaining,
        )

    async def list_challenges(
        self,
        user_id: int,
        now: datetime | None = None,
    ) -> list[ChallengeView]:
        """Sweep expired challenges, then list upcoming and active ones."""
        now = now or datetime.now(timezone.utc)
        await self._scheduler.process_expired_challenges(now)

        async with self._uow.scope() as work:
            result = await work.session.execute(
                self._view_query(user_id)
                .where(
                    Challenge.status.in_(
                        [ChallengeStatus.ACTIVE.value, ChallengeStatus.UPCOMING.value]
                    )
                )
                .order_by(Challenge.status, Challenge.start_date, Challenge.id)
            )
            return [self._to_view(row, now) for row in result.all()]

    async def get_challenge_detail(
        self,
        user_id: int,
        challenge_id: int,
        now: datetime | None = None,
        uow: UnitOfWork | None = None,
    ) -> ChallengeView:
        now = now or datetime.now(timezone.utc)
        async with self._uow.scope(uow) as work:
            row = (
                await work.session.execute(
                    self._view_query(user_id).where(Challenge.id == challenge_id)
                )
            ).one_or_none()
        if row is None:
            raise NotFoundError(f"Challenge {challenge_id} not found")
        return self._to_view(row, now)

    async def get_challenge_leaderboard(
        self,
        challenge_id: int,
        user_id: int | None = None,
        limit: int = 50,
        uow: UnitOfWork | None = None,
    ) -> list[LeaderboardEntry]:
        """Active and completed participants ranked by progress (1, 1, 3 on ties)."""
        async with self._uow.scope(uow) as work:
            db = work.session
            exists = await db.scalar(select(Challenge.id).where(Challenge.id == challenge_id))
            if exists is None:
                raise NotFoundError(f"Challenge {challenge_id} not found")
            rows = (
                await db.execute(
                    select(
                        ChallengeParticipant.user_id,
                        User.display_name,
                        ChallengeParticipant.progress,
                        ChallengeParticipant.state,
                        ChallengeParticipant.completed_at,
                    )
                    .join(User, User.id == ChallengeParticipant.user_id)
                    .where(
                        ChallengeParticipant.challenge_id == challenge_id,
                        ChallengeParticipant.state.in_(
                            [ParticipantState.ACTIVE.value, ParticipantState.COMPLETED.value]
                        ),
                    )
                    .order_by(
                        ChallengeParticipant.progress.desc(),
                        ChallengeParticipant.joined_at.asc(),
                        ChallengeParticipant.user_id.asc(),
                    )
                    .limit(limit)
                )
            ).all()

        ties = Counter(row.progress for row in rows)
        entries: list[LeaderboardEntry] = []
        rank = 0
        previous: int | None = None
        for position, row in enumerate(rows, start=1):
            if row.progress != previous:
                rank = position
                previous = row.progress
            entries.append(LeaderboardEntry(
                rank=rank,
                user_id=row.user_id,
                display_name=row.display_name,
                progress=row.progress,
                state=row.state,
                completed_at=row.completed_at,
                is_tied=ties[row.progress] > 1,
                is_current_user=row.user_id == user_id,
            ))
        return entries

    async def get_challenge_history(
        self,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
        uow: UnitOfWork | None = None,
    ) -> tuple[list[ParticipationRecord], int]:
        """The user's finished participations, most recently updated first."""
        limit = min(max(limit, 1), 50)
        offset = max(offset, 0)
        finished = and_(
            ChallengeParticipant.user_id == user_id,
            ChallengeParticipant.state.in_(TERMINAL_STATES),
        )
        async with self._uow.scope(uow) as work:
            db = work.session
            total = await db.scalar(
                select(func.count()).select_from(ChallengeParticipant).where(finished)
            )
            rows = (
                await db.execute(
                    select(
                        ChallengeParticipant.challenge_id,
                        Challenge.title,
                        Challenge.target_type,
                        Challenge.target_value,
                        Challenge.xp_reward,
                        ChallengeParticipant.state,
                        ChallengeParticipant.progress,
                        ChallengeParticipant.joined_at,
                        ChallengeParticipant.completed_at,
                        ChallengeParticipant.updated_at,
                    )
                    .join(Challenge, Challenge.id == ChallengeParticipant.challenge_id)
                    .where(finished)
                    .order_by(ChallengeParticipant.updated_at.desc(), ChallengeParticipant.challenge_id.desc())
                    .offset(offset)
                    .limit(limit)
                )
            ).all()
        return [ParticipationRecord(**row._asdict()) for row in rows], total or 0
