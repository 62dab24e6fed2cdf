"""Time-driven challenge lifecycle: promotion, expiry and winner payout."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update

from habitquest.db.models import Challenge, ChallengeParticipant
from habitquest.gamification.enums import ChallengeStatus, ParticipantState, XpSource
from habitquest.gamification.events import EventType, GamificationEvent
from habitquest.gamification.unit_of_work import UnitOfWorkFactory
from habitquest.gamification.xp_service import XpLedger

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    promoted: list[int] = field(default_factory=list)
    closed: list[int] = field(default_factory=list)
    winners_paid: int = 0


@dataclass(frozen=True)
class _Winner:
    user_id: int
    completed_at: datetime


@dataclass(frozen=True)
class _ClosedChallenge:
    challenge_id: int
    title: str
    xp_reward: int
    winners: list[_Winner]


class ChallengeScheduler:
    def __init__(self, uow_factory: UnitOfWorkFactory, ledger: XpLedger) -> None:
        self._uow = uow_factory
        self._ledger = ledger

    async def process_expired_challenges(self, now: datetime | None = None) -> SweepResult:
        """Promote started challenges and close the ones whose end date has passed.

        Each expiring challenge is closed in its own transaction; winners are
        paid afterwards, one transaction per payout, through the idempotent
        ledger. Safe to run concurrently and repeatedly.
        """
        now = now or datetime.now(timezone.utc)
        result = SweepResult()

        async with self._uow.scope() as work:
            db = work.session
            promoted = await db.execute(
                update(Challenge)
                .where(
                    Challenge.status == ChallengeStatus.UPCOMING.value,
                    Challenge.start_date <= now,
                )
                .values(status=ChallengeStatus.ACTIVE.value)
                .returning(Challenge.id),
                execution_options={"synchronize_session": False},
            )
            result.promoted = list(promoted.scalars().all())
            expired_ids = list((
                await db.execute(
                    select(Challenge.id).where(
                        Challenge.status == ChallengeStatus.ACTIVE.value,
                        Challenge.end_date.is_not(None),
                        Challenge.end_date < now,
                    )
                )
            ).scalars().all())

        for challenge_id in expired_ids:
            try:
                closed = await self._close_challenge(challenge_id, now)
            except Exception:
                logger.warning("Failed to close challenge %s", challenge_id, exc_info=True)
                continue
            if closed is None:
                continue
            result.closed.append(challenge_id)
            for winner in closed.winners:
                try:
                    paid = await self._pay_winner(closed, winner)
                except Exception:
                    logger.warning(
                        "Failed to pay challenge %s reward to user %s",
                        challenge_id, winner.user_id, exc_info=True,
                    )
                    continue
                if paid:
                    result.winners_paid += 1

        if result.promoted or result.closed:
            logger.info(
                "Challenge sweep: promoted=%s closed=%s winners_paid=%d",
                result.promoted, result.closed, result.winners_paid,
            )
        return result

    async def _close_challenge(self, challenge_id: int, now: datetime) -> _ClosedChallenge | None:
        """Mark a challenge completed and settle its active participants.

        Returns None when another sweep closed it first.
        """
        async with self._uow.scope() as work:
            db = work.session
            closed = (
                await db.execute(
                    update(Challenge)
                    .where(
                        Challenge.id == challenge_id,
                        Challenge.status == ChallengeStatus.ACTIVE.value,
                    )
                    .values(status=ChallengeStatus.COMPLETED.value)
                    .returning(Challenge.title, Challenge.target_value, Challenge.xp_reward),
                    execution_options={"synchronize_session": False},
                )
            ).one_or_none()
            if closed is None:
                return None

            participants = (
                await db.execute(
                    select(
                        ChallengeParticipant.user_id,
                        ChallengeParticipant.state,
                        ChallengeParticipant.progress,
                        ChallengeParticipant.completed_at,
                    ).where(ChallengeParticipant.challenge_id == challenge_id)
                )
            ).all()

            winners: list[_Winner] = []
            for p in participants:
                if p.state == ParticipantState.WITHDRAWN:
                    continue
                reached = p.progress >= closed.target_value
                if p.state == ParticipantState.ACTIVE:
                    values: dict = {"updated_at": now}
                    if reached:
                        values.update(state=ParticipantState.COMPLETED.value, completed_at=now)
                    else:
                        values.update(state=ParticipantState.FAILED.value)
                    await db.execute(
                        update(ChallengeParticipant)
                        .where(
                            ChallengeParticipant.challenge_id == challenge_id,
                            ChallengeParticipant.user_id == p.user_id,
                        )
                        .values(**values),
                        execution_options={"synchronize_session": False},
                    )
                    if reached:
                        winners.append(_Winner(p.user_id, now))
                elif reached:
                    # Completed earlier; keying the payout on completed_at reuses
                    # the idempotency key of the reward already paid.
                    winners.append(_Winner(p.user_id, p.completed_at or now))

        return _ClosedChallenge(
            challenge_id=challenge_id,
            title=closed.title,
            xp_reward=closed.xp_reward,
            winners=winners,
        )

    async def _pay_winner(self, closed: _ClosedChallenge, winner: _Winner) -> bool:
        """Pay one winner. Returns False if the reward was already paid."""
        async with self._uow.scope() as work:
            award = await self._ledger.award_xp(
                winner.user_id,
                closed.xp_reward,
                XpSource.CHALLENGE_COMPLETE,
                source_id=str(closed.challenge_id),
                when=winner.completed_at,
                uow=work,
            )
            if not award.awarded:
                return False
            work.record(GamificationEvent(
                type=EventType.CHALLENGE_COMPLETED,
                user_id=winner.user_id,
                data={
                    "challenge_id": closed.challenge_id,
                    "title": closed.title,
                    "xp_reward": closed.xp_reward,
                },
            ))
        return True
