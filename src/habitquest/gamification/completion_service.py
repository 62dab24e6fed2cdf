"""Habit completion pipeline.

One completion runs four stages in order:

1. record the log, recompute the habit's streak and award completion XP
   (critical, one transaction; the XP award sits in a savepoint);
2. evaluate badges (own transaction, failures logged);
3. advance challenge progress (own transaction, failures logged);
4. read back the user's final total and level.

A later stage can never roll back an earlier one, so a recorded completion
survives any badge or challenge failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from habitquest.db.models import Badge, Habit, HabitLog
from habitquest.db.upsert import insert_for
from habitquest.exceptions import GamificationError, NotFoundError, PersistenceError, ValidationError
from habitquest.gamification.badge_service import BadgeEvaluator
from habitquest.gamification.challenge_service import ChallengeTracker
from habitquest.gamification.enums import XpSource
from habitquest.gamification.levels import level_from_xp
from habitquest.gamification.streaks import LogEntry, StreakResult, calculate_streak
from habitquest.gamification.unit_of_work import UnitOfWork, UnitOfWorkFactory
from habitquest.gamification.xp_service import XpLedger, completion_xp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    log: HabitLog
    streak: StreakResult
    xp_earned: int
    new_total_xp: int
    new_level: int
    new_badges: list[Badge] = field(default_factory=list)
    already_completed: bool = False


@dataclass(frozen=True)
class _Recorded:
    log: HabitLog
    streak: StreakResult
    xp_earned: int
    total_xp: int | None = None
    already_completed: bool = False


class HabitCompletionService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        ledger: XpLedger,
        badges: BadgeEvaluator,
        challenges: ChallengeTracker,
        history_window: int = 100,
    ) -> None:
        self._uow = uow_factory
        self._ledger = ledger
        self._badges = badges
        self._challenges = challenges
        self._history_window = history_window

    async def complete_habit(
        self,
        user_id: int,
        habit_id: int,
        on_date: date,
        value: int = 1,
        notes: str | None = None,
        today: date | None = None,
    ) -> CompletionResult:
        """Mark a habit done for ``on_date`` and run the gamification stages."""
        now = datetime.now(timezone.utc)
        today = today or now.date()
        # Aggregates are evaluated as of the end of the anchor day.
        as_of = now if today == now.date() else datetime.combine(today, time.max, tzinfo=timezone.utc)
        if on_date > today:
            raise ValidationError(f"Cannot complete a habit for a future date ({on_date.isoformat()})")

        try:
            async with self._uow.scope() as work:
                recorded = await self._record_completion(work, user_id, habit_id, on_date, value, notes, today)
        except GamificationError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Failed to record completion of habit %s for user %s", habit_id, user_id, exc_info=True)
            raise PersistenceError("Failed to record habit completion") from exc

        if recorded.already_completed:
            total_xp, level = await self._ledger.get_balance(user_id)
            return CompletionResult(
                log=recorded.log,
                streak=recorded.streak,
                xp_earned=0,
                new_total_xp=total_xp,
                new_level=level,
                already_completed=True,
            )

        new_badges: list[Badge] = []
        try:
            async with self._uow.scope() as work:
                ctx = await self._badges.build_evaluation_context(user_id, uow=work, now=as_of)
                new_badges = await self._badges.evaluate_and_award_badges(ctx, uow=work)
        except Exception:
            logger.warning("Badge evaluation failed for user %s (non-fatal)", user_id, exc_info=True)
            new_badges = []

        try:
            async with self._uow.scope() as work:
                await self._challenges.update_challenge_progress(
                    user_id, on_date, recorded.streak.current, recorded.xp_earned, uow=work
                )
        except Exception:
            logger.warning("Challenge progress update failed for user %s (non-fatal)", user_id, exc_info=True)

        total_xp = recorded.total_xp or 0
        level = level_from_xp(total_xp)
        try:
            total_xp, level = await self._ledger.get_balance(user_id)
        except Exception:
            logger.warning("Could not read final XP balance for user %s", user_id, exc_info=True)

        return CompletionResult(
            log=recorded.log,
            streak=recorded.streak,
            xp_earned=recorded.xp_earned,
            new_total_xp=total_xp,
            new_level=level,
            new_badges=new_badges,
        )

    async def _record_completion(
        self,
        work: UnitOfWork,
        user_id: int,
        habit_id: int,
        on_date: date,
        value: int,
        notes: str | None,
        today: date,
    ) -> _Recorded:
        db = work.session
        habit = (
            await db.execute(select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id))
        ).scalar_one_or_none()
        if habit is None:
            raise NotFoundError(f"Habit {habit_id} not found")

        existing = await self._find_log(work, habit_id, on_date)
        if existing is not None and existing.completed:
            return self._already_completed(habit, existing)

        recent = (
            await db.execute(
                select(HabitLog.log_date, HabitLog.completed)
                .where(HabitLog.habit_id == habit_id, HabitLog.log_date != on_date)
                .order_by(HabitLog.log_date.desc())
                .limit(self._history_window)
            )
        ).all()
        entries = [LogEntry(day=row.log_date, completed=row.completed) for row in recent]
        entries.append(LogEntry(day=on_date, completed=True))
        streak = calculate_streak(entries, today)
        xp = completion_xp(streak.current)

        stmt = insert_for(db, HabitLog).values(
            habit_id=habit_id,
            log_date=on_date,
            value=value,
            completed=True,
            notes=notes,
            xp_earned=xp,
            created_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["habit_id", "log_date"],
            set_={
                "value": stmt.excluded.value,
                "completed": True,
                "notes": stmt.excluded.notes,
                "xp_earned": stmt.excluded.xp_earned,
            },
            where=HabitLog.completed.is_(False),
        ).returning(HabitLog.id)
        log_id = (await db.execute(stmt)).scalar_one_or_none()
        if log_id is None:
            # A concurrent request completed the same day first
            winner = await self._find_log(work, habit_id, on_date)
            return self._already_completed(habit, winner)

        habit.current_streak = streak.current
        habit.longest_streak = max(habit.longest_streak, streak.longest)
        if habit.last_completed_at is None or on_date > habit.last_completed_at:
            habit.last_completed_at = on_date
        streak = StreakResult(current=habit.current_streak, longest=habit.longest_streak)

        total_xp: int | None = None
        try:
            async with work.savepoint():
                award = await self._ledger.award_xp(
                    user_id, xp, XpSource.HABIT_COMPLETE, source_id=str(log_id), uow=work
                )
            total_xp = award.new_total
            if not award.awarded:
                xp = 0
        except Exception:
            logger.warning(
                "XP award failed for habit log %s (completion kept)", log_id, exc_info=True
            )
            xp = 0

        log = await db.get(HabitLog, log_id, populate_existing=True)
        if log.xp_earned != xp:
            log.xp_earned = xp
        await db.flush()
        return _Recorded(log=log, streak=streak, xp_earned=xp, total_xp=total_xp)

    async def _find_log(self, work: UnitOfWork, habit_id: int, on_date: date) -> HabitLog | None:
        return (
            await work.session.execute(
                select(HabitLog)
                .where(HabitLog.habit_id == habit_id, HabitLog.log_date == on_date)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    @staticmethod
    def _already_completed(habit: Habit, log: HabitLog | None) -> _Recorded:
        return _Recorded(
            log=log,
            streak=StreakResult(current=habit.current_streak, longest=habit.longest_streak),
            xp_earned=0,
            already_completed=True,
        )
