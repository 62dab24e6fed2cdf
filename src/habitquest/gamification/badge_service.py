"""Badge evaluation state machine.

Each evaluation pass recomputes progress for every active, not-yet-earned
badge from a fresh ``EvaluationContext``. Stored progress is only compared
against, never built upon. ``earned`` is terminal: the upsert that writes a
badge row refuses to touch one that is already earned, so concurrent passes
cannot un-earn a badge or pay its reward twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, func, select

from habitquest.db.models import Badge, Habit, HabitLog, User, UserBadge
from habitquest.db.upsert import insert_for
from habitquest.exceptions import NotFoundError, ValidationError
from habitquest.gamification.enums import TIER_ORDER, BadgeMetric, BadgeState, BadgeTier, XpSource
from habitquest.gamification.events import EventType, GamificationEvent
from habitquest.gamification.metrics import EvaluationContext, badge_state_for, metric_value
from habitquest.gamification.streaks import start_of_week
from habitquest.gamification.unit_of_work import UnitOfWork, UnitOfWorkFactory
from habitquest.gamification.xp_service import XpLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeStatus:
    """A catalog badge joined with one user's state for it."""

    id: int
    name: str
    description: str
    category: str
    tier: str
    rarity: str
    threshold: int
    xp_reward: int
    metric: str
    icon: str | None
    color: str | None
    sort_order: int
    state: str
    progress: int
    earned_at: datetime | None
    progress_percent: int
    tier_index: int | None = None


def _progress_percent(progress: int, threshold: int) -> int:
    if threshold <= 0:
        return 100
    return min(100, round(progress / threshold * 100))


def _status(badge: Badge, state: str | None, progress: int | None, earned_at: datetime | None) -> BadgeStatus:
    progress = progress or 0
    return BadgeStatus(
        id=badge.id,
        name=badge.name,
        description=badge.description,
        category=badge.category,
        tier=badge.tier,
        rarity=badge.rarity,
        threshold=badge.threshold,
        xp_reward=badge.xp_reward,
        metric=badge.metric,
        icon=badge.icon,
        color=badge.color,
        sort_order=badge.sort_order,
        state=state or BadgeState.LOCKED.value,
        progress=progress,
        earned_at=earned_at,
        progress_percent=_progress_percent(progress, badge.threshold),
    )


class BadgeEvaluator:
    def __init__(self, uow_factory: UnitOfWorkFactory, ledger: XpLedger) -> None:
        self._uow = uow_factory
        self._ledger = ledger

    async def build_evaluation_context(
        self,
        user_id: int,
        uow: UnitOfWork | None = None,
        now: datetime | None = None,
    ) -> EvaluationContext:
        """Aggregate the user's habits, logs and XP into an evaluation snapshot."""
        now = now or datetime.now(timezone.utc)
        async with self._uow.scope(uow) as work:
            db = work.session
            user = (
                await db.execute(
                    select(User.total_xp, User.week_start, User.created_at).where(User.id == user_id)
                )
            ).one_or_none()
            if user is None:
                raise NotFoundError(f"User {user_id} not found")

            streaks = (
                await db.execute(
                    select(
                        func.coalesce(func.max(Habit.current_streak), 0),
                        func.coalesce(func.max(Habit.longest_streak), 0),
                    ).where(Habit.user_id == user_id)
                )
            ).one()

            completions = (
                select(func.count(HabitLog.id))
                .join(Habit, Habit.id == HabitLog.habit_id)
                .where(Habit.user_id == user_id, HabitLog.completed.is_(True))
            )
            total_completions = await db.scalar(completions)
            week_begins = start_of_week(now.date(), user.week_start)
            weekly_completions = await db.scalar(
                completions.where(HabitLog.log_date >= week_begins, HabitLog.log_date <= now.date())
            )

        return EvaluationContext(
            user_id=user_id,
            current_streak=streaks[0],
            longest_streak=streaks[1],
            total_completions=total_completions or 0,
            weekly_completions=weekly_completions or 0,
            total_xp=user.total_xp,
            perfect_weeks=0,
            days_since_signup=max((now - user.created_at).days, 0),
            week_start=user.week_start,
        )

    async def evaluate_and_award_badges(
        self,
        ctx: EvaluationContext,
        uow: UnitOfWork | None = None,
    ) -> list[Badge]:
        """Recompute every unearned badge for ``ctx.user_id``. Returns badges newly earned."""
        now = datetime.now(timezone.utc)
        earned: list[Badge] = []

        async with self._uow.scope(uow) as work:
            db = work.session
            badges = (
                await db.execute(
                    select(Badge).where(Badge.is_active.is_(True)).order_by(Badge.sort_order)
                )
            ).scalars().all()
            stored = {
                row.badge_id: row
                for row in (
                    await db.execute(
                        select(UserBadge.badge_id, UserBadge.state, UserBadge.progress).where(
                            UserBadge.user_id == ctx.user_id
                        )
                    )
                ).all()
            }

            for badge in badges:
                current = stored.get(badge.id)
                if current is not None and current.state == BadgeState.EARNED:
                    continue

                raw = metric_value(badge.metric, ctx)
                progress = min(raw, badge.threshold)
                state = badge_state_for(raw, badge.threshold)
                previous_state = current.state if current is not None else BadgeState.LOCKED.value
                previous_progress = current.progress if current is not None else 0
                if state == previous_state and progress == previous_progress:
                    continue

                if not await self._write_state(work, ctx.user_id, badge, progress, state, now):
                    continue

                if state == BadgeState.EARNED:
                    await self._pay_reward(work, ctx.user_id, badge)
                    earned.append(badge)
                else:
                    work.record(GamificationEvent(
                        type=EventType.BADGE_PROGRESS,
                        user_id=ctx.user_id,
                        data={
                            "badge_id": badge.id,
                            "badge_name": badge.name,
                            "progress": progress,
                            "threshold": badge.threshold,
                            "state": state.value,
                        },
                    ))

        if earned:
            logger.info(
                "User %s earned %d badge(s): %s",
                ctx.user_id, len(earned), ", ".join(b.name for b in earned),
            )
        return earned

    async def _write_state(
        self,
        work: UnitOfWork,
        user_id: int,
        badge: Badge,
        progress: int,
        state: BadgeState,
        now: datetime,
    ) -> bool:
        """Upsert the user's badge row unless it is already earned. Returns True if written."""
        db = work.session
        stmt = insert_for(db, UserBadge).values(
            user_id=user_id,
            badge_id=badge.id,
            progress=progress,
            state=state.value,
            earned_at=now if state == BadgeState.EARNED else None,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "badge_id"],
            set_={
                "progress": stmt.excluded.progress,
                "state": stmt.excluded.state,
                "earned_at": stmt.excluded.earned_at,
                "updated_at": stmt.excluded.updated_at,
            },
            where=UserBadge.state != BadgeState.EARNED.value,
        ).returning(UserBadge.badge_id)
        return (await db.execute(stmt)).scalar_one_or_none() is not None

    async def _pay_reward(self, work: UnitOfWork, user_id: int, badge: Badge) -> None:
        await self._ledger.award_xp(
            user_id,
            badge.xp_reward,
            XpSource.BADGE_UNLOCK,
            source_id=str(badge.id),
            uow=work,
        )
        work.record(GamificationEvent(
            type=EventType.BADGE_EARNED,
            user_id=user_id,
            data={
                "badge_id": badge.id,
                "badge_name": badge.name,
                "tier": badge.tier,
                "rarity": badge.rarity,
                "xp_reward": badge.xp_reward,
            },
        ))

    async def award_manual_badge(
        self,
        user_id: int,
        badge_id: int,
        uow: UnitOfWork | None = None,
    ) -> bool:
        """Grant a manual-metric badge. Returns False if the user already has it."""
        now = datetime.now(timezone.utc)
        async with self._uow.scope(uow) as work:
            badge = await work.session.get(Badge, badge_id)
            if badge is None or not badge.is_active:
                raise NotFoundError(f"Badge {badge_id} not found")
            if badge.metric != BadgeMetric.MANUAL:
                raise ValidationError(f"Badge {badge.name!r} is earned automatically")

            if not await self._write_state(work, user_id, badge, badge.threshold, BadgeState.EARNED, now):
                return False
            await self._pay_reward(work, user_id, badge)
            return True

    async def get_user_badges(self, user_id: int, uow: UnitOfWork | None = None) -> list[BadgeStatus]:
        """Every active badge with the user's state, ordered by category then sort order."""
        async with self._uow.scope(uow) as work:
            result = await work.session.execute(
                select(Badge, UserBadge.state, UserBadge.progress, UserBadge.earned_at)
                .outerjoin(
                    UserBadge,
                    and_(UserBadge.badge_id == Badge.id, UserBadge.user_id == user_id),
                )
                .where(Badge.is_active.is_(True))
                .order_by(Badge.category, Badge.sort_order)
            )
            return [_status(badge, state, progress, earned_at) for badge, state, progress, earned_at in result.all()]

    async def get_badge_detail(
        self,
        user_id: int,
        badge_id: int,
        uow: UnitOfWork | None = None,
    ) -> BadgeStatus:
        async with self._uow.scope(uow) as work:
            row = (
                await work.session.execute(
                    select(Badge, UserBadge.state, UserBadge.progress, UserBadge.earned_at)
                    .outerjoin(
                        UserBadge,
                        and_(UserBadge.badge_id == Badge.id, UserBadge.user_id == user_id),
                    )
                    .where(Badge.id == badge_id, Badge.is_active.is_(True))
                )
            ).one_or_none()
        if row is None:
            raise NotFoundError(f"Badge {badge_id} not found")
        status = _status(*row)
        return replace(status, tier_index=TIER_ORDER.index(BadgeTier(status.tier)))

    async def get_recent_badges(
        self,
        user_id: int,
        days: int = 7,
        now: datetime | None = None,
        uow: UnitOfWork | None = None,
    ) -> list[BadgeStatus]:
        """Badges the user earned within the last ``days`` days, newest first."""
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        badges = await self.get_user_badges(user_id, uow=uow)
        recent = [
            b for b in badges
            if b.state == BadgeState.EARNED and b.earned_at is not None and b.earned_at >= since
        ]
        return sorted(recent, key=lambda b: b.earned_at, reverse=True)

    async def get_next_goals(
        self,
        user_id: int,
        limit: int = 3,
        uow: UnitOfWork | None = None,
    ) -> list[BadgeStatus]:
        """Unearned, automatically tracked badges closest to completion."""
        badges = await self.get_user_badges(user_id, uow=uow)
        pending = [
            b for b in badges
            if b.state != BadgeState.EARNED and b.metric != BadgeMetric.MANUAL
        ]
        pending.sort(key=lambda b: (-b.progress_percent, b.threshold - b.progress, b.sort_order))
        return pending[:limit]
