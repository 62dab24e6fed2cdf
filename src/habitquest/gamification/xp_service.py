"""XP ledger with idempotent awarding and level-up detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from habitquest.db.models import User, XpTransaction
from habitquest.db.upsert import insert_for
from habitquest.exceptions import NotFoundError, ValidationError
from habitquest.gamification.enums import XpSource
from habitquest.gamification.events import EventType, GamificationEvent
from habitquest.gamification.levels import level_from_xp, level_progress
from habitquest.gamification.unit_of_work import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)

HABIT_BASE_XP = 10
STREAK_BONUS_PER_DAY = 2
STREAK_BONUS_CAP = 40


def completion_xp(current_streak: int) -> int:
    """XP for one habit completion: base plus a capped per-day streak bonus."""
    return HABIT_BASE_XP + min(max(current_streak, 0) * STREAK_BONUS_PER_DAY, STREAK_BONUS_CAP)


def idempotency_key(user_id: int, source: XpSource, source_id: str | None, when: datetime) -> str:
    """Key unique per (user, source, entity, UTC calendar day)."""
    day = when.astimezone(timezone.utc).date() if when.tzinfo else when.date()
    return f"{user_id}:{source.value}:{source_id or 'none'}:{day.isoformat()}"


@dataclass(frozen=True)
class LevelUp:
    old_level: int
    new_level: int


@dataclass(frozen=True)
class AwardResult:
    awarded: bool
    new_total: int
    level_up: LevelUp | None = None


class XpLedger:
    """Append-only XP transactions plus the denormalized total/level on ``users``."""

    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow = uow_factory

    async def award_xp(
        self,
        user_id: int,
        amount: int,
        source: XpSource | str,
        source_id: str | None = None,
        when: datetime | None = None,
        uow: UnitOfWork | None = None,
    ) -> AwardResult:
        """Award XP once per idempotency key.

        Returns ``awarded=False`` with the unchanged total when the key was
        already used, whether found up front or lost in a concurrent insert.
        """
        source = XpSource(source)
        now = datetime.now(timezone.utc)
        key = idempotency_key(user_id, source, source_id, when or now)

        async with self._uow.scope(uow) as work:
            db = work.session
            row = (
                await db.execute(select(User.total_xp, User.level).where(User.id == user_id))
            ).one_or_none()
            if row is None:
                raise NotFoundError(f"User {user_id} not found")

            existing = await db.scalar(
                select(XpTransaction.id).where(XpTransaction.idempotency_key == key)
            )
            if existing is not None:
                logger.debug("Duplicate XP award ignored: %s", key)
                return AwardResult(awarded=False, new_total=row.total_xp)

            if row.total_xp + amount < 0:
                raise ValidationError(
                    f"Award of {amount} XP would make user {user_id}'s total negative"
                )

            stmt = (
                insert_for(db, XpTransaction)
                .values(
                    user_id=user_id,
                    amount=amount,
                    source=source.value,
                    source_id=source_id,
                    idempotency_key=key,
                    created_at=now,
                )
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(XpTransaction.id)
            )
            inserted = (await db.execute(stmt)).scalar_one_or_none()
            if inserted is None:
                # Lost the race to a concurrent writer holding the same key
                total = await db.scalar(select(User.total_xp).where(User.id == user_id))
                return AwardResult(awarded=False, new_total=total or 0)

            new_total = (
                await db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(total_xp=User.total_xp + amount)
                    .returning(User.total_xp),
                    execution_options={"synchronize_session": False},
                )
            ).scalar_one()

            old_level = level_from_xp(new_total - amount)
            new_level = level_from_xp(new_total)
            if new_level != row.level:
                await db.execute(
                    update(User).where(User.id == user_id).values(level=new_level),
                    execution_options={"synchronize_session": False},
                )

            work.record(GamificationEvent(
                type=EventType.XP_GAINED,
                user_id=user_id,
                data={
                    "amount": amount,
                    "source": source.value,
                    "source_id": source_id,
                    "new_total": new_total,
                },
            ))

            level_up = None
            if new_level > old_level:
                level_up = LevelUp(old_level=old_level, new_level=new_level)
                logger.info("User %s levelled up: %s -> %s", user_id, old_level, new_level)
                work.record(GamificationEvent(
                    type=EventType.LEVEL_UP,
                    user_id=user_id,
                    data={"old_level": old_level, "new_level": new_level},
                ))

            return AwardResult(awarded=True, new_total=new_total, level_up=level_up)

    async def get_balance(self, user_id: int, uow: UnitOfWork | None = None) -> tuple[int, int]:
        """Return the cached (total_xp, level) for a user."""
        async with self._uow.scope(uow) as work:
            row = (
                await work.session.execute(
                    select(User.total_xp, User.level).where(User.id == user_id)
                )
            ).one_or_none()
            if row is None:
                raise NotFoundError(f"User {user_id} not found")
            return row.total_xp, row.level

    async def get_xp_summary(self, user_id: int, uow: UnitOfWork | None = None) -> dict:
        total_xp, _ = await self.get_balance(user_id, uow=uow)
        return {"user_id": user_id, "total_xp": total_xp, **level_progress(total_xp)}

    async def get_xp_history(
        self,
        user_id: int,
        page: int = 1,
        per_page: int = 20,
        uow: UnitOfWork | None = None,
    ) -> tuple[list[XpTransaction], int]:
        """Ledger entries for a user, newest first, with the total entry count."""
        page = max(page, 1)
        offset = (page - 1) * per_page
        async with self._uow.scope(uow) as work:
            db = work.session
            total = await db.scalar(
                select(func.count()).select_from(XpTransaction).where(XpTransaction.user_id == user_id)
            )
            result = await db.execute(
                select(XpTransaction)
                .where(XpTransaction.user_id == user_id)
                .order_by(XpTransaction.created_at.desc(), XpTransaction.id.desc())
                .offset(offset)
                .limit(per_page)
            )
            return list(result.scalars().all()), total or 0
