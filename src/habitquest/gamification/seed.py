"""Badge catalog and default global challenges, seeded on startup."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from habitquest.db.models import Badge, Challenge
from habitquest.db.upsert import insert_for
from habitquest.exceptions import ConsistencyError

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Streak
    {
        "name": "Spark",
        "description": "Complete a habit 3 days in a row",
        "category": "streak",
        "tier": "bronze",
        "rarity": "common",
        "threshold": 3,
        "xp_reward": 25,
        "metric": "current_streak",
        "icon": "✨",
        "color": "#F59E0B",
    },
    {
        "name": "Flame",
        "description": "Keep a 7-day streak alive",
        "category": "streak",
        "tier": "silver",
        "rarity": "common",
        "threshold": 7,
        "xp_reward": 50,
        "metric": "current_streak",
        "icon": "🔥",
        "color": "#F97316",
    },
    {
        "name": "Inferno",
        "description": "Keep a 14-day streak alive",
        "category": "streak",
        "tier": "gold",
        "rarity": "rare",
        "threshold": 14,
        "xp_reward": 100,
        "metric": "current_streak",
        "icon": "🌋",
        "color": "#EF4444",
    },
    {
        "name": "Blaze Master",
        "description": "Keep a 30-day streak alive",
        "category": "streak",
        "tier": "platinum",
        "rarity": "epic",
        "threshold": 30,
        "xp_reward": 200,
        "metric": "current_streak",
        "icon": "☄️",
        "color": "#DC2626",
    },
    {
        "name": "Eternal Flame",
        "description": "Keep a 60-day streak alive",
        "category": "streak",
        "tier": "platinum",
        "rarity": "legendary",
        "threshold": 60,
        "xp_reward": 500,
        "metric": "current_streak",
        "icon": "🕯️",
        "color": "#B91C1C",
    },
    # Volume
    {
        "name": "First Steps",
        "description": "Complete your first habit",
        "category": "volume",
        "tier": "bronze",
        "rarity": "common",
        "threshold": 1,
        "xp_reward": 10,
        "metric": "total_completions",
        "icon": "👣",
        "color": "#10B981",
    },
    {
        "name": "Getting Started",
        "description": "Complete 10 habits",
        "category": "volume",
        "tier": "bronze",
        "rarity": "common",
        "threshold": 10,
        "xp_reward": 25,
        "metric": "total_completions",
        "icon": "🌱",
        "color": "#22C55E",
    },
    {
        "name": "Building Momentum",
        "description": "Complete 25 habits",
        "category": "volume",
        "tier": "silver",
        "rarity": "common",
        "threshold": 25,
        "xp_reward": 50,
        "metric": "total_completions",
        "icon": "🚀",
        "color": "#16A34A",
    },
    {
        "name": "Habit Hero",
        "description": "Complete 100 habits",
        "category": "volume",
        "tier": "gold",
        "rarity": "rare",
        "threshold": 100,
        "xp_reward": 150,
        "metric": "total_completions",
        "icon": "🦸",
        "color": "#15803D",
    },
    {
        "name": "Habit Legend",
        "description": "Complete 500 habits",
        "category": "volume",
        "tier": "platinum",
        "rarity": "epic",
        "threshold": 500,
        "xp_reward": 300,
        "metric": "total_completions",
        "icon": "🏛️",
        "color": "#166534",
    },
    {
        "name": "Habit Deity",
        "description": "Complete 1000 habits",
        "category": "volume",
        "tier": "platinum",
        "rarity": "legendary",
        "threshold": 1000,
        "xp_reward": 500,
        "metric": "total_completions",
        "icon": "👑",
        "color": "#14532D",
    },
    # Consistency
    {
        "name": "Weekly Warrior",
        "description": "Complete 7 habits in a single week",
        "category": "consistency",
        "tier": "bronze",
        "rarity": "common",
        "threshold": 7,
        "xp_reward": 50,
        "metric": "weekly_completions",
        "icon": "🗓️",
        "color": "#3B82F6",
    },
    {
        "name": "Perfect Week",
        "description": "Complete every habit every day for a whole week",
        "category": "consistency",
        "tier": "silver",
        "rarity": "rare",
        "threshold": 1,
        "xp_reward": 100,
        "metric": "perfect_weeks",
        "icon": "💯",
        "color": "#2563EB",
    },
    {
        "name": "Month Master",
        "description": "Keep a habit going for 30 days straight",
        "category": "consistency",
        "tier": "gold",
        "rarity": "epic",
        "threshold": 30,
        "xp_reward": 250,
        "metric": "current_streak",
        "icon": "📅",
        "color": "#1D4ED8",
    },
    # Discipline (lifetime XP)
    {
        "name": "XP Collector",
        "description": "Earn 500 XP",
        "category": "discipline",
        "tier": "bronze",
        "rarity": "common",
        "threshold": 500,
        "xp_reward": 25,
        "metric": "total_xp",
        "icon": "⭐",
        "color": "#8B5CF6",
    },
    {
        "name": "XP Hunter",
        "description": "Earn 2,000 XP",
        "category": "discipline",
        "tier": "silver",
        "rarity": "common",
        "threshold": 2000,
        "xp_reward": 50,
        "metric": "total_xp",
        "icon": "🌟",
        "color": "#7C3AED",
    },
    {
        "name": "XP Master",
        "description": "Earn 5,000 XP",
        "category": "discipline",
        "tier": "gold",
        "rarity": "rare",
        "threshold": 5000,
        "xp_reward": 100,
        "metric": "total_xp",
        "icon": "💫",
        "color": "#6D28D9",
    },
    {
        "name": "XP Legend",
        "description": "Earn 10,000 XP",
        "category": "discipline",
        "tier": "platinum",
        "rarity": "epic",
        "threshold": 10000,
        "xp_reward": 200,
        "metric": "total_xp",
        "icon": "🌠",
        "color": "#5B21B6",
    },
    # Special (granted explicitly)
    {
        "name": "Early Bird",
        "description": "Complete a habit before 7 AM",
        "category": "special",
        "tier": "bronze",
        "rarity": "rare",
        "threshold": 1,
        "xp_reward": 50,
        "metric": "manual",
        "icon": "🐦",
        "color": "#FBBF24",
    },
    {
        "name": "Night Owl",
        "description": "Complete a habit after 10 PM",
        "category": "special",
        "tier": "bronze",
        "rarity": "rare",
        "threshold": 1,
        "xp_reward": 50,
        "metric": "manual",
        "icon": "🦉",
        "color": "#6366F1",
    },
    {
        "name": "Comeback Kid",
        "description": "Restart a habit after breaking a streak",
        "category": "special",
        "tier": "silver",
        "rarity": "rare",
        "threshold": 1,
        "xp_reward": 75,
        "metric": "manual",
        "icon": "🔄",
        "color": "#EC4899",
    },
]

DEFAULT_CHALLENGES: list[dict] = [
    {
        "title": "7-Day Habit Sprint",
        "description": "Complete at least one habit every day for 7 days",
        "target_type": "daily_completions",
        "target_value": 7,
        "difficulty": "easy",
        "xp_reward": 100,
        "duration_days": 7,
    },
    {
        "title": "Consistency Champion",
        "description": "Build a 7-day streak within two weeks",
        "target_type": "streak_days",
        "target_value": 7,
        "difficulty": "medium",
        "xp_reward": 150,
        "duration_days": 14,
    },
    {
        "title": "Habit Marathon",
        "description": "Log 50 habit completions in two weeks",
        "target_type": "total_completions",
        "target_value": 50,
        "difficulty": "hard",
        "xp_reward": 250,
        "duration_days": 14,
    },
    {
        "title": "Perfect Week Challenge",
        "description": "Complete every habit every day for a full week",
        "target_type": "perfect_week",
        "target_value": 1,
        "difficulty": "medium",
        "xp_reward": 200,
        "duration_days": 7,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the badge catalog by name. Returns number of badges seeded.

    Must run on a session with no open transaction: the catalog is committed
    on its own, never as part of a caller's unit of work.
    """
    if db.in_transaction():
        raise ConsistencyError("Badge seeding must not run inside an open transaction")

    for sort_order, badge_data in enumerate(BADGE_SEED_DATA):
        stmt = insert_for(db, Badge).values(
            **badge_data,
            sort_order=sort_order,
            is_active=True,
            created_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "tier": stmt.excluded.tier,
                "rarity": stmt.excluded.rarity,
                "threshold": stmt.excluded.threshold,
                "xp_reward": stmt.excluded.xp_reward,
                "metric": stmt.excluded.metric,
                "icon": stmt.excluded.icon,
                "color": stmt.excluded.color,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)

    names = [b["name"] for b in BADGE_SEED_DATA]
    present = await db.scalar(select(func.count()).select_from(Badge).where(Badge.name.in_(names)))
    if present != len(names):
        await db.rollback()
        raise ConsistencyError(f"Badge catalog mismatch: expected {len(names)}, found {present}")

    await db.commit()
    logger.info("Seeded %d badge definitions", len(names))
    return len(names)


async def seed_default_challenges(db: AsyncSession, now: datetime | None = None) -> int:
    """Create the default global challenges unless any global challenge exists."""
    if db.in_transaction():
        raise ConsistencyError("Challenge seeding must not run inside an open transaction")

    existing = await db.scalar(
        select(func.count()).select_from(Challenge).where(Challenge.type == "global")
    )
    if existing:
        await db.commit()
        return 0

    now = now or datetime.now(timezone.utc)
    for data in DEFAULT_CHALLENGES:
        fields = {k: v for k, v in data.items() if k != "duration_days"}
        db.add(Challenge(
            **fields,
            type="global",
            status="active",
            start_date=now,
            end_date=now + timedelta(days=data["duration_days"]),
            is_active=True,
            created_at=now,
        ))
    await db.commit()
    logger.info("Seeded %d default challenges", len(DEFAULT_CHALLENGES))
    return len(DEFAULT_CHALLENGES)


async def seed_catalogs(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Seed badges and default challenges, each on a fresh session."""
    async with session_factory() as db:
        await seed_badges(db)
    async with session_factory() as db:
        await seed_default_challenges(db)
