"""Enumerations stored as short strings in the gamification tables."""

from __future__ import annotations

from enum import Enum


class XpSource(str, Enum):
    HABIT_COMPLETE = "habit_complete"
    STREAK_BONUS = "streak_bonus"
    BADGE_UNLOCK = "badge_unlock"
    CHALLENGE_COMPLETE = "challenge_complete"
    PERFECT_WEEK = "perfect_week"


class BadgeState(str, Enum):
    LOCKED = "locked"
    IN_PROGRESS = "in_progress"
    EARNED = "earned"


class BadgeCategory(str, Enum):
    STREAK = "streak"
    VOLUME = "volume"
    CONSISTENCY = "consistency"
    DISCIPLINE = "discipline"
    SPECIAL = "special"
    SEASONAL = "seasonal"


class BadgeTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


TIER_ORDER = [BadgeTier.BRONZE, BadgeTier.SILVER, BadgeTier.GOLD, BadgeTier.PLATINUM]


class BadgeRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class BadgeMetric(str, Enum):
    """Which evaluation-context field a badge threshold is compared against."""

    CURRENT_STREAK = "current_streak"
    LONGEST_STREAK = "longest_streak"
    TOTAL_COMPLETIONS = "total_completions"
    WEEKLY_COMPLETIONS = "weekly_completions"
    PERFECT_WEEKS = "perfect_weeks"
    TOTAL_XP = "total_xp"
    DAYS_SINCE_SIGNUP = "days_since_signup"
    MANUAL = "manual"


class ChallengeType(str, Enum):
    PERSONAL = "personal"
    GLOBAL = "global"
    GROUP = "group"


class ChallengeStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ChallengeTargetType(str, Enum):
    DAILY_COMPLETIONS = "daily_completions"
    STREAK_DAYS = "streak_days"
    TOTAL_COMPLETIONS = "total_completions"
    PERFECT_WEEK = "perfect_week"
    XP_GAIN = "xp_gain"


class ChallengeDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"


class ParticipantState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    WITHDRAWN = "withdrawn"
