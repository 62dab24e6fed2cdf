"""Badge metrics: which number in the evaluation context a badge measures."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from habitquest.gamification.enums import BadgeMetric, BadgeState


@dataclass(frozen=True)
class EvaluationContext:
    """Snapshot of a user's aggregates, rebuilt for every evaluation pass."""

    user_id: int
    current_streak: int = 0
    longest_streak: int = 0
    total_completions: int = 0
    weekly_completions: int = 0
    total_xp: int = 0
    perfect_weeks: int = 0
    days_since_signup: int = 0
    week_start: int = 1


METRIC_EXTRACTORS: dict[BadgeMetric, Callable[[EvaluationContext], int]] = {
    BadgeMetric.CURRENT_STREAK: lambda ctx: ctx.current_streak,
    BadgeMetric.LONGEST_STREAK: lambda ctx: ctx.longest_streak,
    BadgeMetric.TOTAL_COMPLETIONS: lambda ctx: ctx.total_completions,
    BadgeMetric.WEEKLY_COMPLETIONS: lambda ctx: ctx.weekly_completions,
    BadgeMetric.PERFECT_WEEKS: lambda ctx: ctx.perfect_weeks,
    BadgeMetric.TOTAL_XP: lambda ctx: ctx.total_xp,
    BadgeMetric.DAYS_SINCE_SIGNUP: lambda ctx: ctx.days_since_signup,
    # Manual badges are only ever granted explicitly.
    BadgeMetric.MANUAL: lambda ctx: 0,
}


def metric_value(metric: str, ctx: EvaluationContext) -> int:
    """Value of ``metric`` for this context, floored at zero."""
    return max(METRIC_EXTRACTORS[BadgeMetric(metric)](ctx), 0)


def badge_state_for(progress: int, threshold: int) -> BadgeState:
    if progress >= threshold:
        return BadgeState.EARNED
    if progress > 0:
        return BadgeState.IN_PROGRESS
    return BadgeState.LOCKED
