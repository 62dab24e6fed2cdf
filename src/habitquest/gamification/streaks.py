"""Streak calculation over a habit's completion history.

Pure functions: the caller passes today's date (UTC) so results never
depend on the wall clock.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta


@dataclass(frozen=True)
class LogEntry:
    day: date
    completed: bool = True


@dataclass(frozen=True)
class StreakResult:
    current: int
    longest: int


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def calculate_streak(entries: Iterable[LogEntry], today: date) -> StreakResult:
    """Compute (current, longest) streaks from completion entries.

    Only completed entries count and duplicate days collapse to one. The
    current streak is live while the most recent completion is today or
    yesterday, and counts consecutive days backwards from it.
    """
    days = sorted({_as_date(e.day) for e in entries if e.completed}, reverse=True)
    if not days:
        return StreakResult(current=0, longest=0)

    current = 0
    if (today - days[0]).days <= 1:
        completed = set(days)
        cursor = days[0]
        while cursor in completed:
            current += 1
            cursor -= timedelta(days=1)

    longest = 0
    run = 0
    previous: date | None = None
    for day in days:
        run = run + 1 if previous is not None and (previous - day).days == 1 else 1
        longest = max(longest, run)
        previous = day

    return StreakResult(current=current, longest=max(longest, current))


def start_of_week(day: date, week_start: int) -> date:
    """First day of the week containing ``day``.

    ``week_start`` uses 0 = Sunday ... 6 = Saturday.
    """
    sunday_based = (day.weekday() + 1) % 7
    return day - timedelta(days=(sunday_based - week_start) % 7)

