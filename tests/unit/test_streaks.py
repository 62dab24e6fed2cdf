"""Streak calculator tests."""

from datetime import date, timedelta

from habitquest.gamification.streaks import LogEntry, calculate_streak, start_of_week

TODAY = date(2026, 3, 15)


def _days(*offsets: int) -> list[LogEntry]:
    return [LogEntry(day=TODAY - timedelta(days=o)) for o in offsets]


class TestCurrentStreak:
    def test_no_entries(self):
        result = calculate_streak([], TODAY)
        assert result.current == 0
        assert result.longest == 0

    def test_seven_consecutive_days_ending_today(self):
        result = calculate_streak(_days(0, 1, 2, 3, 4, 5, 6), TODAY)
        assert result.current == 7
        assert result.longest == 7

    def test_streak_still_live_if_last_completion_was_yesterday(self):
        result = calculate_streak(_days(1, 2, 3), TODAY)
        assert result.current == 3

    def test_two_day_gap_resets_current(self):
        """Completed up to two days ago: the streak is broken."""
        result = calculate_streak(_days(2, 3, 4, 5, 6, 7, 8), TODAY)
        assert result.current == 0
        assert result.longest == 7

    def test_stops_at_first_gap(self):
        result = calculate_streak(_days(0, 1, 3, 4, 5, 6), TODAY)
        assert result.current == 2
        assert result.longest == 4

    def test_uncompleted_entries_ignored(self):
        entries = _days(0, 2) + [LogEntry(day=TODAY - timedelta(days=1), completed=False)]
        result = calculate_streak(entries, TODAY)
        assert result.current == 1
        assert result.longest == 1

    def test_duplicate_days_count_once(self):
        result = calculate_streak(_days(0, 0, 1, 1, 2), TODAY)
        assert result.current == 3
        assert result.longest == 3

    def test_longest_never_below_current(self):
        for offsets in [(0,), (0, 1), (0, 1, 2, 5, 6), (1, 3, 4, 5, 9)]:
            result = calculate_streak(_days(*offsets), TODAY)
            assert result.longest >= result.current

    def test_order_of_entries_does_not_matter(self):
        forward = calculate_streak(_days(0, 1, 2, 4, 5), TODAY)
        backward = calculate_streak(list(reversed(_days(0, 1, 2, 4, 5))), TODAY)
        assert forward == backward


class TestStartOfWeek:
    def test_monday_start(self):
        # 2026-03-15 is a Sunday
        assert start_of_week(TODAY, 1) == date(2026, 3, 9)

    def test_sunday_start(self):
        assert start_of_week(TODAY, 0) == TODAY

    def test_day_is_its_own_week_start(self):
        monday = date(2026, 3, 9)
        assert start_of_week(monday, 1) == monday
