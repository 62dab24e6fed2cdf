"""Level curve tests: floor(50 * level^1.5)."""

import pytest

from habitquest.gamification.levels import level_from_xp, level_progress, xp_for_level


class TestXpForLevel:
    def test_known_thresholds(self):
        assert xp_for_level(1) == 50
        assert xp_for_level(2) == 141
        assert xp_for_level(3) == 259
        assert xp_for_level(4) == 400
        assert xp_for_level(10) == 1581

    def test_strictly_increasing(self):
        values = [xp_for_level(level) for level in range(1, 200)]
        assert all(a < b for a, b in zip(values, values[1:]))

    def test_rejects_level_zero(self):
        with pytest.raises(ValueError):
            xp_for_level(0)


class TestLevelFromXp:
    def test_zero_xp_is_level_1(self):
        assert level_from_xp(0) == 1

    def test_negative_xp_is_level_1(self):
        assert level_from_xp(-25) == 1

    def test_just_below_level_2(self):
        assert level_from_xp(140) == 1

    def test_exactly_level_2(self):
        assert level_from_xp(141) == 2

    @pytest.mark.parametrize("level", [1, 2, 3, 5, 10, 25, 50, 100])
    def test_round_trip(self, level):
        assert level_from_xp(xp_for_level(level)) == level

    def test_non_decreasing(self):
        levels = [level_from_xp(xp) for xp in range(0, 5000, 7)]
        assert levels == sorted(levels)


class TestLevelProgress:
    def test_level_1_floor_is_zero(self):
        info = level_progress(0)
        assert info["level"] == 1
        assert info["level_floor_xp"] == 0
        assert info["next_level_xp"] == 141
        assert info["xp_to_next_level"] == 141
        assert info["progress_percent"] == 0

    def test_mid_level(self):
        info = level_progress(200)  # level 2 spans 141..259
        assert info["level"] == 2
        assert info["xp_into_level"] == 59
        assert info["xp_for_level"] == 118
        assert info["xp_to_next_level"] == 59
        assert info["progress_percent"] == 50

    def test_exact_boundary(self):
        info = level_progress(400)
        assert info["level"] == 4
        assert info["xp_into_level"] == 0
