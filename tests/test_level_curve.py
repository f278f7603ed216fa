"""
Tests for the leveling curve
"""
import pytest

from progression_service.logic import level_curve


class TestThresholds:
    """Known thresholds of the canonical curve"""

    @pytest.mark.parametrize("level,threshold", [(1, 0), (2, 100), (3, 400), (4, 850), (5, 1450)])
    def test_threshold_for_level(self, level, threshold):
        assert level_curve.threshold_for_level(level) == threshold

    def test_level_costs(self):
        assert level_curve.level_cost(1) == 100
        assert level_curve.level_cost(2) == 300
        assert level_curve.level_cost(3) == 450

    def test_threshold_is_sum_of_costs(self):
        for level in range(1, 60):
            expected = sum(level_curve.level_cost(i) for i in range(1, level))
            assert level_curve.threshold_for_level(level) == expected


class TestLevelFor:
    """Inverse of the threshold function"""

    def test_inverse_for_first_hundred_levels(self):
        for level in range(1, 101):
            assert level_curve.level_for(level_curve.threshold_for_level(level)) == level

    def test_one_xp_below_threshold_stays_on_previous_level(self):
        for level in range(2, 50):
            assert level_curve.level_for(level_curve.threshold_for_level(level) - 1) == level - 1

    def test_zero_and_negative_xp_is_level_one(self):
        assert level_curve.level_for(0) == 1
        assert level_curve.level_for(-50) == 1

    def test_level_is_monotonic(self):
        levels = [level_curve.level_for(xp) for xp in range(0, 5000, 7)]
        assert levels == sorted(levels)


class TestXPToNextLevel:

    def test_xp_to_next_level(self):
        assert level_curve.xp_to_next_level(0, 1) == 100
        assert level_curve.xp_to_next_level(105, 2) == 295

    def test_clamped_at_zero(self):
        assert level_curve.xp_to_next_level(10_000, 1) == 0

    def test_level_progress(self):
        progress = level_curve.level_progress(450)

        assert progress == {
            'currentLevel': 3,
            'xpInLevel': 50,
            'xpNeededForNext': 400,
            'levelSpan': 450,
        }
