"""Unit tests for XP and Leveling System (alpine/gamification/xp_system.py)"""
import pytest

from alpine.gamification.xp_system import (
    calculate_level,
    calculate_level_from_xp,
    get_streak_multiplier,
    get_xp_for_completion,
    get_xp_progress,
    round_half_up,
    xp_threshold_for_level,
)


# ============================================================================
# Level Calculation Tests
# ============================================================================

@pytest.mark.parametrize("total_xp,level", [
    (0, 1),
    (99, 1),
    (100, 2),
    (250, 2),
    (299, 2),
    (300, 3),
    (599, 3),
    (600, 4),
    (1000, 5),
])
def test_calculate_level(total_xp, level):
    assert calculate_level(total_xp) == level


def test_level_thresholds():
    """Test cumulative thresholds grow by level * 100"""
    assert [xp_threshold_for_level(level) for level in range(1, 6)] == [0, 100, 300, 600, 1000]


def test_calculate_level_from_xp_level_1_zero():
    """Test level 1 with 0 XP"""
    result = calculate_level_from_xp(0)

    assert result["current_level"] == 1
    assert result["xp_in_current_level"] == 0
    assert result["xp_to_next_level"] == 100
    assert result["total_xp_for_next_level"] == 100


def test_calculate_level_from_xp_mid_level():
    """Test 250 XP is level 2, 50 XP short of level 3"""
    result = calculate_level_from_xp(250)

    assert result["current_level"] == 2
    assert result["xp_in_current_level"] == 150
    assert result["xp_to_next_level"] == 50
    assert result["total_xp_for_next_level"] == 300


def test_get_xp_progress():
    progress = get_xp_progress(250, 2)

    assert progress == {"current": 150, "needed": 200, "percentage": 75}


def test_get_xp_progress_caps_percentage():
    assert get_xp_progress(500, 1)["percentage"] == 100


# ============================================================================
# Streak Multiplier Tests
# ============================================================================

def test_streak_multiplier_grows_ten_percent():
    assert get_streak_multiplier(0) == pytest.approx(1.0)
    assert get_streak_multiplier(1) == pytest.approx(1.1)
    assert get_streak_multiplier(5) == pytest.approx(1.5)


def test_streak_multiplier_caps_at_double():
    assert get_streak_multiplier(10) == 2.0
    assert get_streak_multiplier(42) == 2.0


# ============================================================================
# XP Award Tests
# ============================================================================

@pytest.mark.parametrize("frequency,streak,xp", [
    ("daily", 1, 11),
    ("daily", 2, 12),
    ("daily", 5, 15),
    ("hourly", 5, 8),
    ("weekly", 3, 65),
    ("monthly", 10, 400),
    ("monthly", 25, 400),
])
def test_get_xp_for_completion(frequency, streak, xp):
    assert get_xp_for_completion(frequency, streak) == xp


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.4) == 2
