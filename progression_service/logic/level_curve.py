"""
Leveling curve

Single canonical curve used everywhere a level is derived from XP:
- Level 1 -> 2 costs 100 XP
- Level n -> n+1 (n >= 2) costs round(100 * n * 1.5) XP

    level:      1    2    3     4     5
    threshold:  0  100  400   850  1450
"""
from typing import Dict

FIRST_LEVEL_COST = 100
LEVEL_GROWTH = 1.5


def level_cost(level: int) -> int:
    """XP needed to go from `level` to `level + 1`"""
    if level <= 1:
        return FIRST_LEVEL_COST
    return round(100 * level * LEVEL_GROWTH)


def level_for(total_xp: int) -> int:
    """
    Calculate level based on total XP

    Consumes per-level costs starting at level 1 while the accumulated
    XP plus the next cost still fits in total_xp.

    Args:
        total_xp: Total XP (negative values are treated as 0)

    Returns:
        Current level (>= 1)
    """
    level = 1
    accumulated = 0

    while accumulated + level_cost(level) <= total_xp:
        accumulated += level_cost(level)
        level += 1

    return level


def threshold_for_level(level: int) -> int:
    """
    Total XP required to reach a level

    Closed form of sum(level_cost(i) for i in 1..level-1):
    100 + 150 * (2 + 3 + ... + (level - 1)) = 100 + 75 * ((level - 1) * level - 2)
    """
    if level <= 1:
        return 0
    return FIRST_LEVEL_COST + 75 * ((level - 1) * level - 2)


def xp_to_next_level(total_xp: int, level: int) -> int:
    return max(0, threshold_for_level(level + 1) - total_xp)


def level_progress(total_xp: int) -> Dict[str, int]:
    """
    Calculate progress within current level

    Returns:
        Dict with currentLevel, xpInLevel, xpNeededForNext, levelSpan
    """
    current_level = level_for(total_xp)
    floor = threshold_for_level(current_level)

    return {
        'currentLevel': current_level,
        'xpInLevel': max(0, total_xp - floor),
        'xpNeededForNext': xp_to_next_level(total_xp, current_level),
        'levelSpan': level_cost(current_level),
    }
