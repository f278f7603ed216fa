"""
Gamification logic for progression-service

Implements:
- XP rewards for solved problems, logins and referrals
- Applying an XP delta to a ledger row (level, threshold, history)
"""
from typing import Dict, Any, Optional, Tuple
from datetime import datetime
import math
import logging

from progression_service.config import get_settings
from progression_service.errors import ProgressValidationError
from progression_service.logic import level_curve

settings = get_settings()
logger = logging.getLogger(__name__)


# ============= XP REWARDS =============

DIFFICULTY_MULTIPLIERS = {
    'easy': 0.8,
    'medium': 1.0,
    'hard': 1.5,
    'elementary': 0.6,
    'middle': 1.0,
    'high': 1.3,
    'advanced': 1.8,
}

FIRST_LOGIN_REASON = "First Login Bonus + Daily Login"
DAILY_LOGIN_REASON = "Daily Login Bonus"
REFERRAL_REASON = "Referral Bonus"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (22.5 -> 23)"""
    return int(math.floor(value + 0.5))


def difficulty_multiplier(difficulty: Optional[str]) -> float:
    """Unknown labels (e.g. "middle school") count as 1.0"""
    if not difficulty:
        return 1.0
    return DIFFICULTY_MULTIPLIERS.get(difficulty.strip().lower(), 1.0)


def calculate_problem_xp(difficulty: Optional[str] = "medium", hints_used: int = 0) -> int:
    """
    XP for solving one problem

    Formula: max(MIN_PROBLEM_XP, round(BASE_XP * multiplier - hints * HINT_PENALTY))

    Examples:
        >>> calculate_problem_xp("medium", 0)
        15
        >>> calculate_problem_xp("hard", 1)
        21
    """
    if hints_used is None:
        hints_used = 0
    if hints_used < 0:
        raise ProgressValidationError(
            f"hints_used cannot be negative: {hints_used}", operation="calculate_problem_xp"
        )

    raw = settings.BASE_XP_PER_PROBLEM * difficulty_multiplier(difficulty) - hints_used * settings.HINT_PENALTY_XP
    return max(settings.MIN_PROBLEM_XP, round_half_up(raw))


def login_bonus_xp(is_first_login: bool) -> Tuple[int, str]:
    """Returns (xp, reason) for a login; first login also includes the daily bonus"""
    if is_first_login:
        return settings.FIRST_LOGIN_BONUS_XP + settings.DAILY_LOGIN_XP, FIRST_LOGIN_REASON
    return settings.DAILY_LOGIN_XP, DAILY_LOGIN_REASON


# ============= XP AND LEVELING =============

def build_history_entry(xp_delta: int, reason: str, now: datetime, day: Optional[str] = None) -> Dict[str, Any]:
    return {
        'date': day or now.date().isoformat(),
        'xp_delta': xp_delta,
        'reason': reason,
        'timestamp': int(now.timestamp() * 1000),
    }


def apply_xp(
    current: Optional[Dict[str, Any]],
    xp_delta: int,
    reason: str,
    now: datetime,
    day: Optional[str] = None
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Add XP to a ledger row and recompute level

    Args:
        current: Current XP row, or None for a learner with no row yet
        xp_delta: Non-negative XP amount
        reason: History reason string
        now: Event time (UTC)
        day: Calendar day recorded in history (defaults to now's UTC date)

    Returns:
        Tuple of (new ledger fields, award outcome)
    """
    current = current or {}
    current_total = current.get('total_xp', 0) or 0
    current_level = level_curve.level_for(current_total)

    new_total = current_total + xp_delta
    new_level = level_curve.level_for(new_total)

    fields = {
        'total_xp': new_total,
        'level': new_level,
        'xp_to_next_level': level_curve.xp_to_next_level(new_total, new_level),
        'xp_history': list(current.get('xp_history') or []) + [build_history_entry(xp_delta, reason, now, day)],
    }

    outcome = {
        'xp_gained': xp_delta,
        'new_total': new_total,
        'new_level': new_level,
        'leveled_up': new_level > current_level,
    }

    return fields, outcome


def has_login_entry_on(history, day: str) -> bool:
    return any(
        entry.get('date') == day and 'Login' in (entry.get('reason') or '')
        for entry in history or []
    )


def has_first_login_entry(history) -> bool:
    return any('First Login Bonus' in (entry.get('reason') or '') for entry in history or [])
