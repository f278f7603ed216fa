"""
Streak Service - study-day continuity per identity

Handles:
- Calendar day of a study event with timezone awareness
- Streak transitions (same day, consecutive day, gap)
- Persisting the streak row through the ledger retry loop
"""
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import Optional, Dict, Any, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from progression_service.errors import ProgressValidationError
from progression_service.logic.identity import IdentityKey
from progression_service.services.ledger_repository import LedgerRepository, utc_now

logger = logging.getLogger(__name__)

STREAK_KIND = "STREAK"

# Transition names
TRANSITION_START = "start"
TRANSITION_NOOP = "noop"
TRANSITION_CONTINUE = "continue"
TRANSITION_RESET = "reset"


def get_user_day(timezone: Optional[str] = None, now_utc: Optional[datetime] = None) -> date:
    """
    Convert UTC time to the learner's local calendar day

    Args:
        timezone: IANA timezone (e.g., "America/Sao_Paulo"); None means UTC
        now_utc: Current UTC time (defaults to now)

    Returns:
        Calendar date in the learner's timezone

    Example:
        >>> get_user_day("America/Sao_Paulo", datetime(2025, 11, 19, 2, 0))  # 2 AM UTC
        date(2025, 11, 18)  # Still Nov 18 in Sao Paulo (UTC-3)
    """
    if now_utc is None:
        now_utc = utc_now()
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=dt_timezone.utc)

    if not timezone:
        return now_utc.astimezone(dt_timezone.utc).date()

    try:
        return now_utc.astimezone(ZoneInfo(timezone)).date()
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning(f"Invalid timezone {timezone}, falling back to UTC: {e}")
        return now_utc.astimezone(dt_timezone.utc).date()


def parse_day(value: Any) -> Optional[date]:
    """Accepts a date, a datetime or a YYYY-MM-DD string"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError as e:
        raise ProgressValidationError(f"Invalid study date: {value}", operation="parse_day") from e


def is_consecutive_day(last_day: date, current_day: date) -> bool:
    """
    Check if current_day is exactly 1 day after last_day

    Examples:
        >>> is_consecutive_day(date(2025, 11, 18), date(2025, 11, 19))
        True
        >>> is_consecutive_day(date(2025, 11, 18), date(2025, 11, 20))
        False
    """
    return current_day - last_day == timedelta(days=1)


def calculate_streak_state(
    current_state: Optional[Dict[str, Any]],
    study_day: date
) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Calculate new streak state for a study event

    Args:
        current_state: Current streak row (None if the identity never studied)
        study_day: Calendar day of the event

    Returns:
        Tuple of (transition, new_fields)
        - new_fields is None for a same-day event: nothing is written

    Logic:
        - No previous day: streak starts at 1
        - Same day: unchanged
        - Exactly one day later: streak +1, longest = max(longest, streak)
        - Anything else (gap, or a day in the past): streak resets to 1
    """
    current_state = current_state or {}
    current_streak = current_state.get('current_streak', 0) or 0
    longest_streak = current_state.get('longest_streak', 0) or 0
    last_day = parse_day(current_state.get('last_study_date'))

    if last_day is None:
        logger.info(f"First study day {study_day}, starting streak at 1")
        return TRANSITION_START, {
            'current_streak': 1,
            'longest_streak': max(longest_streak, 1),
            'last_study_date': study_day.isoformat(),
        }

    if last_day == study_day:
        return TRANSITION_NOOP, None

    if is_consecutive_day(last_day, study_day):
        new_streak = current_streak + 1
        logger.info(f"Consecutive study day: streak incremented from {current_streak} to {new_streak}")
        return TRANSITION_CONTINUE, {
            'current_streak': new_streak,
            'longest_streak': max(longest_streak, new_streak),
            'last_study_date': study_day.isoformat(),
        }

    if study_day < last_day:
        logger.warning(f"Study day {study_day} is before last study day {last_day}, resetting streak")
    else:
        logger.info(f"Streak broken ({last_day} -> {study_day}), resetting from {current_streak} to 1")

    return TRANSITION_RESET, {
        'current_streak': 1,
        'longest_streak': max(longest_streak, 1),
        'last_study_date': study_day.isoformat(),
    }


def streak_snapshot(row: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    row = row or {}
    return {
        'current_streak': row.get('current_streak', 0) or 0,
        'longest_streak': row.get('longest_streak', 0) or 0,
        'last_study_date': row.get('last_study_date'),
    }


class StreakContinuity:
    """Streak rows, one per identity"""

    def __init__(self, table, max_attempts: Optional[int] = None, clock=utc_now):
        self.repository = LedgerRepository(table, STREAK_KIND, max_attempts=max_attempts, clock=clock)
        self.clock = clock

    def get_streak(self, key: IdentityKey) -> Dict[str, Any]:
        """Current streak for an identity; zero state when there is no row"""
        return streak_snapshot(self.repository.get(key))

    def record_study_event(
        self,
        key: IdentityKey,
        study_date: Optional[Any] = None,
        timezone: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record that the identity studied on a day

        Args:
            key: Identity
            study_date: Day of the event; defaults to today in `timezone`
            timezone: IANA timezone used when study_date is omitted

        Returns:
            Dict with current_streak, longest_streak, last_study_date, transition
        """
        day = parse_day(study_date) or get_user_day(timezone, self.clock())

        def compute(current):
            transition, fields = calculate_streak_state(current, day)
            snapshot = streak_snapshot(fields if fields is not None else current)
            snapshot['transition'] = transition
            return fields, snapshot

        return self.repository.mutate(key, compute, "record_study_event")
