"""
Daily problem completions

One completion row per identity per date (DAILY#<date>#<identity suffix>).
The conditional insert decides which call gets the XP; repeats award nothing.
"""
from typing import Any, Dict, Optional
import logging
import uuid

from progression_service.dynamo import build_user_pk
from progression_service.errors import NotConfiguredError, UniqueViolationError
from progression_service.logic import gamification
from progression_service.logic.identity import IdentityKey, normalize_profile_id
from progression_service.logic.streak_service import parse_day
from progression_service.services.ledger_repository import check_write_allowed

logger = logging.getLogger(__name__)

DAILY_KIND = "DAILY"
DAILY_PROBLEM_DIFFICULTY = "middle"


class DailyProblemLedger:
    """Daily problem completion rows plus the XP they unlock"""

    def __init__(self, table, progression_store):
        self.table = table
        self.progression_store = progression_store

    def complete(self, key: IdentityKey, date: Any, problem_text: Optional[str] = None) -> Dict[str, Any]:
        """
        Mark the daily problem of `date` as solved

        Returns:
            Dict with date, already_completed, xp_gained and (first time only)
            the award outcome
        """
        if self.table is None:
            raise NotConfiguredError(
                "Progression persistence is not configured",
                operation="complete_daily_problem", user_id=key.user_id, profile_id=key.profile_id
            )

        day = parse_day(date).isoformat()
        now = self.progression_store.clock().isoformat()
        item = {
            'PK': build_user_pk(key.user_id),
            'SK': f"{DAILY_KIND}#{day}#{key.sort_suffix}",
            'id': str(uuid.uuid4()),
            'user_id': key.user_id,
            'date': day,
            'problem_text': problem_text or "",
            'created_at': now,
        }
        if key.profile_id is not None:
            item['profile_id'] = key.profile_id

        check_write_allowed("complete_daily_problem", key)
        try:
            self.table.insert(item)
        except UniqueViolationError:
            logger.info(f"Daily problem {day} already completed by {key.describe()}")
            return {'date': day, 'already_completed': True, 'xp_gained': 0}

        xp = gamification.calculate_problem_xp(DAILY_PROBLEM_DIFFICULTY, 0)
        outcome = self.progression_store.award(
            key, xp, f"Daily Problem ({day})", operation="complete_daily_problem"
        )
        return dict(outcome, date=day, already_completed=False)

    def count_completions(self, key: IdentityKey) -> int:
        if self.table is None:
            return 0
        rows = self.table.query_user(key.user_id, DAILY_KIND)
        return sum(1 for row in rows if normalize_profile_id(row.get('profile_id')) == key.profile_id)
