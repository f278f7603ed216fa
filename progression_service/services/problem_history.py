"""
Problem history - recent problems per identity

Rows live under PROBLEM#<identity suffix>#<timestamp>#<id> so that one
descending query returns the newest problems of a single identity.
"""
from typing import Any, Dict, List, Optional, Protocol
import logging
import uuid

from progression_service.dynamo import build_user_pk
from progression_service.errors import NotConfiguredError
from progression_service.logic.identity import IdentityKey
from progression_service.services.ledger_repository import check_write_allowed, utc_now

logger = logging.getLogger(__name__)

PROBLEM_KIND = "PROBLEM"


class ProblemHistoryProvider(Protocol):
    """Source of recent problem rows (subject, difficulty, solved, hints_used)"""

    def recent(self, key: IdentityKey, limit: int) -> List[Dict[str, Any]]:
        ...


def problem_prefix(key: IdentityKey) -> str:
    return f"{PROBLEM_KIND}#{key.sort_suffix}#"


class TableProblemHistory:
    """Problem history stored in the progression table"""

    def __init__(self, table, clock=utc_now):
        self.table = table
        self.clock = clock

    def recent(self, key: IdentityKey, limit: int) -> List[Dict[str, Any]]:
        """Newest first; empty when persistence is not configured"""
        if self.table is None:
            return []
        return self.table.query_recent(key.user_id, problem_prefix(key), limit)

    def record(
        self,
        key: IdentityKey,
        subject: Optional[str],
        difficulty: str,
        solved: bool,
        hints_used: int = 0,
        tries: int = 1,
        time_spent_minutes: float = 0.0
    ) -> Dict[str, Any]:
        """Append one problem row (append-only, no conditional write)"""
        if self.table is None:
            raise NotConfiguredError(
                "Progression persistence is not configured",
                operation="record_problem_attempt", user_id=key.user_id, profile_id=key.profile_id
            )

        now = self.clock()
        problem_id = str(uuid.uuid4())
        item = {
            'PK': build_user_pk(key.user_id),
            'SK': f"{problem_prefix(key)}{now.isoformat()}#{problem_id}",
            'id': problem_id,
            'user_id': key.user_id,
            'subject': (subject or "general").strip().lower() or "general",
            'difficulty': difficulty,
            'solved': bool(solved),
            'hints_used': hints_used,
            'tries': tries,
            'time_spent_minutes': time_spent_minutes,
            'created_at': now.isoformat(),
        }
        if key.profile_id is not None:
            item['profile_id'] = key.profile_id

        check_write_allowed("record_problem_attempt", key)
        self.table.put(item)
        logger.info(f"Recorded {item['subject']} problem ({difficulty}, solved={solved}) for {key.describe()}")
        return item
