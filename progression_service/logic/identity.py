"""
Identity resolution for progression records

A ledger row belongs to (user_id, profile_id). profile_id is absent for the
user's own progress and set for a managed sub-profile (e.g. a student under a
parent or guardian account).

Rows are always loaded for the whole user and filtered here, never with a
profile predicate pushed down to the store: a missing profile attribute and a
NULL one do not compare the same way across backends.
"""
from typing import Any, Dict, List, NamedTuple, Optional
import logging

from progression_service.errors import ProgressValidationError

logger = logging.getLogger(__name__)

ABSENT_PROFILE_SENTINELS = {"", "null", "none", "undefined"}


class IdentityKey(NamedTuple):
    user_id: str
    profile_id: Optional[str] = None

    @property
    def sort_suffix(self) -> str:
        """Sort key suffix shared by every record kind of this identity"""
        if self.profile_id is None:
            return "SELF"
        return f"PROFILE#{self.profile_id}"

    def describe(self) -> str:
        return f"user={self.user_id} profile={self.profile_id or '-'}"


def normalize_profile_id(profile_id: Optional[Any]) -> Optional[str]:
    """Empty string, "null" and None all mean "no sub-profile" """
    if profile_id is None:
        return None
    value = str(profile_id).strip()
    if value.lower() in ABSENT_PROFILE_SENTINELS:
        return None
    return value


def resolve_identity(user_id: Optional[str], profile_id: Optional[Any] = None) -> IdentityKey:
    """
    Build the canonical identity key

    Raises:
        ProgressValidationError: If user_id is missing or blank
    """
    if user_id is None or not str(user_id).strip():
        raise ProgressValidationError(
            "user_id is required",
            operation="resolve_identity",
            profile_id=normalize_profile_id(profile_id)
        )
    return IdentityKey(str(user_id).strip(), normalize_profile_id(profile_id))


def _freshness(row: Dict[str, Any]) -> str:
    return row.get('updated_at') or row.get('created_at') or ""


def pick_best(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Choose one row among duplicates of the same identity

    Highest total_xp wins, ties go to the most recently updated row.
    Duplicates only exist after a past race, so this is logged.
    """
    if not rows:
        return None
    if len(rows) > 1:
        logger.warning(
            f"Found {len(rows)} rows for user {rows[0].get('user_id')}, "
            f"profile {rows[0].get('profile_id') or '-'}; keeping highest XP"
        )
    return max(rows, key=lambda r: (r.get('total_xp', 0) or 0, _freshness(r)))


def select_for_identity(
    candidates: List[Dict[str, Any]],
    key: IdentityKey,
    fallback_to_owner: bool = True
) -> Optional[Dict[str, Any]]:
    """
    Select the row that belongs to an identity

    Args:
        candidates: All rows of one kind for key.user_id, across profiles
        key: Identity to select
        fallback_to_owner: For a sub-profile with no row of its own, return the
            user's own row (profile absent). Reads use this; writes never do,
            so a sub-profile's first write creates its own row.

    Returns:
        Matching row or None
    """
    rows = [r for r in candidates if r.get('user_id') == key.user_id]

    exact = [r for r in rows if normalize_profile_id(r.get('profile_id')) == key.profile_id]
    if exact:
        return pick_best(exact)

    if key.profile_id is not None and fallback_to_owner:
        owner_rows = [r for r in rows if normalize_profile_id(r.get('profile_id')) is None]
        return pick_best(owner_rows)

    return None
