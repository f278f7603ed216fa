"""
Progression store - XP ledger per identity

Get never fails for a missing row (zero state). Award resolves the identity,
bootstraps the owner profile, and applies the delta through the ledger retry
loop so no concurrent delta is lost.
"""
from typing import Any, Dict, Optional
import logging

from progression_service.config import get_settings
from progression_service.errors import ProgressValidationError
from progression_service.logic import gamification, level_curve
from progression_service.logic.identity import IdentityKey, normalize_profile_id
from progression_service.services.ledger_repository import LedgerRepository, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)

XP_KIND = "XP"


def zero_state() -> Dict[str, Any]:
    return {
        'total_xp': 0,
        'level': 1,
        'xp_to_next_level': level_curve.threshold_for_level(2),
        'xp_history': [],
        'inherited_from_owner': False,
    }


def progress_view(row: Optional[Dict[str, Any]], inherited_from_owner: bool = False) -> Dict[str, Any]:
    """Public view of an XP row; level is re-derived from total_xp"""
    if not row:
        return zero_state()
    total = row.get('total_xp', 0) or 0
    level = level_curve.level_for(total)
    return {
        'total_xp': total,
        'level': level,
        'xp_to_next_level': level_curve.xp_to_next_level(total, level),
        'xp_history': list(row.get('xp_history') or []),
        'inherited_from_owner': inherited_from_owner,
    }


class ProgressionStore:
    """XP rows, one per identity"""

    def __init__(self, table, max_attempts: Optional[int] = None, clock=utc_now):
        self.table = table
        self.repository = LedgerRepository(table, XP_KIND, max_attempts=max_attempts, clock=clock)
        self.clock = clock

    @property
    def configured(self) -> bool:
        return self.repository.configured

    def get(self, key: IdentityKey, fallback_to_owner: bool = True) -> Optional[Dict[str, Any]]:
        """Raw XP row for the identity (sub-profiles fall back to the owner) or None"""
        return self.repository.get(key, fallback_to_owner=fallback_to_owner)

    def get_progress(self, key: IdentityKey, fallback_to_owner: bool = True) -> Dict[str, Any]:
        """
        XP view for the identity

        A sub-profile without its own row shows the owner's row with
        inherited_from_owner set; its first award starts from zero.
        """
        row = self.get(key, fallback_to_owner=fallback_to_owner)
        inherited = (
            row is not None
            and key.profile_id is not None
            and normalize_profile_id(row.get('profile_id')) is None
        )
        return progress_view(row, inherited_from_owner=inherited)

    def ensure_owner_profile(self, user_id: str) -> bool:
        """Create the coarse owner profile row; losing the creation race is fine"""
        created = self.table.ensure_profile(user_id, self.clock().isoformat())
        if created:
            logger.info(f"Bootstrapped owner profile for user {user_id}")
        else:
            logger.debug(f"Owner profile for user {user_id} already exists")
        return created

    def award(self, key: IdentityKey, xp_delta: int, reason: str, operation: str = "award") -> Dict[str, Any]:
        """
        Add XP to the identity's ledger

        Args:
            key: Identity
            xp_delta: Non-negative integer amount
            reason: History reason string
            operation: Name used in logs and errors

        Returns:
            Dict with xp_gained, new_total, new_level, leveled_up

        Raises:
            ProgressValidationError: Negative or non-integer delta, empty reason
            NotConfiguredError, ConflictExhaustedError, TransientIOError
        """
        if isinstance(xp_delta, bool) or not isinstance(xp_delta, int) or xp_delta < 0:
            raise ProgressValidationError(
                f"XP delta must be a non-negative integer, got {xp_delta!r}",
                operation=operation, user_id=key.user_id, profile_id=key.profile_id
            )
        if not reason or not reason.strip():
            raise ProgressValidationError(
                "XP reason is required", operation=operation, user_id=key.user_id, profile_id=key.profile_id
            )

        # Unconfigured stores fail inside mutate()
        if self.configured:
            self.ensure_owner_profile(key.user_id)

        def compute(current):
            return gamification.apply_xp(current, xp_delta, reason, self.clock())

        outcome = self.repository.mutate(key, compute, operation)

        logger.info(
            f"Awarded {xp_delta} XP to {key.describe()} ({reason}): "
            f"total {outcome['new_total']}, level {outcome['new_level']}"
            + (" - LEVEL UP" if outcome['leveled_up'] else "")
        )
        return outcome

    def award_daily_login(self, key: IdentityKey, day: str) -> Dict[str, Any]:
        """
        Award the login bonus at most once per calendar day

        The history check runs inside the retry loop, so two racing logins
        for the same day award once.

        Returns:
            Dict with xp_gained (0 when already awarded), is_first_login and,
            when something was awarded, the award outcome fields
        """
        if self.configured:
            self.ensure_owner_profile(key.user_id)

        def compute(current):
            history = (current or {}).get('xp_history') or []
            if gamification.has_login_entry_on(history, day):
                return None, {'xp_gained': 0, 'is_first_login': False, 'already_awarded': True}

            is_first_login = not gamification.has_first_login_entry(history)
            xp, reason = gamification.login_bonus_xp(is_first_login)
            fields, outcome = gamification.apply_xp(current, xp, reason, self.clock(), day=day)
            outcome.update(is_first_login=is_first_login, already_awarded=False)
            return fields, outcome

        outcome = self.repository.mutate(key, compute, "check_and_award_daily_login")
        if outcome['already_awarded']:
            logger.info(f"Daily login for {key.describe()} on {day} already awarded")
        else:
            logger.info(f"Awarded {outcome['xp_gained']} login XP to {key.describe()} on {day}")
        return outcome
