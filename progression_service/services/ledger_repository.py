"""
Ledger repository - read / compute / write / retry for one record kind

There is no lock per identity. Each mutation reads the current row, computes
the whole new row, and writes it with a conditional put. Losing a race (insert
raced by a first writer, or update raced by another update) restarts from the
read so the winner's state is folded in.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import threading
import uuid

from progression_service.config import get_settings
from progression_service.dynamo import build_record_sk, build_user_pk
from progression_service.errors import (
    ConflictExhaustedError,
    LedgerTimeoutError,
    NotConfiguredError,
    UniqueViolationError,
    WriteConflictError,
)
from progression_service.logic.identity import IdentityKey, select_for_identity

settings = get_settings()
logger = logging.getLogger(__name__)

# compute(current_row) -> (new_fields or None for a no-op, outcome)
Compute = Callable[[Optional[Dict[str, Any]]], Tuple[Optional[Dict[str, Any]], Any]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============= WRITE GUARD =============

class WriteGuard:
    """
    Shared between a waiting caller and the worker thread doing the writes

    Once the caller gives up, writes that have not started are refused. A
    write that already started runs to completion and the caller waits for
    the real result, so a timeout always means nothing was written.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled = False
        self._started = False

    def begin_write(self, operation: str, key: Optional[IdentityKey]):
        with self._lock:
            if self._cancelled:
                raise LedgerTimeoutError(
                    f"{operation} timed out before writing",
                    operation=operation,
                    user_id=key.user_id if key else None,
                    profile_id=key.profile_id if key else None
                )
            self._started = True

    def cancel(self) -> bool:
        """Refuse further writes; returns True when a write had already started"""
        with self._lock:
            if self._started:
                return True
            self._cancelled = True
            return False


_write_guard: ContextVar[Optional[WriteGuard]] = ContextVar("write_guard", default=None)


@contextmanager
def write_guard_scope(guard: WriteGuard):
    """Install the guard for work started (and copied into threads) inside the block"""
    token = _write_guard.set(guard)
    try:
        yield guard
    finally:
        _write_guard.reset(token)


def check_write_allowed(operation: str, key: Optional[IdentityKey] = None):
    """Call right before a storage write; raises LedgerTimeoutError once the caller gave up"""
    guard = _write_guard.get()
    if guard is not None:
        guard.begin_write(operation, key)


class LedgerRepository:
    """Identity-scoped rows of one kind (XP, STREAK, DIFFICULTY)"""

    def __init__(
        self,
        table,
        kind: str,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.table = table
        self.kind = kind
        self.max_attempts = max_attempts or settings.MAX_WRITE_ATTEMPTS
        self.clock = clock

    @property
    def configured(self) -> bool:
        return self.table is not None

    def load_candidates(self, user_id: str) -> List[Dict[str, Any]]:
        """All rows of this kind for the user, across profiles"""
        if self.table is None:
            return []
        return self.table.query_user(user_id, self.kind)

    def get(self, key: IdentityKey, fallback_to_owner: bool = True) -> Optional[Dict[str, Any]]:
        """Row for an identity or None; never raises for a missing row"""
        return select_for_identity(self.load_candidates(key.user_id), key, fallback_to_owner)

    def mutate(self, key: IdentityKey, compute: Compute, operation: str) -> Any:
        """
        Apply compute() to the identity's row until a write succeeds

        Args:
            key: Identity whose row is mutated
            compute: Pure function of the current row (or None)
            operation: Name used in logs and errors

        Returns:
            The outcome returned by compute() on the winning round

        Raises:
            NotConfiguredError: No table configured
            ConflictExhaustedError: Every attempt lost a race
            TransientIOError: Storage failure, surfaced without retry
            LedgerTimeoutError: The caller gave up before the first write
        """
        if self.table is None:
            raise NotConfiguredError(
                "Progression persistence is not configured",
                operation=operation, user_id=key.user_id, profile_id=key.profile_id
            )

        for attempt in range(1, self.max_attempts + 1):
            current = self.get(key, fallback_to_owner=False)
            fields, outcome = compute(current)

            if fields is None:
                return outcome

            check_write_allowed(operation, key)
            try:
                self._persist(key, current, fields)
                if attempt > 1:
                    logger.info(f"{operation} for {key.describe()} succeeded on attempt {attempt}")
                return outcome
            except WriteConflictError as e:
                kind = "insert" if isinstance(e, UniqueViolationError) else "update"
                logger.warning(
                    f"{operation} for {key.describe()} lost {kind} race "
                    f"(attempt {attempt}/{self.max_attempts}), retrying from read"
                )

        logger.error(f"{operation} for {key.describe()} exhausted {self.max_attempts} attempts")
        raise ConflictExhaustedError(
            f"{operation} gave up after {self.max_attempts} conflicting writes",
            operation=operation, user_id=key.user_id, profile_id=key.profile_id
        )

    def _persist(
        self,
        key: IdentityKey,
        current: Optional[Dict[str, Any]],
        fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update-by-id when the row exists, insert otherwise; always the whole row"""
        now = self.clock().isoformat()

        if current and current.get('id'):
            row = {k: v for k, v in current.items() if k not in fields}
            row.update(fields)
            row['version'] = current.get('version', 0) + 1
            row['updated_at'] = now
            return self.table.replace(row, expected_version=current.get('version', 0))

        row = {
            'PK': build_user_pk(key.user_id),
            'SK': build_record_sk(self.kind, key.sort_suffix),
            'id': str(uuid.uuid4()),
            'user_id': key.user_id,
            'version': 1,
            'created_at': now,
            'updated_at': now,
        }
        if key.profile_id is not None:
            row['profile_id'] = key.profile_id
        row.update(fields)
        return self.table.insert(row)

