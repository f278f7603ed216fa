"""
Error taxonomy for the progression ledger

Callers only ever see ProgressionError subclasses. Write conflicts are raised by
the storage layer and handled inside the ledger's retry loop.
"""
from typing import Optional


class ProgressionError(Exception):
    """Base error carrying the identity and operation that failed"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        user_id: Optional[str] = None,
        profile_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.user_id = user_id
        self.profile_id = profile_id

    def context(self) -> dict:
        return {
            "operation": self.operation,
            "userId": self.user_id,
            "profileId": self.profile_id,
        }


class NotConfiguredError(ProgressionError):
    """Persistence is unavailable; raised by writes only"""


class ConflictExhaustedError(ProgressionError):
    """Write conflicts kept happening after the bounded number of attempts"""


class ProgressValidationError(ProgressionError):
    """Input rejected before any I/O (negative XP, malformed identity, unknown tier)"""


class TransientIOError(ProgressionError):
    """Storage or network failure unrelated to write conflicts"""


class LedgerTimeoutError(ProgressionError):
    """The caller-supplied timeout elapsed before the operation finished"""


# ============= STORAGE-LEVEL CONFLICTS =============

class WriteConflictError(Exception):
    """A conditional write lost a race against a concurrent writer"""


class UniqueViolationError(WriteConflictError):
    """Insert rejected: a row for this identity already exists"""


class VersionConflictError(WriteConflictError):
    """Update rejected: the row changed since it was read"""
