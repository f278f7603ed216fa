"""
In-process progression table for local development and tests

Same primitives and conflict semantics as DynamoProgressionTable: conditional
inserts raise UniqueViolationError, stale versioned writes raise
VersionConflictError. One lock guards the dict; it stands in for DynamoDB's
per-item atomicity, not for any ledger-level locking.
"""
import copy
import threading
import logging
from typing import Any, Dict, Iterable, List, Tuple

from progression_service.dynamo import PROFILE_SK, build_user_pk
from progression_service.errors import UniqueViolationError, VersionConflictError

logger = logging.getLogger(__name__)


class MemoryProgressionTable:
    """Dict-backed row store keyed by (PK, SK)"""

    def __init__(self):
        self._items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()
        logger.info("MemoryProgressionTable initialized")

    def query_user(self, user_id: str, kind: str) -> List[Dict[str, Any]]:
        pk = build_user_pk(user_id)
        prefix = f"{kind}#"
        with self._lock:
            return [
                copy.deepcopy(item)
                for (item_pk, item_sk), item in sorted(self._items.items())
                if item_pk == pk and item_sk.startswith(prefix)
            ]

    def query_recent(self, user_id: str, sk_prefix: str, limit: int) -> List[Dict[str, Any]]:
        pk = build_user_pk(user_id)
        with self._lock:
            rows = [
                copy.deepcopy(item)
                for (item_pk, item_sk), item in sorted(self._items.items(), reverse=True)
                if item_pk == pk and item_sk.startswith(sk_prefix)
            ]
        return rows[:limit]

    def insert(self, item: Dict[str, Any]) -> Dict[str, Any]:
        key = (item['PK'], item['SK'])
        with self._lock:
            if key in self._items:
                raise UniqueViolationError(f"{item['PK']} {item['SK']} already exists")
            self._items[key] = copy.deepcopy(item)
        return item

    def replace(self, item: Dict[str, Any], expected_version: int) -> Dict[str, Any]:
        key = (item['PK'], item['SK'])
        with self._lock:
            stored = self._items.get(key)
            if stored is None or stored.get('version') != expected_version:
                raise VersionConflictError(
                    f"{item['PK']} {item['SK']} changed since version {expected_version}"
                )
            self._items[key] = copy.deepcopy(item)
        return item

    def put(self, item: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._items[(item['PK'], item['SK'])] = copy.deepcopy(item)
        return item

    def ensure_profile(self, user_id: str, created_at: str) -> bool:
        try:
            self.insert({
                'PK': build_user_pk(user_id),
                'SK': PROFILE_SK,
                'user_id': user_id,
                'role': 'student',
                'created_at': created_at,
            })
            return True
        except UniqueViolationError:
            return False

    def delete_user(self, user_id: str, kinds: Iterable[str]) -> int:
        pk = build_user_pk(user_id)
        prefixes = tuple(f"{kind}#" for kind in kinds)
        with self._lock:
            doomed = [key for key in self._items if key[0] == pk and key[1].startswith(prefixes)]
            for key in doomed:
                del self._items[key]
        return len(doomed)

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            return {'TableName': 'memory', 'TableStatus': 'ACTIVE', 'ItemCount': len(self._items)}
