"""
Concurrent writers against one identity

Each lost race means another writer committed, so with N writers N attempts
always suffice; max_attempts is set above that to test the protocol, not the bound.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import SlowMemoryTable
from progression_service.errors import ConflictExhaustedError, VersionConflictError, UniqueViolationError
from progression_service.logic.identity import IdentityKey
from progression_service.logic.streak_service import StreakContinuity
from progression_service.memory_table import MemoryProgressionTable
from progression_service.services.progression_store import ProgressionStore

OWNER = IdentityKey("user-1")
KID = IdentityKey("user-1", "kid-1")
WRITERS = 16


@pytest.fixture
def slow_table():
    return SlowMemoryTable()


def _run_concurrently(func, count):
    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(func) for _ in range(count)]
        return [future.result() for future in futures]


class TestNoLostDeltas:

    def test_concurrent_awards_sum_exactly(self, slow_table, clock):
        store = ProgressionStore(slow_table, max_attempts=WRITERS + 1, clock=clock)

        results = _run_concurrently(lambda: store.award(OWNER, 15, "Problem Solved"), WRITERS)

        assert len(results) == WRITERS
        row = store.get(OWNER)
        assert row['total_xp'] == WRITERS * 15
        assert len(row['xp_history']) == WRITERS
        assert sorted(r['new_total'] for r in results) == [15 * i for i in range(1, WRITERS + 1)]

    def test_concurrent_awards_on_existing_row(self, slow_table, clock):
        store = ProgressionStore(slow_table, max_attempts=WRITERS + 1, clock=clock)
        store.award(KID, 100, "Referral Bonus")

        _run_concurrently(lambda: store.award(KID, 10, "Daily Login Bonus"), WRITERS)

        assert store.get(KID)['total_xp'] == 100 + WRITERS * 10


class TestAtMostOneRecord:

    def test_first_writer_race_creates_one_row(self, slow_table, clock):
        store = ProgressionStore(slow_table, max_attempts=WRITERS + 1, clock=clock)

        _run_concurrently(lambda: store.award(KID, 5, "Problem Solved"), WRITERS)

        rows = slow_table.query_user("user-1", "XP")
        assert len(rows) == 1
        assert rows[0]['profile_id'] == "kid-1"

    def test_concurrent_bootstrap_creates_one_profile(self, slow_table):
        created = _run_concurrently(lambda: slow_table.ensure_profile("user-1", "2025-01-01T00:00:00"), WRITERS)

        assert created.count(True) == 1

    def test_streak_race_on_same_day_counts_once(self, slow_table, clock):
        streaks = StreakContinuity(slow_table, max_attempts=WRITERS + 1, clock=clock)

        _run_concurrently(lambda: streaks.record_study_event(OWNER, "2025-11-19"), WRITERS)

        assert len(slow_table.query_user("user-1", "STREAK")) == 1
        assert streaks.get_streak(OWNER)['current_streak'] == 1


class AlwaysConflictingTable(MemoryProgressionTable):
    """Every conditional write loses"""

    def __init__(self):
        super().__init__()
        self.write_attempts = 0

    def insert(self, item):
        if item['SK'] == "PROFILE":
            return super().insert(item)
        self.write_attempts += 1
        raise UniqueViolationError("raced")

    def replace(self, item, expected_version):
        self.write_attempts += 1
        raise VersionConflictError("raced")


class TestConflictExhausted:

    def test_gives_up_after_max_attempts(self, clock):
        table = AlwaysConflictingTable()
        store = ProgressionStore(table, max_attempts=3, clock=clock)

        with pytest.raises(ConflictExhaustedError) as exc_info:
            store.award(OWNER, 15, "Problem Solved")

        assert table.write_attempts == 3
        assert exc_info.value.operation == "award"
        assert exc_info.value.user_id == "user-1"
