"""
Tests for the async ledger service
"""
import asyncio
import threading
import time

import pytest

from conftest import SlowMemoryTable

from progression_service.errors import (
    LedgerTimeoutError,
    NotConfiguredError,
    ProgressValidationError,
)
from progression_service.logic.identity import IdentityKey
from progression_service.memory_table import MemoryProgressionTable
from progression_service.services.ledger_service import LedgerService


@pytest.fixture
def service(table, clock):
    return LedgerService(table, clock=clock)


class BlockingTable(MemoryProgressionTable):
    """Reads block until released so timeouts can be exercised"""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def query_user(self, user_id, kind):
        self.release.wait(timeout=5)
        return super().query_user(user_id, kind)


class SlowXPInsertTable(MemoryProgressionTable):
    """XP inserts take longer than the caller is willing to wait"""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def insert(self, item):
        if item['SK'].startswith("XP#"):
            time.sleep(self.delay)
        return super().insert(item)


class TestXP:

    @pytest.mark.asyncio
    async def test_get_progress_zero_state(self, service):
        progress = await service.get_progress("user-1")

        assert progress == {
            'total_xp': 0, 'level': 1, 'xp_to_next_level': 100, 'xp_history': [], 'inherited_from_owner': False
        }

    @pytest.mark.asyncio
    async def test_award_problem_xp(self, service):
        outcome = await service.award_problem_xp("user-1", None, "hard", 1)

        assert outcome['xp_gained'] == 21
        progress = await service.get_progress("user-1")
        assert progress['total_xp'] == 21
        assert progress['xp_history'][0]['reason'] == "Problem Solved (hard)"

    @pytest.mark.asyncio
    async def test_medium_awards_level_up_on_seventh_call(self, service):
        leveled = []
        for _ in range(8):
            outcome = await service.award_problem_xp("user-1", "null", "medium", 0)
            leveled.append(outcome['leveled_up'])

        assert leveled == [False] * 6 + [True, False]

    @pytest.mark.asyncio
    async def test_login_bonus(self, service):
        first = await service.award_login_bonus("user-1", is_first_login=True)
        daily = await service.award_login_bonus("user-1", is_first_login=False)

        assert first['xp_gained'] == 60
        assert daily['xp_gained'] == 10

    @pytest.mark.asyncio
    async def test_check_and_award_daily_login(self, service, clock):
        first = await service.check_and_award_daily_login("user-1", "kid-1")
        repeat = await service.check_and_award_daily_login("user-1", "kid-1")
        clock.advance(days=1)
        tomorrow = await service.check_and_award_daily_login("user-1", "kid-1")

        assert (first['xp_gained'], repeat['xp_gained'], tomorrow['xp_gained']) == (60, 0, 10)

    @pytest.mark.asyncio
    async def test_referral_rewards(self, service):
        result = await service.award_referral_rewards("new-user", "old-user")

        assert result['referee']['xp_gained'] == 100
        assert result['referrer']['xp_gained'] == 200
        progress = await service.get_progress("old-user")
        assert progress['xp_history'][0]['reason'] == "Referral Bonus"

    @pytest.mark.asyncio
    async def test_self_referral_rejected(self, service):
        with pytest.raises(ProgressValidationError):
            await service.award_referral_rewards("user-1", "user-1")

    @pytest.mark.asyncio
    async def test_blank_user_rejected(self, service):
        with pytest.raises(ProgressValidationError):
            await service.award_problem_xp("  ", None, "medium", 0)


class TestStreaksAndPractice:

    @pytest.mark.asyncio
    async def test_record_study_event(self, service):
        await service.record_study_event("user-1", None, "2025-11-18")
        result = await service.record_study_event("user-1", None, "2025-11-19")

        assert result['current_streak'] == 2
        assert (await service.get_streak("user-1"))['longest_streak'] == 2

    @pytest.mark.asyncio
    async def test_empty_history_session(self, service):
        session = await service.get_recommended_practice_session("user-1", None, "balanced", 5)

        assert len(session['problems']) == 5
        assert {p['difficulty'] for p in session['problems']} == {"middle"}

    @pytest.mark.asyncio
    async def test_sub_profile_session_uses_its_own_level(self, service):
        service.store.award(IdentityKey("user-1"), 450, "Problem Solved")

        owner = await service.get_recommended_practice_session("user-1", None, "balanced", 3)
        kid = await service.get_recommended_practice_session("user-1", "kid-1", "balanced", 3)
        kid_progress = await service.get_progress("user-1", "kid-1")

        assert owner['level'] == 3
        assert kid['level'] == 1
        assert kid_progress['total_xp'] == 450
        assert kid_progress['inherited_from_owner'] is True

    @pytest.mark.asyncio
    async def test_recorded_attempts_drive_recommendations(self, service):
        for _ in range(3):
            await service.record_problem_attempt("user-1", None, "Geometry", "middle", solved=False)
        for _ in range(5):
            await service.record_problem_attempt("user-1", None, "algebra", "middle", solved=True)

        analysis = await service.get_performance_analysis("user-1")
        session = await service.get_recommended_practice_session("user-1", None, "weakness", 3)

        assert [a['subject'] for a in analysis['weak_areas']] == ["geometry"]
        assert [a['subject'] for a in analysis['strong_areas']] == ["algebra"]
        assert analysis['difficulty_stats']['total_attempts'] == 8
        assert {p['subject'] for p in session['problems']} == {"geometry"}

    @pytest.mark.asyncio
    async def test_invalid_session_count(self, service):
        with pytest.raises(ProgressValidationError):
            await service.get_recommended_practice_session("user-1", None, "balanced", 0)


class TestDailyProblems:

    @pytest.mark.asyncio
    async def test_first_completion_awards_once(self, service):
        first = await service.complete_daily_problem("user-1", None, "2025-11-19", "2x + 3 = 7")
        repeat = await service.complete_daily_problem("user-1", None, "2025-11-19", "2x + 3 = 7")
        other_day = await service.complete_daily_problem("user-1", None, "2025-11-20")

        assert first['xp_gained'] == 15
        assert first['already_completed'] is False
        assert repeat == {'date': '2025-11-19', 'already_completed': True, 'xp_gained': 0}
        assert other_day['xp_gained'] == 15
        assert await service.count_daily_completions("user-1") == 2
        assert await service.count_daily_completions("user-1", "kid-1") == 0

    @pytest.mark.asyncio
    async def test_profile_named_self_is_counted_separately(self, service):
        await service.complete_daily_problem("user-1", "SELF", "2025-11-19")

        assert await service.count_daily_completions("user-1") == 0
        assert await service.count_daily_completions("user-1", "SELF") == 1


class TestDeleteProgress:

    @pytest.mark.asyncio
    async def test_delete_removes_all_profiles(self, service):
        await service.award_problem_xp("user-1", None, "medium", 0)
        await service.award_problem_xp("user-1", "kid-1", "medium", 0)
        await service.record_study_event("user-1", "kid-1", "2025-11-19")
        await service.award_problem_xp("user-2", None, "medium", 0)

        deleted = await service.delete_progress("user-1")

        assert deleted == 3
        assert (await service.get_progress("user-1", "kid-1"))['total_xp'] == 0
        assert (await service.get_progress("user-2"))['total_xp'] == 15


class TestNotConfigured:

    @pytest.mark.asyncio
    async def test_reads_zero_writes_fail(self):
        service = LedgerService(None)

        assert (await service.get_progress("user-1"))['total_xp'] == 0
        assert (await service.get_streak("user-1"))['current_streak'] == 0
        assert len((await service.get_recommended_practice_session("user-1", None, "balanced", 3))['problems']) == 3
        with pytest.raises(NotConfiguredError):
            await service.award_problem_xp("user-1", None, "medium", 0)
        with pytest.raises(NotConfiguredError):
            await service.delete_progress("user-1")
        assert (await service.health())['storage'] == "not_configured"


class TestTimeouts:

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self, clock):
        table = BlockingTable()
        service = LedgerService(table, clock=clock)

        with pytest.raises(LedgerTimeoutError) as exc_info:
            await service.get_progress("user-1", timeout=0.05)
        table.release.set()

        assert exc_info.value.operation == "get_progress"
        assert exc_info.value.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_timed_out_award_writes_nothing(self, clock):
        table = SlowMemoryTable(delay=0.2)
        service = LedgerService(table, clock=clock)

        with pytest.raises(LedgerTimeoutError) as exc_info:
            await service.award_problem_xp("user-1", None, "medium", 0, timeout=0.05)
        await asyncio.sleep(0.4)

        assert exc_info.value.operation == "award_problem_xp"
        assert table.query_user("user-1", "XP") == []
        assert (await service.get_progress("user-1", timeout=2))['total_xp'] == 0

    @pytest.mark.asyncio
    async def test_write_in_flight_reports_its_result(self, clock):
        table = SlowXPInsertTable(delay=0.2)
        service = LedgerService(table, clock=clock)

        outcome = await service.award_problem_xp("user-1", None, "medium", 0, timeout=0.05)

        assert outcome['new_total'] == 15
        assert (await service.get_progress("user-1"))['total_xp'] == 15
