"""
Ledger service - async entry points for every progression operation

Blocking storage work runs in a worker thread and is bounded by a timeout.
A timeout never leaves a partial row (rows are written whole) but the delta
may not have been applied; callers decide whether to retry.
"""
import asyncio
from typing import Any, Callable, Dict, Optional
import logging

from progression_service.config import get_settings
from progression_service.dynamo import get_progression_table
from progression_service.errors import LedgerTimeoutError, NotConfiguredError, ProgressValidationError
from progression_service.logic import gamification, level_curve
from progression_service.logic.adaptive_practice import AdaptivePracticeRecommender, validate_request
from progression_service.logic.difficulty_tracker import DIFFICULTY_KIND, DifficultyTracker, difficulty_stats
from progression_service.logic.identity import IdentityKey, resolve_identity
from progression_service.logic.streak_service import STREAK_KIND, StreakContinuity, get_user_day, parse_day
from progression_service.services.daily_problems import DAILY_KIND, DailyProblemLedger
from progression_service.services.ledger_repository import WriteGuard, check_write_allowed, utc_now, write_guard_scope
from progression_service.services.problem_history import PROBLEM_KIND, TableProblemHistory
from progression_service.services.progression_store import XP_KIND, ProgressionStore, zero_state

settings = get_settings()
logger = logging.getLogger(__name__)

ERASED_KINDS = [XP_KIND, STREAK_KIND, DIFFICULTY_KIND, PROBLEM_KIND, DAILY_KIND]


def _consume_result(future):
    # Results of abandoned work are never awaited
    if not future.cancelled():
        future.exception()


class LedgerService:
    """Facade over the store, streaks, difficulty tracking and recommender"""

    def __init__(
        self,
        table,
        history_provider=None,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable = utc_now
    ):
        self.table = table
        self.clock = clock
        self.timeout_seconds = timeout_seconds or settings.LEDGER_TIMEOUT_SECONDS

        self.store = ProgressionStore(table, max_attempts=max_attempts, clock=clock)
        self.streaks = StreakContinuity(table, max_attempts=max_attempts, clock=clock)
        self.difficulty = DifficultyTracker(table, max_attempts=max_attempts, clock=clock)
        self.problem_history = TableProblemHistory(table, clock=clock)
        self.daily_problems = DailyProblemLedger(table, self.store)
        self.recommender = AdaptivePracticeRecommender(
            history_provider or self.problem_history,
            self.difficulty,
            self.store,
            history_limit=settings.PROBLEM_HISTORY_LIMIT
        )

        if table is None:
            logger.warning("LedgerService running without persistence: reads return zero state, writes fail")
        logger.info(f"LedgerService initialized: timeout={self.timeout_seconds}s")

    @property
    def configured(self) -> bool:
        return self.table is not None

    async def _run(self, operation: str, key: Optional[IdentityKey], func, *args, timeout: Optional[float] = None, **kwargs):
        """
        Run blocking work in a thread, bounded by the timeout

        When the timeout passes before the work started writing, later writes
        are refused and LedgerTimeoutError is raised. When a write already
        started, the call waits for the thread and returns its real result.
        """
        limit = timeout if timeout is not None else self.timeout_seconds
        guard = WriteGuard()
        with write_guard_scope(guard):
            work = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
        work.add_done_callback(_consume_result)

        try:
            return await asyncio.wait_for(asyncio.shield(work), timeout=limit)
        except asyncio.TimeoutError as e:
            who = key.describe() if key else "-"
            if guard.cancel():
                logger.warning(f"{operation} for {who} passed {limit}s while writing, waiting for the write")
                return await work
            logger.error(f"{operation} for {who} timed out after {limit}s")
            raise LedgerTimeoutError(
                f"{operation} timed out after {limit}s",
                operation=operation,
                user_id=key.user_id if key else None,
                profile_id=key.profile_id if key else None
            ) from e

    # ============= XP =============

    async def get_progress(self, user_id: str, profile_id: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        XP state for an identity

        Returns zero state for a learner with no row and when persistence is
        not configured. Storage failures propagate as TransientIOError.
        """
        key = resolve_identity(user_id, profile_id)
        if not self.configured:
            return zero_state()
        return await self._run("get_progress", key, self.store.get_progress, key, timeout=timeout)

    async def award_problem_xp(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        difficulty: Optional[str] = "medium",
        hints_used: int = 0,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        xp = gamification.calculate_problem_xp(difficulty, hints_used)
        reason = f"Problem Solved ({difficulty or 'medium'})"
        return await self._run(
            "award_problem_xp", key, self.store.award, key, xp, reason, "award_problem_xp", timeout=timeout
        )

    async def award_login_bonus(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        is_first_login: bool = False,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        xp, reason = gamification.login_bonus_xp(is_first_login)
        return await self._run(
            "award_login_bonus", key, self.store.award, key, xp, reason, "award_login_bonus", timeout=timeout
        )

    async def check_and_award_daily_login(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        today: Optional[Any] = None,
        timezone: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Login bonus once per day; first ever login gets the first-login bonus"""
        key = resolve_identity(user_id, profile_id)
        day = (parse_day(today) or get_user_day(timezone, self.clock())).isoformat()
        return await self._run(
            "check_and_award_daily_login", key, self.store.award_daily_login, key, day, timeout=timeout
        )

    async def award_referral_rewards(self, referee_id: str, referrer_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Referee and referrer each get their referral bonus (owner identities)"""
        referee = resolve_identity(referee_id)
        referrer = resolve_identity(referrer_id)
        if referee.user_id == referrer.user_id:
            raise ProgressValidationError(
                "A user cannot refer themselves", operation="award_referral_rewards", user_id=referee.user_id
            )

        referee_outcome = await self._run(
            "award_referral_rewards", referee, self.store.award,
            referee, settings.REFEREE_REWARD_XP, gamification.REFERRAL_REASON, "award_referral_rewards",
            timeout=timeout
        )
        referrer_outcome = await self._run(
            "award_referral_rewards", referrer, self.store.award,
            referrer, settings.REFERRER_REWARD_XP, gamification.REFERRAL_REASON, "award_referral_rewards",
            timeout=timeout
        )
        return {'referee': referee_outcome, 'referrer': referrer_outcome}

    def level_progress(self, total_xp: int) -> Dict[str, int]:
        return level_curve.level_progress(total_xp)

    # ============= STREAKS =============

    async def record_study_event(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        study_date: Optional[Any] = None,
        timezone: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        return await self._run(
            "record_study_event", key, self.streaks.record_study_event, key, study_date, timezone, timeout=timeout
        )

    async def get_streak(self, user_id: str, profile_id: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        return await self._run("get_streak", key, self.streaks.get_streak, key, timeout=timeout)

    # ============= ADAPTIVE PRACTICE =============

    async def get_recommended_practice_session(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        session_type: str = "balanced",
        count: int = 5,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        validate_request(session_type, count)
        return await self._run(
            "get_recommended_practice_session", key, self.recommender.recommend, key, session_type, count,
            timeout=timeout
        )

    async def get_performance_analysis(self, user_id: str, profile_id: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)

        def analyze():
            analysis = self.recommender.analysis(key)
            tracking = self.difficulty.get_tracking(key)
            analysis['difficulty_stats'] = difficulty_stats(tracking)
            analysis['tiers'] = self.difficulty.summaries(key)
            return analysis

        return await self._run("get_performance_analysis", key, analyze, timeout=timeout)

    async def record_problem_attempt(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        subject: Optional[str] = None,
        difficulty: str = "middle",
        solved: bool = False,
        hints_used: int = 0,
        tries: int = 1,
        time_spent_minutes: float = 0.0,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Append a problem history row and fold the attempt into difficulty tracking"""
        key = resolve_identity(user_id, profile_id)

        def record():
            result = self.difficulty.record_attempt(
                key, difficulty, solved, hints_used=hints_used, tries=tries, time_spent_minutes=time_spent_minutes
            )
            problem = self.problem_history.record(
                key, subject, result['difficulty'], solved,
                hints_used=hints_used, tries=tries, time_spent_minutes=time_spent_minutes
            )
            return dict(result, problem_id=problem['id'], subject=problem['subject'])

        return await self._run("record_problem_attempt", key, record, timeout=timeout)

    async def set_auto_adjust(self, user_id: str, profile_id: Optional[str] = None, enabled: bool = True, timeout: Optional[float] = None) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        return await self._run("set_auto_adjust", key, self.difficulty.set_auto_adjust, key, enabled, timeout=timeout)

    # ============= DAILY PROBLEMS =============

    async def complete_daily_problem(
        self,
        user_id: str,
        profile_id: Optional[str] = None,
        problem_date: Optional[Any] = None,
        problem_text: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        key = resolve_identity(user_id, profile_id)
        day = parse_day(problem_date) or get_user_day(None, self.clock())
        return await self._run(
            "complete_daily_problem", key, self.daily_problems.complete, key, day, problem_text, timeout=timeout
        )

    async def count_daily_completions(self, user_id: str, profile_id: Optional[str] = None, timeout: Optional[float] = None) -> int:
        key = resolve_identity(user_id, profile_id)
        return await self._run("count_daily_completions", key, self.daily_problems.count_completions, key, timeout=timeout)

    # ============= ERASURE =============

    async def delete_progress(self, user_id: str, timeout: Optional[float] = None) -> int:
        """Remove every progression row of the user across all profiles"""
        key = resolve_identity(user_id)
        if not self.configured:
            raise NotConfiguredError(
                "Progression persistence is not configured", operation="delete_progress", user_id=key.user_id
            )
        def delete():
            check_write_allowed("delete_progress", key)
            return self.table.delete_user(key.user_id, ERASED_KINDS)

        deleted = await self._run("delete_progress", key, delete, timeout=timeout)
        logger.info(f"Deleted {deleted} progression rows for user {user_id}")
        return deleted

    async def health(self) -> Dict[str, Any]:
        if not self.configured:
            return {"status": "healthy", "storage": "not_configured"}
        try:
            description = await self._run("health", None, self.table.describe, timeout=5.0)
            return {"status": "healthy", "storage": "connected", "table": description.get('TableName')}
        except Exception as e:
            logger.warning(f"Health check storage connection failed: {str(e)}")
            # Stay healthy for load balancer checks while storage recovers
            return {"status": "healthy", "storage": "unavailable", "warning": str(e)[:100]}


# Singleton instance
_service_instance: Optional[LedgerService] = None


def get_ledger_service() -> LedgerService:
    """Get or create the ledger service singleton"""
    global _service_instance
    if _service_instance is None:
        _service_instance = LedgerService(get_progression_table())
    return _service_instance
