"""
Difficulty performance tracking

Per identity, counters per difficulty tier feed a recommended tier: the tier
whose success rate sits closest to the target band (not trivially easy, not
persistently failing). Sparse data keeps the default tier.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from progression_service.config import get_settings
from progression_service.errors import ProgressValidationError
from progression_service.logic.identity import IdentityKey
from progression_service.services.ledger_repository import LedgerRepository, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)

DIFFICULTY_KIND = "DIFFICULTY"

DIFFICULTY_ORDER = ["elementary", "middle", "high", "advanced"]
DEFAULT_DIFFICULTY = "middle"

# "middle school" and friends are accepted for the four tiers
TIER_ALIASES = {
    'elementary school': 'elementary',
    'middle school': 'middle',
    'high school': 'high',
}


# ============= TIERS =============

def normalize_tier(value: Optional[str], strict: bool = True) -> Optional[str]:
    """
    Canonical tier name

    Raises:
        ProgressValidationError: Unknown tier and strict=True
    """
    if value is None:
        if strict:
            raise ProgressValidationError("difficulty is required", operation="normalize_tier")
        return None
    tier = TIER_ALIASES.get(value.strip().lower(), value.strip().lower())
    if tier not in DIFFICULTY_ORDER:
        if strict:
            raise ProgressValidationError(f"Unknown difficulty tier: {value}", operation="normalize_tier")
        return None
    return tier


def shift_tier(tier: str, steps: int) -> str:
    """Move up (positive) or down (negative), clamped to the tier range"""
    index = DIFFICULTY_ORDER.index(tier) + steps
    return DIFFICULTY_ORDER[max(0, min(index, len(DIFFICULTY_ORDER) - 1))]


def raise_tier(tier: str) -> str:
    return shift_tier(tier, 1)


def lower_tier(tier: str) -> str:
    return shift_tier(tier, -1)


# ============= PERFORMANCE COUNTERS =============

def default_performance() -> Dict[str, Any]:
    return {
        'attempts': 0,
        'successes': 0,
        'hints_used': 0,
        'tries': 0,
        'time_spent_minutes': 0.0,
        'timed_attempts': 0,
        'last_attempted': None,
    }


def default_tracking_data() -> Dict[str, Any]:
    return {
        'performances': {tier: default_performance() for tier in DIFFICULTY_ORDER},
        'recommended_difficulty': DEFAULT_DIFFICULTY,
        'auto_adjust_enabled': True,
    }


def tracking_from_row(row: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Tracking data from a stored row, filling any missing tier"""
    data = default_tracking_data()
    if not row:
        return data
    stored = row.get('performances') or {}
    for tier in DIFFICULTY_ORDER:
        data['performances'][tier].update(stored.get(tier) or {})
    data['recommended_difficulty'] = row.get('recommended_difficulty') or DEFAULT_DIFFICULTY
    if row.get('auto_adjust_enabled') is not None:
        data['auto_adjust_enabled'] = bool(row['auto_adjust_enabled'])
    return data


def success_rate(perf: Dict[str, Any]) -> float:
    attempts = perf.get('attempts', 0)
    if attempts <= 0:
        return 0.0
    return perf.get('successes', 0) / attempts * 100


def mastery_score(perf: Dict[str, Any]) -> int:
    """
    Mastery for one tier (0-100)

    success rate 60%, hint usage 20%, time 15%, tries per problem 5%.
    An untouched tier is neutral (50).
    """
    attempts = perf.get('attempts', 0)
    if attempts <= 0:
        return 50

    avg_hints = perf.get('hints_used', 0) / attempts
    avg_tries = perf.get('tries', attempts) / attempts
    timed = perf.get('timed_attempts', 0)

    hint_score = max(0.0, 100 - avg_hints * 15)
    time_score = max(0.0, 100 - (perf.get('time_spent_minutes', 0) / timed) * 5) if timed else 50.0
    try_score = max(0.0, 100 - avg_tries * 10)

    score = success_rate(perf) * 0.6 + hint_score * 0.2 + time_score * 0.15 + try_score * 0.05
    return int(round(min(100.0, max(0.0, score))))


def tier_summary(tier: str, perf: Dict[str, Any]) -> Dict[str, Any]:
    attempts = perf.get('attempts', 0)
    return {
        'difficulty': tier,
        'attempts': attempts,
        'successes': perf.get('successes', 0),
        'success_rate': round(success_rate(perf), 1),
        'average_hints': round(perf.get('hints_used', 0) / attempts, 1) if attempts else 0.0,
        'mastery_score': mastery_score(perf),
        'last_attempted': perf.get('last_attempted'),
    }


def update_performance(
    data: Dict[str, Any],
    difficulty: str,
    solved: bool,
    hints_used: int = 0,
    tries: int = 1,
    time_spent_minutes: float = 0.0,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Fold one attempt into tracking data; returns new data (input untouched)"""
    tier = normalize_tier(difficulty)
    if hints_used < 0 or tries < 1 or time_spent_minutes < 0:
        raise ProgressValidationError(
            "hints_used and time_spent_minutes must be >= 0, tries >= 1",
            operation="update_performance"
        )

    performances = {name: dict(perf) for name, perf in data['performances'].items()}
    perf = performances[tier]
    perf['attempts'] += 1
    perf['successes'] += 1 if solved else 0
    perf['hints_used'] += hints_used
    perf['tries'] = perf.get('tries', perf['attempts'] - 1) + tries
    if time_spent_minutes > 0:
        perf['time_spent_minutes'] = perf.get('time_spent_minutes', 0) + time_spent_minutes
        perf['timed_attempts'] = perf.get('timed_attempts', 0) + 1
    perf['last_attempted'] = (now or utc_now()).isoformat()

    updated = dict(data, performances=performances)
    updated['recommended_difficulty'] = recommended_difficulty(updated)
    return updated


# ============= RECOMMENDATION =============

def _band_distance(rate: float, low: float, high: float) -> float:
    if rate < low:
        return low - rate
    if rate > high:
        return rate - high
    return 0.0


def recommended_difficulty(data: Optional[Dict[str, Any]]) -> str:
    """
    Tier whose success rate is closest to the target band

    - Auto-adjust off: stored recommendation
    - No tier with enough attempts: "middle"
    - Ties prefer the harder tier
    - Best tier above the band and the hardest one tried: one step up
    - Best tier below the band and the easiest one tried: one step down
    """
    if not data:
        return DEFAULT_DIFFICULTY
    if not data.get('auto_adjust_enabled', True):
        return data.get('recommended_difficulty') or DEFAULT_DIFFICULTY

    low = settings.DIFFICULTY_TARGET_LOW
    high = settings.DIFFICULTY_TARGET_HIGH

    eligible = [
        (tier, success_rate(data['performances'][tier]))
        for tier in DIFFICULTY_ORDER
        if data['performances'].get(tier, {}).get('attempts', 0) >= settings.DIFFICULTY_MIN_ATTEMPTS
    ]
    if not eligible:
        return DEFAULT_DIFFICULTY

    # Iterating hardest first makes min() keep the harder tier on ties
    best_tier, best_rate = min(reversed(eligible), key=lambda item: _band_distance(item[1], low, high))

    if best_rate > high and best_tier == eligible[-1][0]:
        return raise_tier(best_tier)
    if best_rate < low and best_tier == eligible[0][0]:
        return lower_tier(best_tier)
    return best_tier


def difficulty_stats(data: Dict[str, Any]) -> Dict[str, Any]:
    """Totals, overall success rate, most practiced tier and best tier"""
    total_attempts = 0
    total_solved = 0
    most_practiced = DEFAULT_DIFFICULTY
    most_attempts = 0
    best_performance = DEFAULT_DIFFICULTY
    best_rate = -1.0

    for tier in DIFFICULTY_ORDER:
        perf = data['performances'][tier]
        total_attempts += perf['attempts']
        total_solved += perf['successes']

        if perf['attempts'] > most_attempts:
            most_attempts = perf['attempts']
            most_practiced = tier

        if perf['attempts'] >= settings.DIFFICULTY_MIN_ATTEMPTS and success_rate(perf) > best_rate:
            best_rate = success_rate(perf)
            best_performance = tier

    return {
        'total_attempts': total_attempts,
        'total_solved': total_solved,
        'overall_success_rate': round(total_solved / total_attempts * 100) if total_attempts else 0,
        'most_practiced': most_practiced,
        'best_performance': best_performance,
    }


# ============= PERSISTENCE =============

class DifficultyTracker:
    """Difficulty tracking rows, one per identity"""

    def __init__(self, table, max_attempts: Optional[int] = None, clock=utc_now):
        self.repository = LedgerRepository(table, DIFFICULTY_KIND, max_attempts=max_attempts, clock=clock)
        self.clock = clock

    def get_tracking(self, key: IdentityKey) -> Dict[str, Any]:
        """Tracking data for an identity; defaults when nothing is stored (no owner fallback)"""
        return tracking_from_row(self.repository.get(key, fallback_to_owner=False))

    def recommended_difficulty(self, key: IdentityKey) -> str:
        return recommended_difficulty(self.get_tracking(key))

    def summaries(self, key: IdentityKey) -> List[Dict[str, Any]]:
        data = self.get_tracking(key)
        return [tier_summary(tier, data['performances'][tier]) for tier in DIFFICULTY_ORDER]

    def record_attempt(
        self,
        key: IdentityKey,
        difficulty: str,
        solved: bool,
        hints_used: int = 0,
        tries: int = 1,
        time_spent_minutes: float = 0.0
    ) -> Dict[str, Any]:
        """
        Fold one problem attempt into the identity's tracking row

        Returns:
            Dict with difficulty, recommended_difficulty and the tier summary
        """
        tier = normalize_tier(difficulty)

        def compute(current):
            data = update_performance(
                tracking_from_row(current), tier, solved,
                hints_used=hints_used, tries=tries,
                time_spent_minutes=time_spent_minutes, now=self.clock()
            )
            fields = {
                'performances': data['performances'],
                'recommended_difficulty': data['recommended_difficulty'],
                'auto_adjust_enabled': data['auto_adjust_enabled'],
            }
            outcome = {
                'difficulty': tier,
                'recommended_difficulty': data['recommended_difficulty'],
                'performance': tier_summary(tier, data['performances'][tier]),
            }
            return fields, outcome

        result = self.repository.mutate(key, compute, "record_problem_attempt")
        logger.info(
            f"Recorded {tier} attempt (solved={solved}) for {key.describe()}, "
            f"recommended tier now {result['recommended_difficulty']}"
        )
        return result

    def set_auto_adjust(self, key: IdentityKey, enabled: bool) -> Dict[str, Any]:
        def compute(current):
            data = tracking_from_row(current)
            data['auto_adjust_enabled'] = enabled
            return data, {'auto_adjust_enabled': enabled, 'recommended_difficulty': recommended_difficulty(data)}

        return self.repository.mutate(key, compute, "set_auto_adjust")
