"""
Adaptive practice - personalized practice sessions

Combines recent problem history (weak and strong subjects) with the
recommended difficulty tier to build a session plan. Everything here is
CPU-only; the recommender class only gathers its inputs.
"""
import math
from typing import Any, Dict, Iterable, List, Optional
import logging

from progression_service.errors import ProgressValidationError, TransientIOError
from progression_service.logic.difficulty_tracker import (
    DEFAULT_DIFFICULTY,
    difficulty_stats,
    lower_tier,
    raise_tier,
    recommended_difficulty,
)
from progression_service.logic.identity import IdentityKey

logger = logging.getLogger(__name__)

SESSION_TYPES = ("weakness", "strength", "balanced", "challenge")

XP_BY_DIFFICULTY = {
    'elementary': 9,
    'middle': 15,
    'high': 20,
    'advanced': 27,
}

DEFAULT_SUBJECTS = ["algebra", "geometry", "arithmetic", "fractions", "equations"]
CHALLENGE_SUBJECTS = ["algebra", "geometry", "calculus", "trigonometry", "statistics"]

MINUTES_PER_PROBLEM = 3
WEAK_MIN_ATTEMPTS = 2
STRONG_MIN_ATTEMPTS = 3
STRONG_RATE = 70.0
AREA_LIMIT = 3


def default_subject(index: int) -> str:
    return DEFAULT_SUBJECTS[index % len(DEFAULT_SUBJECTS)]


def validate_request(session_type: str, count: int) -> str:
    session_type = (session_type or "balanced").strip().lower()
    if session_type not in SESSION_TYPES:
        raise ProgressValidationError(
            f"Unknown session type: {session_type}", operation="get_recommended_practice_session"
        )
    if count is None or count < 1:
        raise ProgressValidationError(
            f"Problem count must be at least 1, got {count}", operation="get_recommended_practice_session"
        )
    return session_type


# ============= ANALYSIS =============

def subject_performance(history: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Success rate per subject; subjects are lower-cased, missing ones are "general" """
    stats: Dict[str, Dict[str, int]] = {}
    for row in history:
        subject = (row.get('subject') or "general").strip().lower() or "general"
        entry = stats.setdefault(subject, {'solved': 0, 'total': 0, 'hints': 0})
        entry['total'] += 1
        if row.get('solved'):
            entry['solved'] += 1
        entry['hints'] += row.get('hints_used') or 0

    return [
        {
            'subject': subject,
            'success_rate': entry['solved'] / entry['total'] * 100,
            'attempts': entry['total'],
            'average_hints': entry['hints'] / entry['total'],
        }
        for subject, entry in stats.items()
    ]


def analyze_performance(
    history: List[Dict[str, Any]],
    tracking: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Weak and strong subjects plus the recommended tier

    Args:
        history: Recent problem rows (subject, solved, hints_used)
        tracking: Difficulty tracking data, or None for defaults

    Returns:
        Dict with weak_areas, strong_areas, recommended_difficulty,
        overall_mastery and suggested_focus
    """
    performance = sorted(subject_performance(history), key=lambda s: s['success_rate'])

    weak_areas = [
        {'subject': s['subject'], 'success_rate': s['success_rate'], 'attempts': s['attempts']}
        for s in performance
        if s['attempts'] >= WEAK_MIN_ATTEMPTS and s['success_rate'] < STRONG_RATE
    ][:AREA_LIMIT]

    strong_areas = [
        {'subject': s['subject'], 'success_rate': s['success_rate'], 'attempts': s['attempts']}
        for s in sorted(performance, key=lambda s: s['success_rate'], reverse=True)
        if s['attempts'] >= STRONG_MIN_ATTEMPTS and s['success_rate'] >= STRONG_RATE
    ][:AREA_LIMIT]

    recommended = recommended_difficulty(tracking) if tracking else DEFAULT_DIFFICULTY
    overall = difficulty_stats(tracking)['overall_success_rate'] if tracking else 0

    if weak_areas:
        focus = f"{weak_areas[0]['subject']} - needs improvement ({round(weak_areas[0]['success_rate'])}% success)"
    elif strong_areas:
        focus = f"{strong_areas[0]['subject']} - ready for challenge"
    else:
        focus = "general practice"

    return {
        'weak_areas': weak_areas,
        'strong_areas': strong_areas,
        'recommended_difficulty': recommended,
        'overall_mastery': overall,
        'suggested_focus': focus,
    }


# ============= SESSION PLANS =============

def _problem(subject: str, difficulty: str, reason: str, priority: str, focus_area: Optional[str]) -> Dict[str, Any]:
    return {
        'subject': subject,
        'difficulty': difficulty,
        'reason': reason,
        'priority': priority,
        'estimated_xp': XP_BY_DIFFICULTY[difficulty],
        'focus_area': focus_area,
    }


def _pick(areas: List[Dict[str, Any]], index: int) -> Optional[Dict[str, Any]]:
    if not areas:
        return None
    return areas[index % len(areas)]


def generate_problems(analysis: Dict[str, Any], session_type: str, count: int) -> List[Dict[str, Any]]:
    """Problems for a session type; always exactly `count` of them"""
    weak = analysis['weak_areas']
    strong = analysis['strong_areas']
    recommended = analysis['recommended_difficulty']
    problems = []

    if session_type == "weakness":
        for i in range(count):
            area = _pick(weak, i)
            if area:
                problems.append(_problem(
                    area['subject'], lower_tier(recommended),
                    f"Improve {area['subject']} ({round(area['success_rate'])}% success rate)",
                    "high", "improvement"
                ))
            else:
                problems.append(_problem(default_subject(i), recommended, "Practice fundamentals", "high", "improvement"))

    elif session_type == "strength":
        difficulty = raise_tier(recommended)
        for i in range(count):
            area = _pick(strong, i)
            subject = area['subject'] if area else default_subject(i)
            reason = f"Challenge yourself in {subject}" if area else "Advance your skills"
            problems.append(_problem(subject, difficulty, reason, "medium", "mastery"))

    elif session_type == "challenge":
        difficulty = raise_tier(raise_tier(recommended))
        for i in range(count):
            subject = CHALLENGE_SUBJECTS[i % len(CHALLENGE_SUBJECTS)]
            problems.append(_problem(subject, difficulty, "Push your limits", "low", "challenge"))

    else:
        weak_count = math.ceil(count * 0.4)
        recommended_count = min(math.ceil(count * 0.4), count - weak_count)
        challenge_count = count - weak_count - recommended_count

        for i in range(weak_count):
            area = _pick(weak, i)
            subject = area['subject'] if area else default_subject(i)
            reason = f"Work on {subject}" if area else "Build foundation"
            problems.append(_problem(subject, recommended, reason, "high", "improvement"))

        for i in range(recommended_count):
            area = _pick(strong, i)
            subject = area['subject'] if area else default_subject(i + weak_count)
            problems.append(_problem(subject, recommended, "Maintain progress", "medium", "practice"))

        for i in range(challenge_count):
            problems.append(_problem(default_subject(i), raise_tier(recommended), "Stretch goal", "low", "challenge"))

    return problems


def build_session(
    key: IdentityKey,
    problems: List[Dict[str, Any]],
    session_type: str,
    level: int
) -> Dict[str, Any]:
    return {
        'user_id': key.user_id,
        'profile_id': key.profile_id,
        'session_type': session_type,
        'problems': problems,
        'estimated_duration': len(problems) * MINUTES_PER_PROBLEM,
        'total_estimated_xp': sum(p['estimated_xp'] for p in problems),
        'level': level,
    }


def default_session(key: IdentityKey, session_type: str, count: int, level: int = 1) -> Dict[str, Any]:
    """Session for learners with no history (or unreadable history)"""
    problems = [
        _problem(default_subject(i), DEFAULT_DIFFICULTY, "Recommended for beginners", "medium", None)
        for i in range(count)
    ]
    return build_session(key, problems, session_type, level)


# ============= RECOMMENDER =============

class AdaptivePracticeRecommender:
    """
    Builds practice sessions from problem history, difficulty tracking and level

    Args:
        history_provider: Anything with recent(key, limit) -> list of problem rows
        difficulty_tracker: DifficultyTracker
        progression_store: ProgressionStore (for the learner's level)
    """

    def __init__(self, history_provider, difficulty_tracker, progression_store, history_limit: int = 50):
        self.history_provider = history_provider
        self.difficulty_tracker = difficulty_tracker
        self.progression_store = progression_store
        self.history_limit = history_limit

    def _history(self, key: IdentityKey) -> Optional[List[Dict[str, Any]]]:
        """Recent problems, or None when the provider is unavailable"""
        try:
            return self.history_provider.recent(key, self.history_limit)
        except TransientIOError as e:
            logger.warning(f"Problem history unavailable for {key.describe()}: {e.message}")
            return None

    def analysis(self, key: IdentityKey) -> Dict[str, Any]:
        history = self._history(key) or []
        return analyze_performance(history, self.difficulty_tracker.get_tracking(key))

    def recommend(self, key: IdentityKey, session_type: str = "balanced", count: int = 5) -> Dict[str, Any]:
        session_type = validate_request(session_type, count)
        level = self.progression_store.get_progress(key, fallback_to_owner=False)['level']

        history = self._history(key)
        if not history:
            logger.info(f"No problem history for {key.describe()}, using default {session_type} session")
            return default_session(key, session_type, count, level)

        analysis = analyze_performance(history, self.difficulty_tracker.get_tracking(key))
        problems = generate_problems(analysis, session_type, count)

        logger.info(
            f"Generated {session_type} session for {key.describe()}: {len(problems)} problems "
            f"at {analysis['recommended_difficulty']}"
        )
        return build_session(key, problems, session_type, level)
