"""
Tests for performance analysis and practice session plans
"""
import pytest

from progression_service.errors import ProgressValidationError, TransientIOError
from progression_service.logic.adaptive_practice import (
    AdaptivePracticeRecommender,
    analyze_performance,
    default_session,
    generate_problems,
)
from progression_service.logic.difficulty_tracker import DifficultyTracker, default_tracking_data
from progression_service.logic.identity import IdentityKey
from progression_service.services.progression_store import ProgressionStore

OWNER = IdentityKey("user-1")


def rows(subject, attempts, solved, hints=0):
    return [
        {'subject': subject, 'solved': i < solved, 'hints_used': hints, 'difficulty': 'middle'}
        for i in range(attempts)
    ]


@pytest.fixture
def mixed_history():
    return rows("Geometry", 3, 1) + rows("algebra", 5, 5)


class StaticHistory:
    def __init__(self, history):
        self.history = history

    def recent(self, key, limit):
        return self.history[:limit]


class BrokenHistory:
    def recent(self, key, limit):
        raise TransientIOError("history store unreachable", operation="recent")


class TestAnalyzePerformance:

    def test_weak_and_strong_areas(self, mixed_history):
        analysis = analyze_performance(mixed_history)

        assert [a['subject'] for a in analysis['weak_areas']] == ["geometry"]
        assert [a['subject'] for a in analysis['strong_areas']] == ["algebra"]
        assert analysis['weak_areas'][0]['success_rate'] == pytest.approx(33.33, abs=0.01)
        assert analysis['suggested_focus'] == "geometry - needs improvement (33% success)"

    def test_thresholds(self):
        history = rows("fractions", 1, 0) + rows("decimals", 2, 2) + rows("ratios", 2, 1)

        analysis = analyze_performance(history)

        # one attempt is not enough to be weak, two are not enough to be strong
        assert [a['subject'] for a in analysis['weak_areas']] == ["ratios"]
        assert analysis['strong_areas'] == []

    def test_top_three_sorted(self):
        history = (rows("a", 4, 0) + rows("b", 4, 1) + rows("c", 4, 2) + rows("d", 2, 0)
                   + rows("e", 3, 3) + rows("f", 4, 3) + rows("g", 10, 8) + rows("h", 5, 4))

        analysis = analyze_performance(history)

        assert [a['success_rate'] for a in analysis['weak_areas']] == [0.0, 0.0, 25.0]
        assert [a['subject'] for a in analysis['strong_areas']] == ["e", "g", "h"]

    def test_missing_subject_is_general(self):
        analysis = analyze_performance([{'solved': False}, {'subject': None, 'solved': False}])
        assert analysis['weak_areas'][0]['subject'] == "general"

    def test_recommended_tier_comes_from_tracking(self):
        tracking = default_tracking_data()
        tracking['performances']['high'].update(attempts=10, successes=7)

        assert analyze_performance([], tracking)['recommended_difficulty'] == "high"
        assert analyze_performance([])['recommended_difficulty'] == "middle"


class TestGenerateProblems:

    @pytest.fixture
    def analysis(self, mixed_history):
        return analyze_performance(mixed_history)

    def test_weakness_session(self, analysis):
        problems = generate_problems(analysis, "weakness", 4)

        assert len(problems) == 4
        assert {p['subject'] for p in problems} == {"geometry"}
        assert {p['difficulty'] for p in problems} == {"elementary"}
        assert {p['estimated_xp'] for p in problems} == {9}

    def test_weakness_without_weak_areas_uses_defaults(self):
        problems = generate_problems(analyze_performance([]), "weakness", 2)

        assert [p['subject'] for p in problems] == ["algebra", "geometry"]
        assert {p['difficulty'] for p in problems} == {"middle"}

    def test_strength_session(self, analysis):
        problems = generate_problems(analysis, "strength", 3)

        assert {p['subject'] for p in problems} == {"algebra"}
        assert {p['difficulty'] for p in problems} == {"high"}
        assert {p['estimated_xp'] for p in problems} == {20}

    def test_challenge_session(self, analysis):
        problems = generate_problems(analysis, "challenge", 6)

        assert [p['subject'] for p in problems] == [
            "algebra", "geometry", "calculus", "trigonometry", "statistics", "algebra"
        ]
        assert {p['difficulty'] for p in problems} == {"advanced"}

    def test_balanced_session_composition(self, analysis):
        problems = generate_problems(analysis, "balanced", 5)

        assert [p['focus_area'] for p in problems] == [
            "improvement", "improvement", "practice", "practice", "challenge"
        ]
        assert [p['subject'] for p in problems[:2]] == ["geometry", "geometry"]
        assert [p['subject'] for p in problems[2:4]] == ["algebra", "algebra"]
        assert [p['difficulty'] for p in problems] == ["middle"] * 4 + ["high"]

    @pytest.mark.parametrize("session_type", ["weakness", "strength", "balanced", "challenge"])
    @pytest.mark.parametrize("count", [1, 2, 3, 7, 20])
    def test_always_count_problems(self, analysis, session_type, count):
        assert len(generate_problems(analysis, session_type, count)) == count


class TestRecommender:

    @pytest.fixture
    def recommender_for(self, memory_table, clock):
        def build(history_provider):
            return AdaptivePracticeRecommender(
                history_provider,
                DifficultyTracker(memory_table, clock=clock),
                ProgressionStore(memory_table, clock=clock)
            )
        return build

    def test_empty_history_gives_default_session(self, recommender_for):
        session = recommender_for(StaticHistory([])).recommend(OWNER, "weakness", 4)

        assert len(session['problems']) == 4
        assert {p['difficulty'] for p in session['problems']} == {"middle"}
        assert session['total_estimated_xp'] == 60
        assert session['estimated_duration'] == 12
        assert session['level'] == 1

    def test_history_failure_gives_default_session(self, recommender_for):
        session = recommender_for(BrokenHistory()).recommend(OWNER, "balanced", 3)

        assert len(session['problems']) == 3
        assert {p['difficulty'] for p in session['problems']} == {"middle"}

    def test_session_totals_and_level(self, recommender_for, memory_table, clock, mixed_history):
        ProgressionStore(memory_table, clock=clock).award(OWNER, 450, "Referral Bonus")

        session = recommender_for(StaticHistory(mixed_history)).recommend(OWNER, "strength", 3)

        assert session['level'] == 3
        assert session['total_estimated_xp'] == sum(p['estimated_xp'] for p in session['problems']) == 60
        assert session['session_type'] == "strength"

    @pytest.mark.parametrize("session_type,count", [("marathon", 5), ("balanced", 0), ("balanced", -2)])
    def test_invalid_requests(self, recommender_for, session_type, count):
        with pytest.raises(ProgressValidationError):
            recommender_for(StaticHistory([])).recommend(OWNER, session_type, count)

    def test_default_session_helper(self):
        session = default_session(OWNER, "balanced", 2)
        assert [p['subject'] for p in session['problems']] == ["algebra", "geometry"]
        assert session['total_estimated_xp'] == 30
