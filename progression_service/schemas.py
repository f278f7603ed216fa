"""
Pydantic schemas for progression-service

All schemas use Pydantic v2 syntax with ConfigDict. API fields are camelCase;
the ledger itself works with snake_case dicts.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# ============= ENUMS AND CONSTANTS =============

VALID_DIFFICULTY_TIERS = ["elementary", "middle", "high", "advanced"]

VALID_SESSION_TYPES = ["weakness", "strength", "balanced", "challenge"]


def _validate_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Invalid timezone '{v}'. Must be an IANA timezone (e.g., America/Sao_Paulo)")
    return v


# ============= XP SCHEMAS =============

class XPHistoryEntry(BaseModel):
    """One append-only XP history entry"""
    date: str = Field(..., description="Calendar date (YYYY-MM-DD)")
    xpDelta: int = Field(..., ge=0, description="XP added")
    reason: str = Field(..., description="Why the XP was awarded")
    timestamp: int = Field(..., description="Epoch milliseconds")


class LevelProgress(BaseModel):
    """Progress within the current level"""
    currentLevel: int = Field(..., ge=1)
    xpInLevel: int = Field(..., ge=0)
    xpNeededForNext: int = Field(..., ge=0)
    levelSpan: int = Field(..., ge=1)


class ProgressResponse(BaseModel):
    """XP state for one identity (zero state when nothing is stored)"""
    userId: str
    profileId: Optional[str] = None
    totalXp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    xpToNextLevel: int = Field(default=100, ge=0)
    xpHistory: List[XPHistoryEntry] = Field(default_factory=list)
    levelProgress: LevelProgress
    inheritedFromOwner: bool = Field(default=False, description="Sub-profile without its own record, showing the owner's")

    @classmethod
    def from_ledger(cls, user_id: str, profile_id: Optional[str], progress: Dict[str, Any], level_progress: Dict[str, int]):
        return cls(
            userId=user_id,
            profileId=profile_id,
            totalXp=progress['total_xp'],
            level=progress['level'],
            xpToNextLevel=progress['xp_to_next_level'],
            xpHistory=[
                XPHistoryEntry(
                    date=entry['date'],
                    xpDelta=entry['xp_delta'],
                    reason=entry['reason'],
                    timestamp=entry['timestamp']
                )
                for entry in progress['xp_history']
            ],
            levelProgress=LevelProgress(**level_progress),
            inheritedFromOwner=progress.get('inherited_from_owner', False)
        )


class AwardProblemXPRequest(BaseModel):
    """Request to award XP for a solved problem"""
    difficulty: Optional[str] = Field(default="medium", description="easy/medium/hard or a difficulty tier")
    hintsUsed: int = Field(default=0, ge=0, description="Hints used while solving")


class AwardLoginBonusRequest(BaseModel):
    """Request to award a login bonus"""
    isFirstLogin: bool = Field(default=False, description="First login ever (adds the first-login bonus)")


class DailyLoginRequest(BaseModel):
    """Request to award today's login bonus if not yet awarded"""
    timezone: Optional[str] = Field(None, description="User timezone (IANA format)")

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_timezone(v)


class AwardXPResponse(BaseModel):
    """Result of an XP award"""
    xpGained: int = Field(..., ge=0)
    newTotal: Optional[int] = Field(None, ge=0)
    newLevel: Optional[int] = Field(None, ge=1)
    leveledUp: bool = False
    isFirstLogin: Optional[bool] = None
    alreadyAwarded: Optional[bool] = None

    @classmethod
    def from_outcome(cls, outcome: Dict[str, Any]):
        return cls(
            xpGained=outcome.get('xp_gained', 0),
            newTotal=outcome.get('new_total'),
            newLevel=outcome.get('new_level'),
            leveledUp=outcome.get('leveled_up', False),
            isFirstLogin=outcome.get('is_first_login'),
            alreadyAwarded=outcome.get('already_awarded'),
        )


class ReferralRewardRequest(BaseModel):
    """Request to reward a completed referral"""
    refereeId: str = Field(..., min_length=1, description="User who signed up")
    referrerId: str = Field(..., min_length=1, description="User who referred them")


class ReferralRewardResponse(BaseModel):
    referee: AwardXPResponse
    referrer: AwardXPResponse


class DeleteProgressResponse(BaseModel):
    userId: str
    deletedRows: int = Field(..., ge=0)


# ============= STREAK SCHEMAS =============

class StreakStatus(BaseModel):
    """Current streak for an identity"""
    userId: str = Field(..., description="User identifier")
    profileId: Optional[str] = Field(None, description="Sub-profile identifier")
    currentStreak: int = Field(default=0, ge=0, description="Current consecutive days")
    longestStreak: int = Field(default=0, ge=0, description="Longest streak achieved")
    lastStudyDate: Optional[str] = Field(None, description="Last study date (YYYY-MM-DD)")
    transition: Optional[str] = Field(None, description="start, noop, continue or reset (record only)")


class RecordStudyRequest(BaseModel):
    """Request to record a study event"""
    studyDate: Optional[str] = Field(None, description="Study date (YYYY-MM-DD); defaults to today")
    timezone: Optional[str] = Field(None, description="User timezone used when studyDate is omitted")

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_timezone(v)


# ============= PRACTICE SCHEMAS =============

class PracticeProblem(BaseModel):
    subject: str
    difficulty: str
    reason: str
    priority: str = Field(..., description="high, medium or low")
    estimatedXp: int = Field(..., ge=0)
    focusArea: Optional[str] = None


class PracticeSession(BaseModel):
    """Recommended practice session"""
    userId: str
    profileId: Optional[str] = None
    sessionType: str
    problems: List[PracticeProblem]
    estimatedDuration: int = Field(..., ge=0, description="Minutes")
    totalEstimatedXp: int = Field(..., ge=0)
    level: int = Field(default=1, ge=1)

    @classmethod
    def from_session(cls, session: Dict[str, Any]):
        return cls(
            userId=session['user_id'],
            profileId=session['profile_id'],
            sessionType=session['session_type'],
            problems=[
                PracticeProblem(
                    subject=p['subject'],
                    difficulty=p['difficulty'],
                    reason=p['reason'],
                    priority=p['priority'],
                    estimatedXp=p['estimated_xp'],
                    focusArea=p['focus_area']
                )
                for p in session['problems']
            ],
            estimatedDuration=session['estimated_duration'],
            totalEstimatedXp=session['total_estimated_xp'],
            level=session['level']
        )


class SubjectArea(BaseModel):
    subject: str
    successRate: float
    attempts: int


class DifficultyStats(BaseModel):
    totalAttempts: int
    totalSolved: int
    overallSuccessRate: int
    mostPracticed: str
    bestPerformance: str


class TierSummary(BaseModel):
    difficulty: str
    attempts: int
    successes: int
    successRate: float
    averageHints: float
    masteryScore: int
    lastAttempted: Optional[str] = None


class PerformanceAnalysis(BaseModel):
    """Weak and strong areas plus difficulty tracking summary"""
    weakAreas: List[SubjectArea]
    strongAreas: List[SubjectArea]
    recommendedDifficulty: str
    overallMastery: int
    suggestedFocus: str
    difficultyStats: DifficultyStats
    tiers: List[TierSummary]

    @classmethod
    def from_analysis(cls, analysis: Dict[str, Any]):
        def areas(items):
            return [
                SubjectArea(subject=a['subject'], successRate=round(a['success_rate'], 1), attempts=a['attempts'])
                for a in items
            ]

        stats = analysis['difficulty_stats']
        return cls(
            weakAreas=areas(analysis['weak_areas']),
            strongAreas=areas(analysis['strong_areas']),
            recommendedDifficulty=analysis['recommended_difficulty'],
            overallMastery=analysis['overall_mastery'],
            suggestedFocus=analysis['suggested_focus'],
            difficultyStats=DifficultyStats(
                totalAttempts=stats['total_attempts'],
                totalSolved=stats['total_solved'],
                overallSuccessRate=stats['overall_success_rate'],
                mostPracticed=stats['most_practiced'],
                bestPerformance=stats['best_performance']
            ),
            tiers=[
                TierSummary(
                    difficulty=t['difficulty'],
                    attempts=t['attempts'],
                    successes=t['successes'],
                    successRate=t['success_rate'],
                    averageHints=t['average_hints'],
                    masteryScore=t['mastery_score'],
                    lastAttempted=t['last_attempted']
                )
                for t in analysis['tiers']
            ]
        )


class ProblemAttemptRequest(BaseModel):
    """One problem attempt to fold into history and difficulty tracking"""
    subject: Optional[str] = Field(None, description="Subject or problem type (e.g., algebra)")
    difficulty: str = Field(default="middle", description="Difficulty tier")
    solved: bool = Field(..., description="Whether the learner solved it")
    hintsUsed: int = Field(default=0, ge=0)
    tries: int = Field(default=1, ge=1, description="Answer attempts for this problem")
    timeSpentMinutes: float = Field(default=0.0, ge=0)

    @field_validator('difficulty')
    @classmethod
    def validate_difficulty(cls, v: str) -> str:
        tier = v.strip().lower().replace(" school", "")
        if tier not in VALID_DIFFICULTY_TIERS:
            raise ValueError(f"Invalid difficulty '{v}'. Must be one of: {', '.join(VALID_DIFFICULTY_TIERS)}")
        return tier


class ProblemAttemptResponse(BaseModel):
    problemId: str
    subject: str
    difficulty: str
    recommendedDifficulty: str
    performance: TierSummary


class AutoAdjustRequest(BaseModel):
    enabled: bool = Field(..., description="Let the tracker move the recommended tier")


class AutoAdjustResponse(BaseModel):
    autoAdjustEnabled: bool
    recommendedDifficulty: str


# ============= DAILY PROBLEM SCHEMAS =============

class CompleteDailyProblemRequest(BaseModel):
    problemText: Optional[str] = Field(None, max_length=2000, description="Problem statement solved")


class DailyProblemCompletion(BaseModel):
    date: str
    alreadyCompleted: bool
    xpGained: int = Field(..., ge=0)
    newTotal: Optional[int] = None
    newLevel: Optional[int] = None
    leveledUp: bool = False


class DailyCompletionCount(BaseModel):
    userId: str
    profileId: Optional[str] = None
    completions: int = Field(..., ge=0)


# ============= ERRORS =============

class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers"""
    detail: str
    error: str
    context: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)
