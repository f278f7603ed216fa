"""
Adaptive practice API endpoints
"""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query

from progression_service.schemas import (
    PracticeSession,
    PerformanceAnalysis,
    ProblemAttemptRequest,
    ProblemAttemptResponse,
    TierSummary,
    AutoAdjustRequest,
    AutoAdjustResponse,
    VALID_SESSION_TYPES
)
from progression_service.services.ledger_service import LedgerService, get_ledger_service

router = APIRouter(prefix="/practice", tags=["Adaptive Practice"])


@router.get("/session", response_model=PracticeSession)
async def get_practice_session(
    session_type: str = Query("balanced", description=f"One of: {', '.join(VALID_SESSION_TYPES)}"),
    count: int = Query(5, ge=1, le=20, description="Number of problems"),
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Get a recommended practice session."""
    session = await service.get_recommended_practice_session(x_user_id, profile_id, session_type, count)
    return PracticeSession.from_session(session)


@router.get("/analysis", response_model=PerformanceAnalysis)
async def get_performance_analysis(
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Weak and strong subjects plus difficulty tracking summary."""
    analysis = await service.get_performance_analysis(x_user_id, profile_id)
    return PerformanceAnalysis.from_analysis(analysis)


@router.post("/attempts", response_model=ProblemAttemptResponse)
async def record_problem_attempt(
    request: ProblemAttemptRequest,
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Record a problem attempt for history and difficulty tracking."""
    result = await service.record_problem_attempt(
        x_user_id,
        profile_id,
        subject=request.subject,
        difficulty=request.difficulty,
        solved=request.solved,
        hints_used=request.hintsUsed,
        tries=request.tries,
        time_spent_minutes=request.timeSpentMinutes
    )
    perf = result['performance']
    return ProblemAttemptResponse(
        problemId=result['problem_id'],
        subject=result['subject'],
        difficulty=result['difficulty'],
        recommendedDifficulty=result['recommended_difficulty'],
        performance=TierSummary(
            difficulty=perf['difficulty'],
            attempts=perf['attempts'],
            successes=perf['successes'],
            successRate=perf['success_rate'],
            averageHints=perf['average_hints'],
            masteryScore=perf['mastery_score'],
            lastAttempted=perf['last_attempted']
        )
    )


@router.put("/auto-adjust", response_model=AutoAdjustResponse)
async def set_auto_adjust(
    request: AutoAdjustRequest,
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Turn automatic difficulty adjustment on or off."""
    result = await service.set_auto_adjust(x_user_id, profile_id, request.enabled)
    return AutoAdjustResponse(
        autoAdjustEnabled=result['auto_adjust_enabled'],
        recommendedDifficulty=result['recommended_difficulty']
    )
