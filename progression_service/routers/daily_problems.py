"""
Daily problem API endpoints
"""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Path, Query

from progression_service.logic.identity import normalize_profile_id
from progression_service.schemas import (
    CompleteDailyProblemRequest,
    DailyProblemCompletion,
    DailyCompletionCount
)
from progression_service.services.ledger_service import LedgerService, get_ledger_service

router = APIRouter(prefix="/daily-problems", tags=["Daily Problems"])


@router.post("/{problem_date}/complete", response_model=DailyProblemCompletion)
async def complete_daily_problem(
    request: CompleteDailyProblemRequest,
    problem_date: str = Path(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="Date (YYYY-MM-DD)"),
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Mark the daily problem as solved; only the first completion awards XP."""
    result = await service.complete_daily_problem(x_user_id, profile_id, problem_date, request.problemText)
    return DailyProblemCompletion(
        date=result['date'],
        alreadyCompleted=result['already_completed'],
        xpGained=result['xp_gained'],
        newTotal=result.get('new_total'),
        newLevel=result.get('new_level'),
        leveledUp=result.get('leveled_up', False)
    )


@router.get("/completions", response_model=DailyCompletionCount)
async def count_daily_completions(
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Number of daily problems completed."""
    count = await service.count_daily_completions(x_user_id, profile_id)
    return DailyCompletionCount(userId=x_user_id, profileId=normalize_profile_id(profile_id), completions=count)
