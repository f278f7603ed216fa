"""
Streak API endpoints
"""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query

from progression_service.logic.identity import normalize_profile_id
from progression_service.schemas import StreakStatus, RecordStudyRequest
from progression_service.services.ledger_service import LedgerService, get_ledger_service

router = APIRouter(prefix="/streaks", tags=["Streaks"])


def _status(user_id: str, profile_id: Optional[str], streak: dict) -> StreakStatus:
    return StreakStatus(
        userId=user_id,
        profileId=normalize_profile_id(profile_id),
        currentStreak=streak['current_streak'],
        longestStreak=streak['longest_streak'],
        lastStudyDate=streak['last_study_date'],
        transition=streak.get('transition')
    )


@router.get("", response_model=StreakStatus)
async def get_streak(
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Get current streak status."""
    streak = await service.get_streak(x_user_id, profile_id)
    return _status(x_user_id, profile_id, streak)


@router.post("/record", response_model=StreakStatus)
async def record_study_event(
    request: RecordStudyRequest,
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Record a study event and update the streak."""
    streak = await service.record_study_event(x_user_id, profile_id, request.studyDate, request.timezone)
    return _status(x_user_id, profile_id, streak)
