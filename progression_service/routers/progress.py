"""
Progress API endpoints - XP, levels and login bonuses
"""
from typing import Optional
import logging
from fastapi import APIRouter, Depends, Header, Query

from progression_service.errors import ProgressionError, ProgressValidationError
from progression_service.logic.identity import normalize_profile_id
from progression_service.schemas import (
    ProgressResponse,
    AwardProblemXPRequest,
    AwardLoginBonusRequest,
    DailyLoginRequest,
    AwardXPResponse,
    ReferralRewardRequest,
    ReferralRewardResponse,
    DeleteProgressResponse
)
from progression_service.services.ledger_service import LedgerService, get_ledger_service
from progression_service.services.progression_store import zero_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progress", tags=["Progress"])


@router.get("", response_model=ProgressResponse)
async def get_progress(
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Get XP and level. Storage failures render as "no progress yet"."""
    try:
        progress = await service.get_progress(x_user_id, profile_id)
    except ProgressValidationError:
        raise
    except ProgressionError as e:
        logger.warning(f"Progress unavailable for user {x_user_id}, returning zero state: {e.message}")
        progress = zero_state()

    return ProgressResponse.from_ledger(
        x_user_id, normalize_profile_id(profile_id), progress, service.level_progress(progress['total_xp'])
    )


@router.post("/problem-xp", response_model=AwardXPResponse)
async def award_problem_xp(
    request: AwardProblemXPRequest,
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Award XP for a solved problem."""
    outcome = await service.award_problem_xp(x_user_id, profile_id, request.difficulty, request.hintsUsed)
    return AwardXPResponse.from_outcome(outcome)


@router.post("/login-bonus", response_model=AwardXPResponse)
async def award_login_bonus(
    request: AwardLoginBonusRequest,
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Award a fixed login bonus (first login or daily)."""
    outcome = await service.award_login_bonus(x_user_id, profile_id, request.isFirstLogin)
    return AwardXPResponse.from_outcome(outcome)


@router.post("/daily-login", response_model=AwardXPResponse)
async def check_daily_login(
    request: DailyLoginRequest,
    profile_id: Optional[str] = Query(None, description="Sub-profile identifier"),
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Award today's login bonus unless it was already awarded."""
    outcome = await service.check_and_award_daily_login(x_user_id, profile_id, timezone=request.timezone)
    return AwardXPResponse.from_outcome(outcome)


@router.post("/referral-rewards", response_model=ReferralRewardResponse)
async def award_referral_rewards(
    request: ReferralRewardRequest,
    service: LedgerService = Depends(get_ledger_service)
):
    """Reward both sides of a completed referral."""
    result = await service.award_referral_rewards(request.refereeId, request.referrerId)
    return ReferralRewardResponse(
        referee=AwardXPResponse.from_outcome(result['referee']),
        referrer=AwardXPResponse.from_outcome(result['referrer'])
    )


@router.delete("", response_model=DeleteProgressResponse)
async def delete_progress(
    x_user_id: str = Header(..., alias="X-User-ID"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Erase every progression row of the user (account deletion)."""
    deleted = await service.delete_progress(x_user_id)
    return DeleteProgressResponse(userId=x_user_id, deletedRows=deleted)
