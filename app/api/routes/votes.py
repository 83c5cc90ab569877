# app/api/routes/votes.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.nominee import NomineeStatus
from app.models.user import User
from app.core.capabilities import Capability
from app.core.exceptions import GatewayError, GatewayUnavailable, InvalidAmount, NotFound
from app.schemas.vote import (
    VoteCreate,
    VoteFlowResponse,
    VoteRecordResponse,
    NomineeCountResponse,
    CategoryResultsResponse,
    LeaderboardEntry,
    EligibilityResponse,
    flow_response
)
from app.schemas.nominee import NomineeStatsResponse
from app.api.deps import get_current_user, get_voting_service, require_capability
from app.services import eligibility_service, ledger_service, tally_service
from app.services.voting_service import VoteFlowState, VotingService

router = APIRouter(prefix="/api/v1/votes", tags=["votes"])

@router.post("", response_model=VoteFlowResponse, status_code=status.HTTP_201_CREATED)
async def cast_vote(
    data: VoteCreate,
    current_user: User = Depends(require_capability(Capability.VOTE)),
    db: AsyncSession = Depends(get_db),
    voting: VotingService = Depends(get_voting_service)
):
    """Start a paid vote; returns the checkout URL"""
    try:
        result = await voting.request_vote(
            db,
            current_user,
            data.category_id,
            data.nominee_id,
            payer_email=data.payment_data.email
        )
    except GatewayUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except (GatewayError, InvalidAmount) as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    if result.state == VoteFlowState.INELIGIBLE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "state": result.state.value,
                "reason": result.reason.value,
                "message": result.message
            }
        )

    return flow_response(result)

@router.get("/category/{category_id}/counts", response_model=List[NomineeCountResponse])
async def get_category_counts(category_id: str, db: AsyncSession = Depends(get_db)):
    """Vote count per nominee (public)"""
    try:
        counts = await tally_service.get_counts(db, category_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return [NomineeCountResponse(nominee_id=c.nominee_id, count=c.count) for c in counts]

@router.get("/category/{category_id}/results", response_model=CategoryResultsResponse)
async def get_category_results(category_id: str, db: AsyncSession = Depends(get_db)):
    """Ranked results with percentages (public)"""
    try:
        return await tally_service.get_results(db, category_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

@router.get("/nominee/{nominee_id}/stats", response_model=NomineeStatsResponse)
async def get_nominee_stats(nominee_id: str, db: AsyncSession = Depends(get_db)):
    """Votes, revenue and rank of one nominee (public)"""
    try:
        stats = await tally_service.get_nominee_stats(db, nominee_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    # unreviewed nominations are not public
    if stats["status"] != NomineeStatus.APPROVED and stats["total_votes"] == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nominee not found")
    return stats

@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(limit: int = 50, db: AsyncSession = Depends(get_db)):
    """Top nominees across all categories (public)"""
    limit = max(1, min(limit, 100))
    return await tally_service.get_leaderboard(db, limit)

@router.get("/my-votes", response_model=List[VoteRecordResponse])
async def get_my_votes(
    category: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The caller's committed votes"""
    return await ledger_service.list_user_votes(db, current_user.id, category)

@router.get("/eligibility/{category_id}", response_model=EligibilityResponse)
async def get_eligibility(
    category_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Whether the caller can vote in a category right now"""
    result = await eligibility_service.check_eligibility(db, current_user.id, category_id)
    return EligibilityResponse(
        category_id=category_id,
        eligible=result.eligible,
        reason=result.reason.value if result.reason else None,
        message=result.message
    )
