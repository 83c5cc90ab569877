# app/api/routes/users.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.core.capabilities import resolve_capabilities
from app.schemas.user import UserResponse, UserStatsResponse
from app.api.deps import get_current_user
from app.services import tally_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Current user with resolved capabilities"""
    response = UserResponse.model_validate(current_user)
    response.capabilities = sorted(c.value for c in resolve_capabilities(current_user))
    return response

@router.get("/me/stats", response_model=UserStatsResponse)
async def get_my_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Votes cast and amount spent"""
    return await tally_service.get_user_stats(db, current_user.id)
