from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.core.capabilities import Capability, has_capability
from app.core.security import decode_access_token
from app.services.voting_service import VotingService

# JWT bearer scheme
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

async def _user_from_token(db: AsyncSession, credentials: str) -> Optional[User]:
    payload = decode_access_token(credentials)
    if payload is None:
        return None

    # sub is the user id or, for older tokens, the email
    subject: str = payload.get("sub")
    if subject is None:
        return None

    result = await db.execute(
        select(User).where(or_(User.id == subject, User.email == subject))
    )
    return result.scalars().first()

async def get_current_user(
    token: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the caller from the JWT"""
    user = await _user_from_token(db, token.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

async def get_optional_user(
    token: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """The caller on public pages; None when anonymous or the token is bad"""
    if token is None:
        return None
    return await _user_from_token(db, token.credentials)

def require_capability(capability: Capability):
    """Dependency factory: 403 unless the caller holds the capability"""
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_capability(current_user, capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action"
            )
        return current_user
    return checker

_voting_service = None

def get_voting_service() -> VotingService:
    """Shared orchestrator; overridden in tests with a fake gateway"""
    global _voting_service
    if _voting_service is None:
        _voting_service = VotingService()
    return _voting_service
