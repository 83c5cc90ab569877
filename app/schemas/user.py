# app/schemas/user.py
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.user import UserRole

class UserResponse(BaseModel):
    """User profile"""
    id: str
    email: str
    username: str
    phone: Optional[str] = None
    role: UserRole
    is_active: bool
    capabilities: List[str] = []
    created_at: datetime | None = None
    
    class Config:
        from_attributes = True

class UserStatsResponse(BaseModel):
    """Voting totals derived from the ledger"""
    total_votes_cast: int
    total_amount_spent: Decimal
