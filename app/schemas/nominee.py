# app/schemas/nominee.py
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.schemas.category import Achievement, NomineeResponse

class NominationCreate(BaseModel):
    """Self-nomination"""
    category_id: str = Field(..., min_length=1)
    display_name: Optional[str] = Field(None, max_length=100)
    nomination_reason: Optional[str] = Field(None, max_length=1000)
    achievements: List[Achievement] = []
    image_url: Optional[str] = None

class MyNominationResponse(NomineeResponse):
    """Own nomination with its running totals"""
    review_notes: Optional[str] = None
    total_votes: int = 0
    total_revenue: Decimal = Decimal("0.00")

class NomineeStatsResponse(BaseModel):
    """Voting statistics for one nominee"""
    nominee_id: str
    name: Optional[str] = None
    category_id: str
    category_name: str
    total_votes: int
    total_revenue: Decimal
    percentage: float
    rank: Optional[int] = None
    total_nominees_in_category: int
    first_vote_at: datetime | None = None
    last_vote_at: datetime | None = None
