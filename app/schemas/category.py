# app/schemas/category.py
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.nominee import NomineeStatus

class Achievement(BaseModel):
    title: str
    description: Optional[str] = None

class NomineeResponse(BaseModel):
    """Nominee card"""
    id: str
    category_id: str
    student_id: Optional[str] = None
    display_name: Optional[str] = None
    nomination_reason: Optional[str] = None
    achievements: List[Achievement] = []
    image_url: Optional[str] = None
    display_order: int = 0
    status: NomineeStatus
    
    class Config:
        from_attributes = True

class CategoryResponse(BaseModel):
    """Category summary"""
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool
    display_order: int
    voting_active: bool
    voting_start_date: datetime | None = None
    voting_end_date: datetime | None = None
    vote_price: Decimal
    max_nominees: int
    is_voting_open: bool = False
    has_voted: bool = False
    
    class Config:
        from_attributes = True

class CategoryDetailResponse(CategoryResponse):
    """Category with its approved nominees"""
    nominees: List[NomineeResponse] = []
