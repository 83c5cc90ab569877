# app/schemas/vote.py
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

class PaymentData(BaseModel):
    """Payer details forwarded to the gateway"""
    email: Optional[EmailStr] = None

class VoteCreate(BaseModel):
    """Vote request"""
    category_id: str = Field(..., min_length=1)
    nominee_id: str = Field(..., min_length=1)
    payment_data: PaymentData = Field(default_factory=PaymentData)

class VoteRecordResponse(BaseModel):
    """Committed vote"""
    id: str
    user_id: str
    category_id: str
    nominee_id: str
    transaction_id: str
    amount: Decimal
    created_at: datetime | None = None
    
    class Config:
        from_attributes = True

class VoteFlowResponse(BaseModel):
    """Where a vote request currently stands"""
    state: str
    reference: Optional[str] = None
    redirect_url: Optional[str] = None
    message: str
    vote: Optional[VoteRecordResponse] = None

class NomineeCountResponse(BaseModel):
    nominee_id: str
    count: int

class NomineeResult(BaseModel):
    rank: int
    nominee_id: str
    name: Optional[str] = None
    image_url: Optional[str] = None
    count: int
    percentage: float
    revenue: Decimal

class CategoryResultsResponse(BaseModel):
    """Tally for one category"""
    category_id: str
    category_name: str
    is_voting_open: bool
    total_votes: int
    results: List[NomineeResult]

class LeaderboardEntry(BaseModel):
    rank: int
    nominee_id: str
    name: Optional[str] = None
    category_id: str
    category_name: str
    count: int
    revenue: Decimal

class EligibilityResponse(BaseModel):
    category_id: str
    eligible: bool
    reason: Optional[str] = None
    message: str

def flow_response(result) -> VoteFlowResponse:
    """VoteFlowResult -> API body"""
    return VoteFlowResponse(
        state=result.state.value,
        reference=result.reference,
        redirect_url=result.redirect_url,
        message=result.message,
        vote=VoteRecordResponse.model_validate(result.vote) if result.vote is not None else None
    )
