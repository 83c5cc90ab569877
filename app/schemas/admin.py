# app/schemas/admin.py
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.payment import PaymentStatus
from app.models.reconciliation import ReconciliationKind, ReconciliationStatus
from app.schemas.category import Achievement
from app.schemas.payment import PaymentTransactionResponse

class CategoryCreate(BaseModel):
    """New category"""
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    display_order: int = 0
    vote_price: Decimal = Field(..., gt=0)
    max_nominees: int = Field(10, ge=1)
    voting_start_date: datetime | None = None
    voting_end_date: datetime | None = None
    
    @model_validator(mode="after")
    def check_window(self):
        if self.voting_start_date and self.voting_end_date and self.voting_end_date <= self.voting_start_date:
            raise ValueError("voting_end_date must be after voting_start_date")
        return self

class CategoryUpdate(BaseModel):
    """Partial category update"""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None
    vote_price: Optional[Decimal] = Field(None, gt=0)
    max_nominees: Optional[int] = Field(None, ge=1)
    voting_start_date: datetime | None = None
    voting_end_date: datetime | None = None

class VotingToggle(BaseModel):
    voting_active: bool

class NomineeCreate(BaseModel):
    """Nominate a student (or a free-text name) for a category"""
    category_id: str
    student_id: Optional[str] = None
    display_name: Optional[str] = Field(None, max_length=100)
    nomination_reason: Optional[str] = None
    achievements: List[Achievement] = []
    image_url: Optional[str] = None
    display_order: int = 0
    
    @model_validator(mode="after")
    def check_identity(self):
        if not self.student_id and not self.display_name:
            raise ValueError("student_id or display_name is required")
        return self

class NomineeReview(BaseModel):
    notes: Optional[str] = None

class UserStatusUpdate(BaseModel):
    is_active: bool

class ReconciliationCaseResponse(BaseModel):
    """Paid transaction awaiting manual follow-up"""
    id: str
    transaction_id: str
    user_id: str
    kind: ReconciliationKind
    detail: Optional[dict] = None
    status: ReconciliationStatus
    resolution_note: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None
    
    class Config:
        from_attributes = True

class ReconciliationResolve(BaseModel):
    note: str = Field(..., min_length=1)

class SweepResponse(BaseModel):
    checked: int
    expired: int
    committed: int
    failed: int
    pending: int
    rejected: int

class AdminPaymentResponse(PaymentTransactionResponse):
    """Payment transaction as seen by reconcilers"""
    user_id: str
    failure_reason: Optional[str] = None

class PaymentStatusSummary(BaseModel):
    status: PaymentStatus
    count: int
    total_amount: Decimal

class PaymentListResponse(BaseModel):
    """One page of payment transactions"""
    payments: List[AdminPaymentResponse]
    summary: List[PaymentStatusSummary]
    total: int
    page: int
    limit: int
