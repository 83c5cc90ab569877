# app/schemas/payment.py
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models.payment import PaymentStatus

class PaymentTransactionResponse(BaseModel):
    """Payment history entry"""
    id: str
    reference: str
    category_id: str
    nominee_id: str
    amount: Decimal
    currency: str
    amount_paid: Optional[Decimal] = None
    status: PaymentStatus
    channel: Optional[str] = None
    paid_at: datetime | None = None
    expires_at: datetime
    created_at: datetime | None = None
    
    class Config:
        from_attributes = True

class WebhookAck(BaseModel):
    status: str = "ok"
    state: Optional[str] = None
