# app/models/payment.py
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Numeric, Text, JSON, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
from datetime import datetime, timezone
import secrets
import uuid
import enum

class PaymentStatus(str, enum.Enum):
    """Payment transaction status"""
    INITIALIZED = "initialized"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"

TERMINAL_STATUSES = frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.EXPIRED})

# Status only ever moves forward along this order
_STATUS_RANK = {
    PaymentStatus.INITIALIZED: 0,
    PaymentStatus.PENDING: 1,
    PaymentStatus.SUCCESS: 2,
    PaymentStatus.FAILED: 2,
    PaymentStatus.EXPIRED: 2,
}

def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Monotonic transition check; terminal states never change"""
    if current in TERMINAL_STATUSES:
        return False
    return _STATUS_RANK[new] > _STATUS_RANK[current]

def generate_reference() -> str:
    """Internal payment reference, echoed back by the gateway"""
    return f"CV-{datetime.now(timezone.utc):%Y%m%d}-{secrets.token_hex(8).upper()}"

class PaymentTransaction(Base):
    """Gateway payment intended to authorize one vote"""
    __tablename__ = "payment_transactions"
    
    # Core fields
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    reference = Column(String, unique=True, nullable=False, default=generate_reference)
    user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    
    # Vote intent (metadata sent to the gateway)
    category_id = Column(String, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    nominee_id = Column(String, ForeignKey("nominees.id", ondelete="RESTRICT"), nullable=False)
    
    # Amount
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    
    # Gateway state
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.INITIALIZED, index=True)
    authorization_url = Column(String, nullable=True)
    access_code = Column(String, nullable=True)
    channel = Column(String, nullable=True)
    gateway_response = Column(JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    events = relationship("PaymentEvent", back_populates="transaction", order_by="PaymentEvent.created_at")
    
    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
    
    def is_expired_at(self, now: datetime) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now > expires_at
    
    def __repr__(self):
        return f"<PaymentTransaction {self.reference} - {self.status}>"

class PaymentEvent(Base):
    """Append-only audit trail of payment status changes"""
    __tablename__ = "payment_events"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_id = Column(String, ForeignKey("payment_transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(SQLEnum(PaymentStatus), nullable=True)
    to_status = Column(SQLEnum(PaymentStatus), nullable=False)
    source = Column(String, nullable=False)  # initialize / poll / webhook / sweep
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    transaction = relationship("PaymentTransaction", back_populates="events")
    
    def __repr__(self):
        return f"<PaymentEvent {self.from_status} -> {self.to_status} ({self.source})>"
