# app/models/reconciliation.py
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
from app.database import Base
import uuid
import enum

class ReconciliationKind(str, enum.Enum):
    """Why a paid transaction needs an operator"""
    COMMIT_REJECTED = "commit_rejected"      # paid, vote could not commit
    DUPLICATE_PAYMENT = "duplicate_payment"  # paid again after the vote was already recorded
    LATE_PAYMENT = "late_payment"            # paid after the transaction expired
    AMOUNT_MISMATCH = "amount_mismatch"      # paid less than the vote price

# Kinds that stop the vote from ever being committed automatically
BLOCKING_KINDS = frozenset({
    ReconciliationKind.COMMIT_REJECTED,
    ReconciliationKind.LATE_PAYMENT,
    ReconciliationKind.AMOUNT_MISMATCH,
})

class ReconciliationStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"

class ReconciliationCase(Base):
    """Payment taken without a matching vote; resolved manually by an admin"""
    __tablename__ = "reconciliation_cases"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_id = Column(String, ForeignKey("payment_transactions.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    kind = Column(SQLEnum(ReconciliationKind), nullable=False)
    detail = Column(JSON, nullable=True)
    
    # Resolution
    status = Column(SQLEnum(ReconciliationStatus), nullable=False, default=ReconciliationStatus.OPEN, index=True)
    resolution_note = Column(Text, nullable=True)
    resolved_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    def __repr__(self):
        return f"<ReconciliationCase {self.kind} for {self.transaction_id} - {self.status}>"
