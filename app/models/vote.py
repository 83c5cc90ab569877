# app/models/vote.py
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base
import uuid

class VoteRecord(Base):
    """Committed vote. Append-only: never updated or deleted."""
    __tablename__ = "vote_records"
    __table_args__ = (
        # one vote per user per category, enforced by the database
        UniqueConstraint("user_id", "category_id", name="uq_vote_records_user_category"),
    )
    
    # Core fields
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    category_id = Column(String, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    nominee_id = Column(String, ForeignKey("nominees.id", ondelete="RESTRICT"), nullable=False, index=True)
    
    # Payment (one-to-one)
    transaction_id = Column(String, ForeignKey("payment_transactions.id", ondelete="RESTRICT"), unique=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    def __repr__(self):
        return f"<VoteRecord {self.user_id} -> {self.nominee_id} in {self.category_id}>"
