# app/models/nominee.py
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, JSON,
    Enum as SQLEnum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import uuid
import enum

class NomineeStatus(str, enum.Enum):
    """Nomination status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

# Admin review moves: pending -> approved | rejected, and an approval may be
# withdrawn. Committed votes are untouched either way.
REVIEW_TRANSITIONS = {
    NomineeStatus.PENDING: frozenset({NomineeStatus.APPROVED, NomineeStatus.REJECTED}),
    NomineeStatus.APPROVED: frozenset({NomineeStatus.REJECTED}),
    NomineeStatus.REJECTED: frozenset(),
}

class Nominee(Base):
    """Nominee in a category"""
    __tablename__ = "nominees"
    __table_args__ = (
        UniqueConstraint("student_id", "category_id", name="uq_nominees_student_category"),
    )
    
    # Core fields
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    category_id = Column(String, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    display_name = Column(String, nullable=True)  # free text when not linked to a student
    
    # Nomination
    nominated_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    nomination_reason = Column(Text, nullable=True)
    achievements = Column(JSON, nullable=False, default=list)  # [{"title": ..., "description": ...}]
    image_url = Column(String, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    
    # Review
    status = Column(SQLEnum(NomineeStatus), nullable=False, default=NomineeStatus.PENDING)
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    # Relationships
    category = relationship("Category", back_populates="nominees")
    student = relationship("User", foreign_keys=[student_id])
    
    @property
    def is_votable(self) -> bool:
        return self.status == NomineeStatus.APPROVED

    def can_review_to(self, status: NomineeStatus) -> bool:
        return status in REVIEW_TRANSITIONS[NomineeStatus(self.status)]

    def __repr__(self):
        return f"<Nominee {self.id} in {self.category_id} - {self.status}>"
