# app/models/category.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
from datetime import datetime, timezone
import uuid

def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

class Category(Base):
    """Award category"""
    __tablename__ = "categories"
    
    # Core fields
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)  # False = archived
    display_order = Column(Integer, nullable=False, default=0)
    
    # Voting settings
    voting_active = Column(Boolean, nullable=False, default=False)
    voting_start_date = Column(DateTime(timezone=True), nullable=True)
    voting_end_date = Column(DateTime(timezone=True), nullable=True)
    vote_price = Column(Numeric(12, 2), nullable=False)
    max_nominees = Column(Integer, nullable=False, default=10)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # Relationships
    nominees = relationship(
        "Nominee",
        back_populates="category",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    
    def window_state(self, now: datetime | None = None) -> str | None:
        """None when inside the voting window, else 'not_started' / 'ended'"""
        now = now or datetime.now(timezone.utc)
        start = as_utc(self.voting_start_date)
        end = as_utc(self.voting_end_date)
        if start is not None and now < start:
            return "not_started"
        if end is not None and now > end:
            return "ended"
        return None
    
    def is_voting_open(self, now: datetime | None = None) -> bool:
        """Accepts votes right now"""
        return bool(self.is_active and self.voting_active and self.window_state(now) is None)
    
    def __repr__(self):
        return f"<Category {self.name}>"
