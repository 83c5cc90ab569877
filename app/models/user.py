# app/models/user.py
from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func
from app.database import Base
import uuid
import enum

class UserRole(str, enum.Enum):
    """User role"""
    VOTER = "voter"
    STUDENT = "student"
    ADMIN = "admin"

class User(Base):
    """User model"""
    __tablename__ = "users"
    
    # Core fields
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.VOTER)
    
    # Account state
    is_active = Column(Boolean, nullable=False, default=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    # total votes / amount spent are derived from vote_records, see tally_service.get_user_stats
    
    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
