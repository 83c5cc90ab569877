# app/services/rate_limit_service.py
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.payment import PaymentTransaction

async def count_recent_initializations(db: AsyncSession, user_id: str, now: datetime | None = None) -> int:
    """Payments the user started inside the current window"""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(minutes=settings.payment_init_window_minutes)
    result = await db.execute(
        select(func.count(PaymentTransaction.id)).where(
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.created_at >= since
        )
    )
    return result.scalar_one()

async def check_payment_limit(db: AsyncSession, user_id: str) -> None:
    """
    Cap payment initializations per user
    - payment_init_limit per payment_init_window_minutes
    """
    used = await count_recent_initializations(db, user_id)
    if used >= settings.payment_init_limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many payment attempts. Try again in {settings.payment_init_window_minutes} minutes."
        )
