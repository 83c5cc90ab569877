# app/api/routes/categories.py
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.category import Category
from app.models.nominee import Nominee, NomineeStatus
from app.models.user import User
from app.schemas.category import CategoryResponse, CategoryDetailResponse, NomineeResponse
from app.api.deps import get_optional_user
from app.services import eligibility_service

router = APIRouter(prefix="/api/v1/categories", tags=["categories"])

def category_to_response(
    category: Category,
    now: datetime | None = None,
    has_voted: bool = False
) -> CategoryResponse:
    """is_voting_open is computed, so it is filled in here"""
    return CategoryResponse(
        id=category.id,
        name=category.name,
        description=category.description,
        is_active=category.is_active,
        display_order=category.display_order,
        voting_active=category.voting_active,
        voting_start_date=category.voting_start_date,
        voting_end_date=category.voting_end_date,
        vote_price=category.vote_price,
        max_nominees=category.max_nominees,
        is_voting_open=category.is_voting_open(now),
        has_voted=has_voted
    )

async def _approved_nominees(db: AsyncSession, category_id: str) -> List[Nominee]:
    result = await db.execute(
        select(Nominee)
        .where(
            Nominee.category_id == category_id,
            Nominee.status == NomineeStatus.APPROVED
        )
        .order_by(Nominee.display_order, Nominee.created_at)
    )
    return list(result.scalars().all())

async def _get_category_or_404(db: AsyncSession, category_id: str) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found"
        )
    return category

@router.get("", response_model=List[CategoryResponse])
async def list_categories(
    include_archived: bool = False,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Categories in display order; has_voted is set for a signed-in caller"""
    query = select(Category)
    if not include_archived:
        query = query.where(Category.is_active == True)
    result = await db.execute(query.order_by(Category.display_order, Category.name))
    categories = result.scalars().all()

    voted = set()
    if current_user is not None:
        voted = await eligibility_service.get_voted_category_ids(db, current_user.id)

    now = datetime.now(timezone.utc)
    return [category_to_response(c, now, has_voted=c.id in voted) for c in categories]

@router.get("/{category_id}", response_model=CategoryDetailResponse)
async def get_category(
    category_id: str,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Category with its approved nominees"""
    category = await _get_category_or_404(db, category_id)
    nominees = await _approved_nominees(db, category_id)
    has_voted = current_user is not None and await eligibility_service.has_voted(
        db, current_user.id, category_id
    )

    return CategoryDetailResponse(
        **category_to_response(category, has_voted=has_voted).model_dump(),
        nominees=[NomineeResponse.model_validate(n) for n in nominees]
    )

@router.get("/{category_id}/nominees", response_model=List[NomineeResponse])
async def list_nominees(category_id: str, db: AsyncSession = Depends(get_db)):
    """Approved nominees of a category"""
    await _get_category_or_404(db, category_id)
    return await _approved_nominees(db, category_id)
