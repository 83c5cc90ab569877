# app/api/routes/admin.py
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models.category import Category, as_utc
from app.models.nominee import Nominee, NomineeStatus
from app.models.payment import PaymentStatus
from app.models.reconciliation import ReconciliationStatus
from app.models.user import User
from app.core.capabilities import Capability
from app.core.exceptions import AlreadyNominated, NominationRejected, NotFound
from app.core.logger import logger
from app.schemas.admin import (
    CategoryCreate,
    CategoryUpdate,
    VotingToggle,
    NomineeCreate,
    NomineeReview,
    UserStatusUpdate,
    ReconciliationCaseResponse,
    ReconciliationResolve,
    SweepResponse,
    PaymentListResponse
)
from app.schemas.category import CategoryResponse, NomineeResponse
from app.schemas.user import UserResponse
from app.api.deps import get_voting_service, require_capability
from app.api.routes.categories import category_to_response
from app.services import ledger_service, nomination_service, tally_service
from app.services.voting_service import VotingService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

require_manage = require_capability(Capability.MANAGE)
require_reconcile = require_capability(Capability.RECONCILE)

# ===== Categories =====

def _check_price(price) -> None:
    if price is not None and price < settings.min_vote_price:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Vote price must be at least {settings.min_vote_price} {settings.currency}"
        )

async def _check_name_free(db: AsyncSession, name: str, category_id: str = None) -> None:
    query = select(Category.id).where(Category.name == name)
    if category_id:
        query = query.where(Category.id != category_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A category with this name already exists"
        )

async def _get_category(db: AsyncSession, category_id: str) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category

@router.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Create a category (voting starts switched off)"""
    _check_price(data.vote_price)
    await _check_name_free(db, data.name)

    category = Category(**data.model_dump(), voting_active=False)
    db.add(category)
    await db.commit()
    await db.refresh(category)

    logger.info(f"Category created: {category.name} by {admin.id}")
    return category_to_response(category)

@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Partial update; archiving is is_active=false"""
    category = await _get_category(db, category_id)
    changes = data.model_dump(exclude_unset=True)

    _check_price(changes.get("vote_price"))
    if changes.get("name"):
        await _check_name_free(db, changes["name"], category_id)

    start = as_utc(changes.get("voting_start_date", category.voting_start_date))
    end = as_utc(changes.get("voting_end_date", category.voting_end_date))
    if start and end and end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="voting_end_date must be after voting_start_date"
        )

    for field, value in changes.items():
        setattr(category, field, value)
    await db.commit()
    await db.refresh(category)

    logger.info(f"Category {category_id} updated by {admin.id}: {sorted(changes)}")
    return category_to_response(category)

@router.put("/categories/{category_id}/toggle-voting", response_model=CategoryResponse)
async def toggle_voting(
    category_id: str,
    data: VotingToggle,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Open or close voting"""
    category = await _get_category(db, category_id)
    category.voting_active = data.voting_active
    await db.commit()
    await db.refresh(category)

    logger.info(f"Voting {'opened' if data.voting_active else 'closed'} for {category.name} by {admin.id}")
    return category_to_response(category)

# ===== Nominees =====

@router.post("/nominees", response_model=NomineeResponse, status_code=status.HTTP_201_CREATED)
async def create_nominee(
    data: NomineeCreate,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Nominate a student; the nomination starts pending"""
    try:
        return await nomination_service.create_nomination(
            db,
            category_id=data.category_id,
            nominated_by=admin.id,
            student_id=data.student_id,
            display_name=data.display_name,
            nomination_reason=data.nomination_reason,
            achievements=[a.model_dump() for a in data.achievements],
            image_url=data.image_url,
            display_order=data.display_order
        )
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except AlreadyNominated as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except NominationRejected as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

async def _review_nominee(
    db: AsyncSession,
    nominee_id: str,
    admin: User,
    new_status: NomineeStatus,
    notes: Optional[str]
) -> Nominee:
    nominee = await db.get(Nominee, nominee_id)
    if nominee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nominee not found")
    if not nominee.can_review_to(new_status):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {nominee.status.value} nominee cannot be {new_status.value}"
        )

    # committed votes for a nominee stay counted whatever its status becomes
    nominee.status = new_status
    nominee.review_notes = notes
    nominee.reviewed_by = admin.id
    nominee.reviewed_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(nominee)

    logger.info(f"Nominee {nominee_id} {new_status.value} by {admin.id}")
    return nominee

@router.patch("/nominees/{nominee_id}/approve", response_model=NomineeResponse)
async def approve_nominee(
    nominee_id: str,
    data: Optional[NomineeReview] = None,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Approve a nomination; the nominee becomes votable"""
    return await _review_nominee(db, nominee_id, admin, NomineeStatus.APPROVED, data.notes if data else None)

@router.patch("/nominees/{nominee_id}/reject", response_model=NomineeResponse)
async def reject_nominee(
    nominee_id: str,
    data: Optional[NomineeReview] = None,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Reject a nomination"""
    return await _review_nominee(db, nominee_id, admin, NomineeStatus.REJECTED, data.notes if data else None)

# ===== Users =====

@router.put("/users/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: str,
    data: UserStatusUpdate,
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Activate or deactivate an account"""
    if user_id == admin.id and not data.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot deactivate your own account"
        )

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    user.is_active = data.is_active
    await db.commit()
    await db.refresh(user)

    logger.info(f"User {user_id} {'activated' if data.is_active else 'deactivated'} by {admin.id}")
    return user

# ===== Reconciliation =====

@router.get("/reconciliation", response_model=List[ReconciliationCaseResponse])
async def list_reconciliation_cases(
    status_filter: Optional[ReconciliationStatus] = Query(None, alias="status"),
    admin: User = Depends(require_reconcile),
    db: AsyncSession = Depends(get_db)
):
    """Paid transactions awaiting manual follow-up"""
    return await ledger_service.list_reconciliation_cases(db, status_filter)

@router.patch("/reconciliation/{case_id}/resolve", response_model=ReconciliationCaseResponse)
async def resolve_reconciliation_case(
    case_id: str,
    data: ReconciliationResolve,
    admin: User = Depends(require_reconcile),
    db: AsyncSession = Depends(get_db)
):
    """Close a case after a refund or manual vote entry"""
    try:
        return await ledger_service.resolve_reconciliation_case(db, case_id, admin.id, data.note)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

# ===== Stats / jobs =====

@router.get("/stats")
async def get_stats(
    admin: User = Depends(require_manage),
    db: AsyncSession = Depends(get_db)
):
    """Votes and revenue, overall and per category"""
    stats = await tally_service.get_overall_stats(db)
    open_cases = await ledger_service.list_reconciliation_cases(db, ReconciliationStatus.OPEN)
    stats["open_reconciliation_cases"] = len(open_cases)
    return stats

@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    category: Optional[str] = None,
    user: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_reconcile),
    db: AsyncSession = Depends(get_db)
):
    """Payment transactions, newest first, with per-status totals"""
    payments, total = await ledger_service.list_transactions(
        db, status_filter, category, user, offset=(page - 1) * limit, limit=limit
    )
    summary = await ledger_service.summarize_transactions(db, status_filter, category, user)
    return {
        "payments": payments,
        "summary": summary,
        "total": total,
        "page": page,
        "limit": limit,
    }

@router.post("/payments/sweep", response_model=SweepResponse)
async def run_payment_sweep(
    admin: User = Depends(require_reconcile),
    db: AsyncSession = Depends(get_db),
    voting: VotingService = Depends(get_voting_service)
):
    """Run the expiry sweep now"""
    logger.info(f"Manual payment sweep by {admin.id}")
    return await voting.expire_stale_transactions(db)
