# app/services/nomination_service.py
"""Nominations.

Admins nominate anyone who can be nominated (or a free-text name); students
nominate themselves. Every nomination starts pending and only becomes votable
once an admin approves it.
"""
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.capabilities import Capability, has_capability
from app.core.exceptions import AlreadyNominated, NominationRejected, NotFound
from app.core.logger import logger
from app.models.category import Category
from app.models.nominee import Nominee, NomineeStatus
from app.models.user import User


async def _check_slot(db: AsyncSession, category: Category) -> None:
    # rejected nominations do not take a slot
    taken = await db.execute(
        select(func.count(Nominee.id)).where(
            Nominee.category_id == category.id,
            Nominee.status != NomineeStatus.REJECTED
        )
    )
    if taken.scalar_one() >= category.max_nominees:
        raise NominationRejected(f"Category already has the maximum of {category.max_nominees} nominees")


async def create_nomination(
    db: AsyncSession,
    *,
    category_id: str,
    nominated_by: str,
    student_id: str = None,
    display_name: str = None,
    nomination_reason: str = None,
    achievements: Optional[List[dict]] = None,
    image_url: str = None,
    display_order: int = 0
) -> Nominee:
    """
    Create a pending nomination.

    Raises:
        NotFound: unknown category or student.
        NominationRejected: archived category, the student cannot be
            nominated, or the category is full.
        AlreadyNominated: the student already has a nomination there.
    """
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFound("Category not found")
    if not category.is_active:
        raise NominationRejected("Category is not open for nominations")

    if student_id:
        student = await db.get(User, student_id)
        if student is None:
            raise NotFound("Student not found")
        if not has_capability(student, Capability.BE_NOMINATED):
            raise NominationRejected("This user cannot be nominated")

        existing = await db.execute(
            select(Nominee.id).where(
                Nominee.student_id == student_id,
                Nominee.category_id == category_id
            )
        )
        if existing.first() is not None:
            raise AlreadyNominated()
        display_name = display_name or student.username

    await _check_slot(db, category)

    nominee = Nominee(
        category_id=category_id,
        student_id=student_id,
        display_name=display_name,
        nominated_by=nominated_by,
        nomination_reason=nomination_reason,
        achievements=achievements or [],
        image_url=image_url,
        display_order=display_order,
        status=NomineeStatus.PENDING
    )
    db.add(nominee)
    try:
        await db.commit()
    except IntegrityError:
        # same student nominated concurrently
        await db.rollback()
        raise AlreadyNominated()
    await db.refresh(nominee)

    logger.info(f"Nominee {nominee.id} added to {category_id} by {nominated_by}")
    return nominee


async def list_student_nominations(
    db: AsyncSession,
    student_id: str,
    status: NomineeStatus = None
) -> List[Nominee]:
    query = select(Nominee).where(Nominee.student_id == student_id)
    if status is not None:
        query = query.where(Nominee.status == status)
    result = await db.execute(query.order_by(Nominee.created_at.desc()))
    return list(result.scalars().all())
