# app/services/eligibility_service.py
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.capabilities import Capability, has_capability
from app.models.category import Category
from app.models.user import User
from app.models.vote import VoteRecord


class IneligibleReason(str, enum.Enum):
    CATEGORY_NOT_FOUND = "category_not_found"
    CATEGORY_INACTIVE = "category_inactive"
    VOTING_CLOSED = "voting_closed"
    VOTING_NOT_STARTED = "voting_not_started"
    VOTING_ENDED = "voting_ended"
    ALREADY_VOTED = "already_voted"
    ACCOUNT_INACTIVE = "account_inactive"
    NOMINEE_NOT_VOTABLE = "nominee_not_votable"


REASON_MESSAGES = {
    IneligibleReason.CATEGORY_NOT_FOUND: "This category does not exist",
    IneligibleReason.CATEGORY_INACTIVE: "This category is no longer active",
    IneligibleReason.VOTING_CLOSED: "Voting is not open for this category",
    IneligibleReason.VOTING_NOT_STARTED: "Voting for this category has not started yet",
    IneligibleReason.VOTING_ENDED: "Voting for this category has ended",
    IneligibleReason.ALREADY_VOTED: "You have already voted in this category",
    IneligibleReason.ACCOUNT_INACTIVE: "Your account is not allowed to vote",
    IneligibleReason.NOMINEE_NOT_VOTABLE: "This nominee cannot receive votes in this category",
}


@dataclass
class EligibilityResult:
    eligible: bool
    reason: Optional[IneligibleReason] = None

    @property
    def message(self) -> str:
        if self.eligible:
            return "You can vote in this category"
        return REASON_MESSAGES[self.reason]

    @classmethod
    def ok(cls) -> "EligibilityResult":
        return cls(eligible=True)

    @classmethod
    def reject(cls, reason: IneligibleReason) -> "EligibilityResult":
        return cls(eligible=False, reason=reason)


async def check_eligibility(
    db: AsyncSession,
    user_id: str,
    category_id: str,
    now: datetime | None = None
) -> EligibilityResult:
    """
    Whether a user may start a vote in a category.
    Checks run in order and the first failure wins. Read-only.
    """
    now = now or datetime.now(timezone.utc)

    # (a) category exists and is not archived
    category = await db.get(Category, category_id)
    if category is None:
        return EligibilityResult.reject(IneligibleReason.CATEGORY_NOT_FOUND)
    if not category.is_active:
        return EligibilityResult.reject(IneligibleReason.CATEGORY_INACTIVE)

    # (b) voting switched on and inside the window
    if not category.voting_active:
        return EligibilityResult.reject(IneligibleReason.VOTING_CLOSED)
    window = category.window_state(now)
    if window == "not_started":
        return EligibilityResult.reject(IneligibleReason.VOTING_NOT_STARTED)
    if window == "ended":
        return EligibilityResult.reject(IneligibleReason.VOTING_ENDED)

    # (c) no vote yet for (user, category)
    if await has_voted(db, user_id, category_id):
        return EligibilityResult.reject(IneligibleReason.ALREADY_VOTED)

    # (d) account active and allowed to vote
    user = await db.get(User, user_id)
    if not has_capability(user, Capability.VOTE):
        return EligibilityResult.reject(IneligibleReason.ACCOUNT_INACTIVE)

    return EligibilityResult.ok()


async def has_voted(db: AsyncSession, user_id: str, category_id: str) -> bool:
    result = await db.execute(
        select(VoteRecord.id).where(
            VoteRecord.user_id == user_id,
            VoteRecord.category_id == category_id
        )
    )
    return result.first() is not None


async def get_voted_category_ids(db: AsyncSession, user_id: str) -> Set[str]:
    """Categories the user already voted in, for the category listing"""
    result = await db.execute(
        select(VoteRecord.category_id).where(VoteRecord.user_id == user_id)
    )
    return set(result.scalars().all())
