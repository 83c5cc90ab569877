# app/services/ledger_service.py
"""Vote ledger.

Authoritative store of committed votes and of payment transaction state.
One vote per (user, category) is enforced by the uq_vote_records_user_category
constraint; the application-level check only gives a friendlier early answer.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DuplicateVote,
    InvalidTransition,
    MetadataMismatch,
    NotFound,
    PaymentNotConfirmed,
)
from app.core.logger import logger
from app.models.payment import (
    PaymentEvent,
    PaymentStatus,
    PaymentTransaction,
    TERMINAL_STATUSES,
    can_transition,
)
from app.models.reconciliation import (
    BLOCKING_KINDS,
    ReconciliationCase,
    ReconciliationKind,
    ReconciliationStatus,
)
from app.models.vote import VoteRecord


# ===== Payment transactions =====

async def get_transaction(db: AsyncSession, reference: str) -> Optional[PaymentTransaction]:
    result = await db.execute(
        select(PaymentTransaction).where(PaymentTransaction.reference == reference)
    )
    return result.scalar_one_or_none()


async def record_initialized(
    db: AsyncSession,
    *,
    reference: str,
    user_id: str,
    category_id: str,
    nominee_id: str,
    amount: Decimal,
    currency: str,
    expires_at: datetime,
    authorization_url: str = None,
    access_code: str = None
) -> PaymentTransaction:
    """Persist a freshly initialized transaction"""
    transaction = PaymentTransaction(
        reference=reference,
        user_id=user_id,
        category_id=category_id,
        nominee_id=nominee_id,
        amount=amount,
        currency=currency,
        status=PaymentStatus.INITIALIZED,
        authorization_url=authorization_url,
        access_code=access_code,
        expires_at=expires_at
    )
    db.add(transaction)
    await db.flush()
    db.add(PaymentEvent(
        transaction_id=transaction.id,
        from_status=None,
        to_status=PaymentStatus.INITIALIZED,
        source="initialize"
    ))
    await db.commit()
    await db.refresh(transaction)
    return transaction


async def transition(
    db: AsyncSession,
    transaction: PaymentTransaction,
    new_status: PaymentStatus,
    source: str,
    detail: str = None,
    **fields
) -> bool:
    """
    Move a transaction to a new status.

    Returns False when it is already in that status. Raises InvalidTransition
    for a backwards move or any move out of a terminal state. The UPDATE is
    conditional on the old status, so concurrent confirmers apply a given
    transition at most once.
    """
    current = transaction.status
    if current == new_status:
        return False
    if not can_transition(current, new_status):
        raise InvalidTransition(f"{transaction.reference}: {current.value} -> {new_status.value}")

    result = await db.execute(
        update(PaymentTransaction)
        .where(
            PaymentTransaction.id == transaction.id,
            PaymentTransaction.status == current
        )
        .values(status=new_status, **fields)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        # Lost the race; someone else moved it first
        await db.rollback()
        await db.refresh(transaction)
        if transaction.status == new_status:
            return False
        if not can_transition(transaction.status, new_status):
            raise InvalidTransition(
                f"{transaction.reference}: {transaction.status.value} -> {new_status.value}"
            )
        return await transition(db, transaction, new_status, source, detail, **fields)

    db.add(PaymentEvent(
        transaction_id=transaction.id,
        from_status=current,
        to_status=new_status,
        source=source,
        detail=detail
    ))
    await db.commit()
    await db.refresh(transaction)

    logger.info(f"Payment {transaction.reference}: {current.value} -> {new_status.value} ({source})")
    return True


async def find_live_transactions(
    db: AsyncSession,
    user_id: str,
    category_id: str,
    now: datetime | None = None
) -> List[PaymentTransaction]:
    """Non-terminal, unexpired transactions for (user, category)"""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(PaymentTransaction)
        .where(
            PaymentTransaction.user_id == user_id,
            PaymentTransaction.category_id == category_id,
            PaymentTransaction.status.not_in(TERMINAL_STATUSES),
            PaymentTransaction.expires_at > now
        )
        .order_by(PaymentTransaction.created_at.desc())
    )
    return list(result.scalars().all())


async def list_stale_transactions(db: AsyncSession, now: datetime | None = None) -> List[PaymentTransaction]:
    """Non-terminal transactions past their expiry"""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(PaymentTransaction)
        .where(
            PaymentTransaction.status.not_in(TERMINAL_STATUSES),
            PaymentTransaction.expires_at <= now
        )
        .order_by(PaymentTransaction.expires_at)
    )
    return list(result.scalars().all())


async def list_uncommitted_successes(db: AsyncSession) -> List[PaymentTransaction]:
    """Successful payments with neither a vote nor a reconciliation case"""
    result = await db.execute(
        select(PaymentTransaction)
        .outerjoin(VoteRecord, VoteRecord.transaction_id == PaymentTransaction.id)
        .outerjoin(ReconciliationCase, ReconciliationCase.transaction_id == PaymentTransaction.id)
        .where(
            PaymentTransaction.status == PaymentStatus.SUCCESS,
            VoteRecord.id.is_(None),
            ReconciliationCase.id.is_(None)
        )
    )
    return list(result.scalars().all())


async def list_user_transactions(db: AsyncSession, user_id: str) -> List[PaymentTransaction]:
    result = await db.execute(
        select(PaymentTransaction)
        .where(PaymentTransaction.user_id == user_id)
        .order_by(PaymentTransaction.created_at.desc())
    )
    return list(result.scalars().all())


def _transaction_filters(status=None, category_id=None, user_id=None) -> list:
    filters = []
    if status is not None:
        filters.append(PaymentTransaction.status == status)
    if category_id:
        filters.append(PaymentTransaction.category_id == category_id)
    if user_id:
        filters.append(PaymentTransaction.user_id == user_id)
    return filters


async def list_transactions(
    db: AsyncSession,
    status: PaymentStatus | None = None,
    category_id: str | None = None,
    user_id: str | None = None,
    offset: int = 0,
    limit: int = 20
) -> Tuple[List[PaymentTransaction], int]:
    """One page of transactions, newest first, plus the filtered total"""
    filters = _transaction_filters(status, category_id, user_id)

    total = await db.execute(select(func.count(PaymentTransaction.id)).where(*filters))
    result = await db.execute(
        select(PaymentTransaction)
        .where(*filters)
        .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total.scalar_one()


async def summarize_transactions(
    db: AsyncSession,
    status: PaymentStatus | None = None,
    category_id: str | None = None,
    user_id: str | None = None
) -> List[dict]:
    """Count and billed amount per status"""
    result = await db.execute(
        select(
            PaymentTransaction.status,
            func.count(PaymentTransaction.id),
            func.coalesce(func.sum(PaymentTransaction.amount), 0)
        )
        .where(*_transaction_filters(status, category_id, user_id))
        .group_by(PaymentTransaction.status)
    )
    return [
        {
            "status": row_status,
            "count": count,
            "total_amount": Decimal(str(amount)).quantize(Decimal("0.01")),
        }
        for row_status, count, amount in result.all()
    ]


# ===== Votes =====

async def get_user_vote(db: AsyncSession, user_id: str, category_id: str) -> Optional[VoteRecord]:
    result = await db.execute(
        select(VoteRecord).where(
            VoteRecord.user_id == user_id,
            VoteRecord.category_id == category_id
        )
    )
    return result.scalar_one_or_none()


async def get_vote_for_transaction(db: AsyncSession, transaction_id: str) -> Optional[VoteRecord]:
    result = await db.execute(
        select(VoteRecord).where(VoteRecord.transaction_id == transaction_id)
    )
    return result.scalar_one_or_none()


async def list_user_votes(
    db: AsyncSession,
    user_id: str,
    category_id: str | None = None
) -> List[VoteRecord]:
    query = select(VoteRecord).where(VoteRecord.user_id == user_id)
    if category_id:
        query = query.where(VoteRecord.category_id == category_id)
    result = await db.execute(query.order_by(VoteRecord.created_at.desc()))
    return list(result.scalars().all())


async def commit_vote(
    db: AsyncSession,
    user_id: str,
    category_id: str,
    nominee_id: str,
    transaction_ref: str
) -> VoteRecord:
    """
    Record a vote backed by a successful payment, as one unit.

    Raises:
        DuplicateVote: (user, category) already has a vote. Callers treat
            this as already committed.
        PaymentNotConfirmed: the transaction is missing or not `success`.
        MetadataMismatch: the transaction was paid for a different
            user/category/nominee.
    """
    existing = await get_user_vote(db, user_id, category_id)
    if existing is not None:
        raise DuplicateVote(existing)

    transaction = await get_transaction(db, transaction_ref)
    if transaction is None or transaction.status != PaymentStatus.SUCCESS:
        raise PaymentNotConfirmed()

    intent = {
        "user_id": transaction.user_id,
        "category_id": transaction.category_id,
        "nominee_id": transaction.nominee_id,
    }
    requested = {"user_id": user_id, "category_id": category_id, "nominee_id": nominee_id}
    if intent != requested:
        raise MetadataMismatch(detail={"recorded": intent, "requested": requested})

    vote = VoteRecord(
        user_id=user_id,
        category_id=category_id,
        nominee_id=nominee_id,
        transaction_id=transaction.id,
        amount=transaction.amount_paid if transaction.amount_paid is not None else transaction.amount
    )
    db.add(vote)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent commit for the same (user, category) won
        await db.rollback()
        winner = await get_user_vote(db, user_id, category_id)
        logger.info(f"Concurrent vote commit for user {user_id} in {category_id} resolved as duplicate")
        raise DuplicateVote(winner)

    await db.refresh(vote)
    logger.info(f"Vote committed: user {user_id} -> nominee {nominee_id} in {category_id} ({transaction_ref})")
    return vote


# ===== Reconciliation =====

async def open_reconciliation_case(
    db: AsyncSession,
    transaction_id: str,
    user_id: str,
    kind: ReconciliationKind,
    detail: dict = None
) -> ReconciliationCase:
    """Record a paid transaction that needs manual follow-up. One open case per (transaction, kind)."""
    result = await db.execute(
        select(ReconciliationCase).where(
            ReconciliationCase.transaction_id == transaction_id,
            ReconciliationCase.kind == kind,
            ReconciliationCase.status == ReconciliationStatus.OPEN
        )
    )
    case = result.scalar_one_or_none()
    if case is not None:
        return case

    case = ReconciliationCase(
        transaction_id=transaction_id,
        user_id=user_id,
        kind=kind,
        detail=detail or {}
    )
    db.add(case)
    await db.commit()
    await db.refresh(case)

    logger.bind(case_id=case.id, transaction_id=transaction_id, user_id=user_id, detail=detail).error(
        f"Reconciliation case opened: {kind.value} for transaction {transaction_id}"
    )
    return case


async def has_blocking_case(db: AsyncSession, transaction_id: str) -> bool:
    """A case (open or resolved) that rules out committing this transaction's vote"""
    result = await db.execute(
        select(ReconciliationCase.id).where(
            ReconciliationCase.transaction_id == transaction_id,
            ReconciliationCase.kind.in_(BLOCKING_KINDS)
        )
    )
    return result.first() is not None


async def list_reconciliation_cases(
    db: AsyncSession,
    status: ReconciliationStatus | None = None
) -> List[ReconciliationCase]:
    query = select(ReconciliationCase)
    if status is not None:
        query = query.where(ReconciliationCase.status == status)
    result = await db.execute(query.order_by(ReconciliationCase.created_at.desc()))
    return list(result.scalars().all())


async def resolve_reconciliation_case(
    db: AsyncSession,
    case_id: str,
    admin_id: str,
    note: str
) -> ReconciliationCase:
    case = await db.get(ReconciliationCase, case_id)
    if case is None:
        raise NotFound("Reconciliation case not found")
    if case.status == ReconciliationStatus.RESOLVED:
        return case

    case.status = ReconciliationStatus.RESOLVED
    case.resolution_note = note
    case.resolved_by = admin_id
    case.resolved_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(case)

    logger.info(f"Reconciliation case {case_id} resolved by {admin_id}")
    return case
