import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    DuplicateVote,
    InvalidTransition,
    MetadataMismatch,
    NotFound,
    PaymentNotConfirmed,
)
from app.models.payment import PaymentEvent, PaymentStatus
from app.models.reconciliation import ReconciliationKind, ReconciliationStatus
from app.models.vote import VoteRecord
from app.services import ledger_service

from conftest import make_transaction


async def _vote_count(db) -> int:
    return (await db.execute(select(func.count(VoteRecord.id)))).scalar_one()


async def test_transitions_only_move_forward(db_session, seed):
    tx = await make_transaction(db_session, seed.voter, seed.open_category, seed.nominee_a)

    assert await ledger_service.transition(db_session, tx, PaymentStatus.PENDING, "poll") is True
    assert await ledger_service.transition(db_session, tx, PaymentStatus.PENDING, "poll") is False
    assert await ledger_service.transition(
        db_session, tx, PaymentStatus.SUCCESS, "webhook", amount_paid=Decimal("100.00")
    ) is True

    with pytest.raises(InvalidTransition):
        await ledger_service.transition(db_session, tx, PaymentStatus.FAILED, "poll")
    with pytest.raises(InvalidTransition):
        await ledger_service.transition(db_session, tx, PaymentStatus.PENDING, "poll")

    refreshed = await ledger_service.get_transaction(db_session, tx.reference)
    assert refreshed.status == PaymentStatus.SUCCESS
    assert refreshed.amount_paid == Decimal("100.00")

    events = (await db_session.execute(
        select(PaymentEvent.to_status).where(PaymentEvent.transaction_id == tx.id)
    )).scalars().all()
    assert sorted(e.value for e in events) == ["pending", "success"]


async def test_stale_transition_is_not_applied_twice(db_session, session_factory, seed):
    tx = await make_transaction(db_session, seed.voter, seed.open_category, seed.nominee_a)

    # another confirmer resolves it first through its own session
    async with session_factory() as other:
        other_tx = await ledger_service.get_transaction(other, tx.reference)
        await ledger_service.transition(other, other_tx, PaymentStatus.FAILED, "webhook")

    # our copy still says initialized
    with pytest.raises(InvalidTransition):
        await ledger_service.transition(db_session, tx, PaymentStatus.SUCCESS, "poll")
    assert tx.status == PaymentStatus.FAILED


async def test_no_vote_without_successful_payment(db_session, seed):
    tx = await make_transaction(db_session, seed.voter, seed.open_category, seed.nominee_a)

    with pytest.raises(PaymentNotConfirmed):
        await ledger_service.commit_vote(db_session, seed.voter, seed.open_category, seed.nominee_a, tx.reference)
    with pytest.raises(PaymentNotConfirmed):
        await ledger_service.commit_vote(db_session, seed.voter, seed.open_category, seed.nominee_a, "CV-NOPE")

    assert await _vote_count(db_session) == 0


async def test_commit_rejects_intent_mismatch(db_session, seed):
    tx = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )

    with pytest.raises(MetadataMismatch) as exc_info:
        await ledger_service.commit_vote(db_session, seed.voter, seed.open_category, seed.nominee_b, tx.reference)

    assert exc_info.value.detail["recorded"]["nominee_id"] == seed.nominee_a
    assert exc_info.value.detail["requested"]["nominee_id"] == seed.nominee_b
    assert await _vote_count(db_session) == 0


async def test_commit_then_duplicate(db_session, seed):
    tx = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )

    vote = await ledger_service.commit_vote(db_session, seed.voter, seed.open_category, seed.nominee_a, tx.reference)

    assert vote.transaction_id == tx.id
    assert vote.amount == Decimal("100.00")

    with pytest.raises(DuplicateVote) as exc_info:
        await ledger_service.commit_vote(db_session, seed.voter, seed.open_category, seed.nominee_a, tx.reference)
    assert exc_info.value.existing.id == vote.id
    assert await _vote_count(db_session) == 1


async def test_database_enforces_one_vote_per_category(db_session, seed):
    first = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )
    second = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_b, status=PaymentStatus.SUCCESS
    )
    db_session.add(VoteRecord(
        user_id=seed.voter, category_id=seed.open_category, nominee_id=seed.nominee_a,
        transaction_id=first.id, amount=Decimal("100.00")
    ))
    await db_session.commit()

    db_session.add(VoteRecord(
        user_id=seed.voter, category_id=seed.open_category, nominee_id=seed.nominee_b,
        transaction_id=second.id, amount=Decimal("100.00")
    ))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


async def test_concurrent_commit_loses_to_winner(db_session, session_factory, seed, monkeypatch):
    first = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )
    second = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_b, status=PaymentStatus.SUCCESS
    )
    first_id, second_ref = first.id, second.reference

    async with session_factory() as winner_session:
        await ledger_service.commit_vote(
            winner_session, seed.voter, seed.open_category, seed.nominee_a, first.reference
        )

    # the loser's early check ran before the winner committed
    real_get_user_vote = ledger_service.get_user_vote
    calls = []

    async def stale_then_real(db, user_id, category_id):
        calls.append(user_id)
        if len(calls) == 1:
            return None
        return await real_get_user_vote(db, user_id, category_id)

    monkeypatch.setattr(ledger_service, "get_user_vote", stale_then_real)

    async with session_factory() as loser_session:
        with pytest.raises(DuplicateVote) as exc_info:
            await ledger_service.commit_vote(
                loser_session, seed.voter, seed.open_category, seed.nominee_b, second_ref
            )

    assert exc_info.value.existing.transaction_id == first_id
    assert await _vote_count(db_session) == 1


async def test_simultaneous_commits_for_different_nominees(db_session, session_factory, seed):
    for_a = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )
    for_b = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_b, status=PaymentStatus.SUCCESS
    )

    async def commit(nominee_id, reference):
        async with session_factory() as session:
            return await ledger_service.commit_vote(
                session, seed.voter, seed.open_category, nominee_id, reference
            )

    outcomes = await asyncio.gather(
        commit(seed.nominee_a, for_a.reference),
        commit(seed.nominee_b, for_b.reference),
        return_exceptions=True
    )

    votes = [o for o in outcomes if isinstance(o, VoteRecord)]
    duplicates = [o for o in outcomes if isinstance(o, DuplicateVote)]
    assert len(votes) == 1
    assert len(duplicates) == 1
    assert duplicates[0].existing.id == votes[0].id
    assert await _vote_count(db_session) == 1


async def test_reconciliation_case_lifecycle(db_session, seed):
    tx = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )

    case = await ledger_service.open_reconciliation_case(
        db_session, tx.id, seed.voter, ReconciliationKind.COMMIT_REJECTED, {"error": "test"}
    )
    again = await ledger_service.open_reconciliation_case(
        db_session, tx.id, seed.voter, ReconciliationKind.COMMIT_REJECTED, {"error": "test"}
    )

    assert again.id == case.id
    assert await ledger_service.has_blocking_case(db_session, tx.id) is True
    assert len(await ledger_service.list_reconciliation_cases(db_session, ReconciliationStatus.OPEN)) == 1

    resolved = await ledger_service.resolve_reconciliation_case(db_session, case.id, seed.admin, "refunded")

    assert resolved.status == ReconciliationStatus.RESOLVED
    assert resolved.resolved_by == seed.admin
    assert await ledger_service.list_reconciliation_cases(db_session, ReconciliationStatus.OPEN) == []
    # a resolved rejection still blocks an automatic commit
    assert await ledger_service.has_blocking_case(db_session, tx.id) is True

    with pytest.raises(NotFound):
        await ledger_service.resolve_reconciliation_case(db_session, "missing", seed.admin, "x")


async def test_duplicate_payment_case_does_not_block(db_session, seed):
    tx = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )
    await ledger_service.open_reconciliation_case(
        db_session, tx.id, seed.voter, ReconciliationKind.DUPLICATE_PAYMENT, {}
    )

    assert await ledger_service.has_blocking_case(db_session, tx.id) is False


async def test_uncommitted_successes(db_session, seed):
    orphan = await make_transaction(
        db_session, seed.voter, seed.open_category, seed.nominee_a, status=PaymentStatus.SUCCESS
    )
    committed = await make_transaction(
        db_session, seed.voter2, seed.open_category, seed.nominee_b, status=PaymentStatus.SUCCESS
    )
    await make_transaction(db_session, seed.voter2, seed.closed_category, seed.closed_nominee)
    await ledger_service.commit_vote(
        db_session, seed.voter2, seed.open_category, seed.nominee_b, committed.reference
    )

    pending = await ledger_service.list_uncommitted_successes(db_session)

    assert [t.reference for t in pending] == [orphan.reference]
