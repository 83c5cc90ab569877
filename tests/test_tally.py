from decimal import Decimal

import pytest

from app.core.exceptions import NotFound
from app.models.nominee import Nominee, NomineeStatus
from app.services import tally_service

from conftest import add_paid_vote


async def test_counts_include_approved_nominees_without_votes(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_b)

    counts = await tally_service.get_counts(db_session, seed.open_category)

    assert [(c.nominee_id, c.count) for c in counts] == [(seed.nominee_b, 1), (seed.nominee_a, 0)]


async def test_counts_match_committed_votes(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_a)
    await add_paid_vote(db_session, seed.voter2, seed.open_category, seed.nominee_a)
    await add_paid_vote(db_session, seed.student, seed.open_category, seed.nominee_b)

    counts = {c.nominee_id: c.count for c in await tally_service.get_counts(db_session, seed.open_category)}

    assert counts == {seed.nominee_a: 2, seed.nominee_b: 1}
    assert await tally_service.get_count(db_session, seed.nominee_a) == 2


async def test_rejected_nominee_keeps_committed_votes(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_b)
    nominee = await db_session.get(Nominee, seed.nominee_b)
    nominee.status = NomineeStatus.REJECTED
    await db_session.commit()

    counts = {c.nominee_id: c.count for c in await tally_service.get_counts(db_session, seed.open_category)}

    assert counts[seed.nominee_b] == 1
    assert seed.pending_nominee not in counts


async def test_results_with_percentages_and_revenue(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_a)
    await add_paid_vote(db_session, seed.voter2, seed.open_category, seed.nominee_a)
    await add_paid_vote(db_session, seed.student, seed.open_category, seed.nominee_b, amount=Decimal("150.00"))

    results = await tally_service.get_results(db_session, seed.open_category)

    assert results["total_votes"] == 3
    assert results["is_voting_open"] is True
    first, second = results["results"]
    assert (first["rank"], first["nominee_id"], first["count"]) == (1, seed.nominee_a, 2)
    assert first["percentage"] == 66.67
    assert first["revenue"] == Decimal("200.00")
    assert second["percentage"] == 33.33
    assert second["revenue"] == Decimal("150.00")


async def test_empty_category_has_zero_percentages(db_session, seed):
    results = await tally_service.get_results(db_session, seed.open_category)

    assert results["total_votes"] == 0
    assert all(r["percentage"] == 0.0 for r in results["results"])


async def test_unknown_category(db_session, seed):
    with pytest.raises(NotFound):
        await tally_service.get_counts(db_session, "missing")


async def test_leaderboard_and_stats(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_a)
    await add_paid_vote(db_session, seed.voter2, seed.open_category, seed.nominee_a)
    await add_paid_vote(db_session, seed.voter, seed.closed_category, seed.closed_nominee)

    leaderboard = await tally_service.get_leaderboard(db_session)
    user_stats = await tally_service.get_user_stats(db_session, seed.voter)
    overall = await tally_service.get_overall_stats(db_session)

    assert [(e["nominee_id"], e["count"]) for e in leaderboard] == [
        (seed.nominee_a, 2), (seed.closed_nominee, 1)
    ]
    assert user_stats == {"total_votes_cast": 2, "total_amount_spent": Decimal("200.00")}
    assert overall["total_votes"] == 3
    assert overall["unique_voters"] == 2
    assert overall["total_revenue"] == Decimal("300.00")
    assert [c["total_votes"] for c in overall["by_category"]] == [2, 1]
