from datetime import datetime, timedelta, timezone

from app.models.category import Category
from app.services import eligibility_service
from app.services.eligibility_service import IneligibleReason

from conftest import add_paid_vote

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


async def test_open_category_is_eligible(db_session, seed):
    result = await eligibility_service.check_eligibility(db_session, seed.voter, seed.open_category, NOW)

    assert result.eligible is True
    assert result.reason is None


async def test_unknown_category(db_session, seed):
    result = await eligibility_service.check_eligibility(db_session, seed.voter, "missing", NOW)

    assert result.reason == IneligibleReason.CATEGORY_NOT_FOUND


async def test_archived_category(db_session, seed):
    category = await db_session.get(Category, seed.open_category)
    category.is_active = False
    await db_session.commit()

    result = await eligibility_service.check_eligibility(db_session, seed.voter, seed.open_category, NOW)

    assert result.reason == IneligibleReason.CATEGORY_INACTIVE


async def test_voting_switched_off(db_session, seed):
    result = await eligibility_service.check_eligibility(db_session, seed.voter, seed.closed_category, NOW)

    assert result.eligible is False
    assert result.reason == IneligibleReason.VOTING_CLOSED
    assert result.message == "Voting is not open for this category"


async def test_voting_window_not_started_and_ended(db_session, seed):
    category = await db_session.get(Category, seed.open_category)
    category.voting_start_date = NOW + timedelta(days=1)
    category.voting_end_date = NOW + timedelta(days=7)
    await db_session.commit()

    early = await eligibility_service.check_eligibility(db_session, seed.voter, seed.open_category, NOW)
    inside = await eligibility_service.check_eligibility(
        db_session, seed.voter, seed.open_category, NOW + timedelta(days=2)
    )
    late = await eligibility_service.check_eligibility(
        db_session, seed.voter, seed.open_category, NOW + timedelta(days=8)
    )

    assert early.reason == IneligibleReason.VOTING_NOT_STARTED
    assert inside.eligible is True
    assert late.reason == IneligibleReason.VOTING_ENDED


async def test_already_voted(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_a)

    result = await eligibility_service.check_eligibility(db_session, seed.voter, seed.open_category, NOW)
    other_user = await eligibility_service.check_eligibility(db_session, seed.voter2, seed.open_category, NOW)

    assert result.reason == IneligibleReason.ALREADY_VOTED
    assert other_user.eligible is True


async def test_inactive_account(db_session, seed):
    result = await eligibility_service.check_eligibility(db_session, seed.inactive, seed.open_category, NOW)

    assert result.reason == IneligibleReason.ACCOUNT_INACTIVE


async def test_first_failing_check_wins(db_session, seed):
    # closed category and an inactive account: the category check runs first
    result = await eligibility_service.check_eligibility(db_session, seed.inactive, seed.closed_category, NOW)

    assert result.reason == IneligibleReason.VOTING_CLOSED


async def test_voted_category_ids(db_session, seed):
    await add_paid_vote(db_session, seed.voter, seed.open_category, seed.nominee_b)

    assert await eligibility_service.get_voted_category_ids(db_session, seed.voter) == {seed.open_category}
    assert await eligibility_service.get_voted_category_ids(db_session, seed.voter2) == set()
