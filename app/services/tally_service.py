# app/services/tally_service.py
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFound
from app.models.category import Category
from app.models.nominee import Nominee, NomineeStatus
from app.models.vote import VoteRecord

# Counts are aggregated from vote_records on every read, so a tally is
# never behind the ledger and can always be rebuilt from it.


@dataclass
class NomineeCount:
    nominee_id: str
    count: int


def _money(value) -> Decimal:
    # SQLite sums Numeric columns as floats
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def percentage(count: int, total: int) -> float:
    """Share of the category total, 0 when nobody has voted"""
    if total <= 0:
        return 0.0
    return round(count / total * 100, 2)


async def _vote_aggregates(db: AsyncSession, category_id: str) -> dict:
    result = await db.execute(
        select(
            VoteRecord.nominee_id,
            func.count(VoteRecord.id),
            func.coalesce(func.sum(VoteRecord.amount), 0)
        )
        .where(VoteRecord.category_id == category_id)
        .group_by(VoteRecord.nominee_id)
    )
    return {nominee_id: (count, _money(revenue)) for nominee_id, count, revenue in result.all()}


async def _category_nominees(db: AsyncSession, category_id: str) -> List[Nominee]:
    result = await db.execute(
        select(Nominee)
        .where(Nominee.category_id == category_id)
        .order_by(Nominee.display_order, Nominee.created_at, Nominee.id)
    )
    return list(result.scalars().all())


async def get_counts(db: AsyncSession, category_id: str) -> List[NomineeCount]:
    """Vote count per nominee, highest first. Approved nominees with no votes are included."""
    if await db.get(Category, category_id) is None:
        raise NotFound("Category not found")

    aggregates = await _vote_aggregates(db, category_id)
    nominees = await _category_nominees(db, category_id)

    counts = [
        NomineeCount(nominee_id=n.id, count=aggregates.get(n.id, (0, 0))[0])
        for n in nominees
        # a nominee rejected after votes were cast keeps its committed votes visible
        if n.status == NomineeStatus.APPROVED or n.id in aggregates
    ]
    # sort is stable, display order breaks ties
    counts.sort(key=lambda c: -c.count)
    return counts


async def get_count(db: AsyncSession, nominee_id: str) -> int:
    result = await db.execute(
        select(func.count(VoteRecord.id)).where(VoteRecord.nominee_id == nominee_id)
    )
    return result.scalar_one()


async def get_nominee_stats(db: AsyncSession, nominee_id: str) -> dict:
    """Totals, share and rank of one nominee within its category"""
    nominee = await db.get(Nominee, nominee_id)
    if nominee is None:
        raise NotFound("Nominee not found")
    category = await db.get(Category, nominee.category_id)

    total_votes = await get_count(db, nominee_id)
    totals = await db.execute(
        select(
            func.coalesce(func.sum(VoteRecord.amount), 0),
            func.min(VoteRecord.created_at),
            func.max(VoteRecord.created_at)
        ).where(VoteRecord.nominee_id == nominee_id)
    )
    revenue, first_vote_at, last_vote_at = totals.one()

    counts = await get_counts(db, category.id)
    ranks = {c.nominee_id: rank for rank, c in enumerate(counts, start=1)}

    return {
        "nominee_id": nominee.id,
        "name": nominee.display_name,
        "status": nominee.status,
        "category_id": category.id,
        "category_name": category.name,
        "total_votes": total_votes,
        "total_revenue": _money(revenue),
        "percentage": percentage(total_votes, sum(c.count for c in counts)),
        "rank": ranks.get(nominee.id),
        "total_nominees_in_category": len(counts),
        "first_vote_at": first_vote_at,
        "last_vote_at": last_vote_at,
    }


async def get_results(db: AsyncSession, category_id: str) -> dict:
    """Counts with percentages, revenue and rank"""
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFound("Category not found")

    aggregates = await _vote_aggregates(db, category_id)
    nominees = {n.id: n for n in await _category_nominees(db, category_id)}
    counts = await get_counts(db, category_id)
    total = sum(c.count for c in counts)

    results = []
    for rank, item in enumerate(counts, start=1):
        nominee = nominees[item.nominee_id]
        revenue = aggregates.get(item.nominee_id, (0, Decimal("0")))[1]
        results.append({
            "rank": rank,
            "nominee_id": item.nominee_id,
            "name": nominee.display_name,
            "image_url": nominee.image_url,
            "count": item.count,
            "percentage": percentage(item.count, total),
            "revenue": _money(revenue),
        })

    return {
        "category_id": category.id,
        "category_name": category.name,
        "is_voting_open": category.is_voting_open(),
        "total_votes": total,
        "results": results,
    }


async def get_leaderboard(db: AsyncSession, limit: int = 50) -> List[dict]:
    """Top nominees across all categories"""
    vote_count = func.count(VoteRecord.id).label("vote_count")
    result = await db.execute(
        select(
            Nominee.id,
            Nominee.display_name,
            Category.id,
            Category.name,
            vote_count,
            func.coalesce(func.sum(VoteRecord.amount), 0)
        )
        .join(VoteRecord, VoteRecord.nominee_id == Nominee.id)
        .join(Category, Category.id == Nominee.category_id)
        .group_by(Nominee.id, Nominee.display_name, Category.id, Category.name)
        .order_by(vote_count.desc(), Nominee.id)
        .limit(limit)
    )
    return [
        {
            "rank": rank,
            "nominee_id": nominee_id,
            "name": name,
            "category_id": category_id,
            "category_name": category_name,
            "count": count,
            "revenue": _money(revenue),
        }
        for rank, (nominee_id, name, category_id, category_name, count, revenue)
        in enumerate(result.all(), start=1)
    ]


async def get_user_stats(db: AsyncSession, user_id: str) -> dict:
    """totalVotesCast / totalAmountSpent, derived from the ledger"""
    result = await db.execute(
        select(
            func.count(VoteRecord.id),
            func.coalesce(func.sum(VoteRecord.amount), 0)
        ).where(VoteRecord.user_id == user_id)
    )
    count, spent = result.one()
    return {"total_votes_cast": count, "total_amount_spent": _money(spent)}


async def get_overall_stats(db: AsyncSession) -> dict:
    totals = await db.execute(
        select(
            func.count(VoteRecord.id),
            func.coalesce(func.sum(VoteRecord.amount), 0),
            func.count(func.distinct(VoteRecord.user_id))
        )
    )
    total_votes, revenue, unique_voters = totals.one()

    per_category = await db.execute(
        select(
            Category.id,
            Category.name,
            func.count(VoteRecord.id),
            func.coalesce(func.sum(VoteRecord.amount), 0)
        )
        .outerjoin(VoteRecord, VoteRecord.category_id == Category.id)
        .group_by(Category.id, Category.name, Category.display_order)
        .order_by(Category.display_order, Category.name)
    )

    return {
        "total_votes": total_votes,
        "total_revenue": _money(revenue),
        "unique_voters": unique_voters,
        "by_category": [
            {"category_id": cid, "name": name, "total_votes": votes, "total_revenue": _money(rev)}
            for cid, name, votes, rev in per_category.all()
        ],
    }
