"""Read-only dashboard queries over the aggregate tables and the fact store."""
from typing import List, Optional

from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from fact_store import like_pattern
from models import CityAggregate, FeedbackRecord, KeywordAggregate
from sentiment import NEGATIVE, NEUTRAL, POSITIVE, percentage

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _by_total():
    return (KeywordAggregate.total_count.desc(), KeywordAggregate.keyword)


async def list_keyword_aggregates(
    db: AsyncSession,
    limit: Optional[int] = None,
    offset: int = 0
) -> List[KeywordAggregate]:
    """Stored keyword rows, largest first."""
    stmt = select(KeywordAggregate).order_by(*_by_total()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_keyword_aggregates(db: AsyncSession) -> int:
    return (await db.scalar(select(func.count()).select_from(KeywordAggregate))) or 0


async def top_keywords_by_sentiment(
    db: AsyncSession,
    sentiment: str,
    limit: int = 10,
    threshold: float = None
) -> List[KeywordAggregate]:
    """Keywords whose share of one sentiment is above the threshold.

    Args:
        db: Database session
        sentiment: positive or negative
        limit: Maximum rows
        threshold: Percentage the keyword must exceed (default from config)
    """
    threshold = config.TOP_INSIGHT_THRESHOLD if threshold is None else threshold
    column = {
        POSITIVE: KeywordAggregate.positif_percentage,
        NEGATIVE: KeywordAggregate.negatif_percentage,
    }[sentiment]

    stmt = (
        select(KeywordAggregate)
        .where(column > threshold)
        .order_by(column.desc(), KeywordAggregate.total_count.desc(), KeywordAggregate.keyword)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def search_keyword_aggregates(db: AsyncSession, word: str) -> List[KeywordAggregate]:
    """Stored keyword rows whose keyword contains a word."""
    stmt = (
        select(KeywordAggregate)
        .where(KeywordAggregate.keyword.ilike(like_pattern(word), escape="\\"))
        .order_by(*_by_total())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def dashboard_statistics(db: AsyncSession) -> dict:
    """Totals, sentiment ratios and highlights from the keyword aggregate."""
    totals = (await db.execute(
        select(
            func.count(KeywordAggregate.id),
            func.coalesce(func.sum(KeywordAggregate.total_count), 0),
            func.coalesce(func.sum(KeywordAggregate.positive_count), 0),
            func.coalesce(func.sum(KeywordAggregate.negative_count), 0),
            func.coalesce(func.sum(KeywordAggregate.neutral_count), 0),
        )
    )).one()
    total_insights, total_feedback, positive, negative, neutral = (int(v) for v in totals)
    total_all = positive + negative + neutral

    top_positive = await top_keywords_by_sentiment(db, POSITIVE, limit=5)
    top_negative = await top_keywords_by_sentiment(db, NEGATIVE, limit=5)
    all_insights = await list_keyword_aggregates(db)

    return {
        "total_insights": total_insights,
        "total_feedback": total_feedback,
        "positive_ratio": percentage(positive, total_all),
        "negative_ratio": percentage(negative, total_all),
        "neutral_ratio": percentage(neutral, total_all),
        "sentiment_distribution": {
            POSITIVE: positive,
            NEGATIVE: negative,
            NEUTRAL: neutral
        },
        "top_positive_insights": [row.to_dict() for row in top_positive],
        "top_negative_insights": [row.to_dict() for row in top_negative],
        "all_insights": [row.to_dict() for row in all_insights]
    }


async def record_statistics(db: AsyncSession) -> dict:
    """Employee and sentiment counts straight from the fact store."""
    employees = await db.scalar(
        select(func.count(distinct(FeedbackRecord.employee_name)))
        .where(FeedbackRecord.employee_name != "", FeedbackRecord.employee_name != config.UNKNOWN_LABEL)
    )
    row = (await db.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((FeedbackRecord.sentiment == POSITIVE, 1), else_=0)), 0),
            func.coalesce(func.sum(case((FeedbackRecord.sentiment == NEGATIVE, 1), else_=0)), 0),
            func.coalesce(func.sum(case((FeedbackRecord.sentiment == NEUTRAL, 1), else_=0)), 0),
        ).select_from(FeedbackRecord)
    )).one()

    return {
        "total_employees": employees or 0,
        "total_insights": int(row[0]),
        "positive_count": int(row[1]),
        "negative_count": int(row[2]),
        "neutral_count": int(row[3])
    }


async def monthly_trends(db: AsyncSession, months: int = 12) -> List[dict]:
    """Per-month sentiment counts for the latest months, oldest first."""
    year = func.extract("year", FeedbackRecord.date)
    month = func.extract("month", FeedbackRecord.date)

    stmt = (
        select(
            year.label("year"),
            month.label("month"),
            func.sum(case((FeedbackRecord.sentiment == POSITIVE, 1), else_=0)).label("positive"),
            func.sum(case((FeedbackRecord.sentiment == NEGATIVE, 1), else_=0)).label("negative"),
            func.sum(case((FeedbackRecord.sentiment == NEUTRAL, 1), else_=0)).label("neutral"),
            func.count().label("total"),
        )
        .group_by(year, month)
        .order_by(year.desc(), month.desc())
        .limit(months)
    )
    result = await db.execute(stmt)

    trends = []
    for row in result:
        year_value, month_value = int(row.year), int(row.month)
        trends.append({
            "month": f"{year_value:04d}-{month_value:02d}",
            "name": MONTH_NAMES[month_value - 1],
            "positive": int(row.positive),
            "negative": int(row.negative),
            "neutral": int(row.neutral),
            "total": int(row.total)
        })

    trends.reverse()
    return trends


async def list_city_aggregates(db: AsyncSession) -> List[CityAggregate]:
    """Stored city rows, largest first."""
    stmt = select(CityAggregate).order_by(CityAggregate.total_count.desc(), CityAggregate.city)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_city_aggregate(db: AsyncSession, city: str) -> Optional[CityAggregate]:
    result = await db.execute(select(CityAggregate).where(CityAggregate.city == city))
    return result.scalars().first()
