"""Keyword and city aggregation over the fact store.

Both the stored aggregate tables and the on-demand filtered query are built
from group_statistics(), so a match-all filter always reproduces the stored
keyword aggregate exactly.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fact_store import filter_clauses
from models import CityAggregate, FeedbackRecord, KeywordAggregate, utcnow
from schemas import InsightFilter, KeywordAggregateRow
from sentiment import NEGATIVE, NEUTRAL, POSITIVE, dominant_sentiment, percentage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupStatistics:
    """Counts and percentages for one group of fact rows."""

    key: str
    total_count: int
    positive_count: int
    negative_count: int
    neutral_count: int
    last_seen: Optional[datetime]

    @property
    def positif_percentage(self) -> float:
        return percentage(self.positive_count, self.total_count)

    @property
    def negatif_percentage(self) -> float:
        return percentage(self.negative_count, self.total_count)

    @property
    def netral_percentage(self) -> float:
        return percentage(self.neutral_count, self.total_count)

    @property
    def dominant_sentiment(self) -> str:
        return dominant_sentiment(
            self.positif_percentage,
            self.negatif_percentage,
            self.netral_percentage
        )

    def columns(self) -> dict:
        """Aggregate-table column values (without the grouping key)."""
        return {
            "total_count": self.total_count,
            "positive_count": self.positive_count,
            "negative_count": self.negative_count,
            "neutral_count": self.neutral_count,
            "positif_percentage": self.positif_percentage,
            "negatif_percentage": self.negatif_percentage,
            "netral_percentage": self.netral_percentage,
            "last_seen": self.last_seen
        }


def _sentiment_count(label: str):
    return func.sum(case((FeedbackRecord.sentiment == label, 1), else_=0))


async def group_statistics(
    db: AsyncSession,
    group_column,
    predicate: Optional[InsightFilter] = None
) -> List[GroupStatistics]:
    """Group fact rows by a column and compute sentiment statistics.

    Rows with a NULL or empty grouping key are skipped. Results are ordered by
    total count (descending), then key.

    Args:
        db: Database session
        group_column: FeedbackRecord column to group by
        predicate: Optional filter; None or empty means all rows

    Returns:
        One GroupStatistics per non-empty group
    """
    total = func.count().label("total_count")
    stmt = (
        select(
            group_column.label("group_key"),
            total,
            _sentiment_count(POSITIVE).label("positive_count"),
            _sentiment_count(NEGATIVE).label("negative_count"),
            _sentiment_count(NEUTRAL).label("neutral_count"),
            func.max(FeedbackRecord.date).label("last_seen"),
        )
        .where(group_column.is_not(None), group_column != "", *filter_clauses(predicate))
        .group_by(group_column)
        .having(func.count() > 0)
        .order_by(total.desc(), group_column)
    )

    result = await db.execute(stmt)
    return [
        GroupStatistics(
            key=row.group_key,
            total_count=int(row.total_count),
            positive_count=int(row.positive_count or 0),
            negative_count=int(row.negative_count or 0),
            neutral_count=int(row.neutral_count or 0),
            last_seen=row.last_seen
        )
        for row in result
    ]


async def _replace_aggregate(db: AsyncSession, model, key_attr: str, groups: List[GroupStatistics]) -> int:
    now = utcnow()
    try:
        await db.execute(delete(model))
        db.add_all(
            model(**{key_attr: group.key}, **group.columns(), created_at=now)
            for group in groups
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Failed to rebuild {model.__tablename__}", exc_info=True)
        raise

    logger.info(f"Rebuilt {model.__tablename__}: {len(groups)} rows")
    return len(groups)


async def recompute_keyword_aggregate(db: AsyncSession) -> int:
    """Rebuild insight_summary from the whole fact store.

    Returns:
        Number of keyword rows written
    """
    groups = await group_statistics(db, FeedbackRecord.keyword)
    return await _replace_aggregate(db, KeywordAggregate, "keyword", groups)


async def recompute_city_aggregate(db: AsyncSession) -> int:
    """Rebuild kota_summary from the whole fact store.

    Returns:
        Number of city rows written
    """
    groups = await group_statistics(db, FeedbackRecord.city)
    return await _replace_aggregate(db, CityAggregate, "city", groups)


async def filtered_keyword_aggregate(
    db: AsyncSession,
    predicate: Optional[InsightFilter] = None
) -> List[KeywordAggregateRow]:
    """Keyword statistics over the rows matching a predicate.

    Computed fresh on every call and never persisted.
    """
    groups = await group_statistics(db, FeedbackRecord.keyword, predicate)
    return [
        KeywordAggregateRow(
            rank=rank,
            keyword=group.key,
            **group.columns(),
            dominant_sentiment=group.dominant_sentiment
        )
        for rank, group in enumerate(groups, start=1)
    ]
