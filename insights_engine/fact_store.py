"""Fact store operations over the employee_insights table."""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import FeedbackRecord
from schemas import InsightFilter, NormalizedRecord, RecordFilter

logger = logging.getLogger(__name__)

SEARCHABLE_COLUMNS = (
    FeedbackRecord.original_insight,
    FeedbackRecord.sentence_insight,
    FeedbackRecord.keyword,
)


def like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def filter_clauses(predicate: Optional[InsightFilter]) -> list:
    """Build WHERE clauses for a filter predicate.

    Date bounds are inclusive; date_to covers the whole day.
    """
    if predicate is None:
        return []

    clauses = []
    if predicate.search:
        pattern = like_pattern(predicate.search)
        clauses.append(or_(*(column.ilike(pattern, escape="\\") for column in SEARCHABLE_COLUMNS)))

    if predicate.sentiment:
        clauses.append(FeedbackRecord.sentiment == predicate.sentiment)

    if predicate.date_from:
        start = datetime(predicate.date_from.year, predicate.date_from.month, predicate.date_from.day)
        clauses.append(FeedbackRecord.date >= start)

    if predicate.date_to:
        end = datetime(predicate.date_to.year, predicate.date_to.month, predicate.date_to.day)
        clauses.append(FeedbackRecord.date < end + timedelta(days=1))

    if isinstance(predicate, RecordFilter):
        if predicate.city:
            clauses.append(FeedbackRecord.city == predicate.city)
        if predicate.source:
            clauses.append(FeedbackRecord.source == predicate.source)

    return clauses


async def count_records(db: AsyncSession, predicate: Optional[InsightFilter] = None) -> int:
    """Number of fact rows matching the predicate."""
    stmt = select(func.count()).select_from(FeedbackRecord).where(*filter_clauses(predicate))
    return (await db.scalar(stmt)) or 0


async def insert_batch(db: AsyncSession, records: Sequence[NormalizedRecord]) -> int:
    """Insert one batch of normalized records as a single transaction.

    Args:
        db: Database session
        records: Normalized records

    Returns:
        Number of rows inserted

    Raises:
        SQLAlchemyError: If the batch could not be committed (already rolled back)
    """
    if not records:
        return 0

    db.add_all(FeedbackRecord(**record.model_dump()) for record in records)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return len(records)


async def delete_all_records(db: AsyncSession) -> int:
    """Delete every fact row. Runs in the caller's transaction."""
    result = await db.execute(delete(FeedbackRecord))
    return result.rowcount or 0


async def query_records_page(
    db: AsyncSession,
    predicate: Optional[RecordFilter],
    page: int,
    limit: int
) -> tuple[List[FeedbackRecord], int]:
    """Return one page of raw records (newest first) and the filtered total."""
    clauses = filter_clauses(predicate)
    total = await count_records(db, predicate)

    stmt = (
        select(FeedbackRecord)
        .where(*clauses)
        .order_by(FeedbackRecord.date.desc(), FeedbackRecord.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def records_for_keyword(
    db: AsyncSession,
    keyword: str,
    predicate: Optional[InsightFilter] = None,
    limit: int = 50
) -> List[FeedbackRecord]:
    """Raw records behind one keyword, newest first."""
    stmt = (
        select(FeedbackRecord)
        .where(FeedbackRecord.keyword == keyword, *filter_clauses(predicate))
        .order_by(FeedbackRecord.date.desc(), FeedbackRecord.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
