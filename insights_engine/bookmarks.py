"""Bookmarks of feedback records, keyed by (record id, keyword label)."""
import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Bookmark, KeywordAggregate

logger = logging.getLogger(__name__)


class DuplicateBookmarkError(Exception):
    """Raised when the (insight_id, insight_title) pair is already bookmarked."""


async def find_bookmark(db: AsyncSession, insight_id: int, insight_title: str) -> Optional[Bookmark]:
    stmt = select(Bookmark).where(
        Bookmark.insight_id == insight_id,
        Bookmark.insight_title == insight_title
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def add_bookmark(db: AsyncSession, insight_id: int, insight_title: str) -> Bookmark:
    """Bookmark a record under a keyword label.

    Args:
        db: Database session
        insight_id: Id of the bookmarked record
        insight_title: Keyword the record was bookmarked under

    Returns:
        The created Bookmark

    Raises:
        DuplicateBookmarkError: If the pair is already bookmarked
    """
    if await find_bookmark(db, insight_id, insight_title) is not None:
        raise DuplicateBookmarkError(f"Insight {insight_id} already bookmarked as '{insight_title}'")

    bookmark = Bookmark(insight_id=insight_id, insight_title=insight_title)
    db.add(bookmark)
    try:
        await db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent insert of the same pair
        await db.rollback()
        raise DuplicateBookmarkError(f"Insight {insight_id} already bookmarked as '{insight_title}'") from e

    await db.refresh(bookmark)
    logger.info(f"Bookmarked insight {insight_id} as '{insight_title}'")
    return bookmark


async def list_bookmarks(db: AsyncSession) -> List[dict]:
    """All bookmarks, newest first, with the keyword statistics they point at.

    Bookmarks whose keyword no longer has an aggregate row are still listed,
    with null statistics.
    """
    stmt = (
        select(Bookmark, KeywordAggregate)
        .outerjoin(KeywordAggregate, KeywordAggregate.keyword == Bookmark.insight_title)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
    )
    result = await db.execute(stmt)

    bookmarks = []
    for bookmark, aggregate in result:
        bookmarks.append({
            **bookmark.to_dict(),
            "total_count": aggregate.total_count if aggregate else None,
            "positif_percentage": aggregate.positif_percentage if aggregate else None,
            "negatif_percentage": aggregate.negatif_percentage if aggregate else None,
            "netral_percentage": aggregate.netral_percentage if aggregate else None,
            "dominant_sentiment": aggregate.dominant_sentiment if aggregate else None
        })
    return bookmarks


async def delete_bookmark(db: AsyncSession, bookmark_id: int) -> bool:
    """Delete a bookmark by id. Returns False if it did not exist."""
    result = await db.execute(delete(Bookmark).where(Bookmark.id == bookmark_id))
    await db.commit()
    return (result.rowcount or 0) > 0


async def delete_bookmark_for_insight(db: AsyncSession, insight_id: int, insight_title: str) -> bool:
    """Delete the bookmark for a (record id, keyword) pair. Returns False if absent."""
    result = await db.execute(
        delete(Bookmark).where(
            Bookmark.insight_id == insight_id,
            Bookmark.insight_title == insight_title
        )
    )
    await db.commit()
    return (result.rowcount or 0) > 0
