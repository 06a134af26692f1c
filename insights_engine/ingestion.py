"""Ingestion pipeline: full reload and incremental append of feedback records."""
import logging
from datetime import datetime
from typing import Any, Callable, List, Sequence

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aggregation import recompute_city_aggregate, recompute_keyword_aggregate
from config import config
from database import reset_sequences, table_counts
from fact_store import count_records, delete_all_records, insert_batch
from models import CityAggregate, FeedbackRecord, KeywordAggregate, utcnow
from schemas import ImportSummary, NormalizedRecord
from validator import RecordValidationError, normalize_record

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Validates raw records, inserts them in batches and refreshes the aggregates.

    Design decisions:
    - Each batch commits on its own; a failed batch is counted and skipped
    - Aggregates are always fully recomputed after inserting
    - No deduplication: resubmitting a record inserts it again
    - No locking: callers must not run two imports at once
    """

    def __init__(
        self,
        db: AsyncSession,
        batch_size: int = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize the pipeline.

        Args:
            db: Database session
            batch_size: Records per insert transaction (default from config)
            clock: Source of "now" for default dates
        """
        self.db = db
        self.batch_size = batch_size or config.IMPORT_BATCH_SIZE
        self.clock = clock

    async def incremental_append(self, records: Sequence[Any]) -> ImportSummary:
        """Add records without touching existing rows.

        Args:
            records: Raw inbound records

        Returns:
            ImportSummary for the run
        """
        previous_count = await count_records(self.db)
        logger.info(
            f"Starting incremental import of {len(records)} records "
            f"({previous_count} already stored)"
        )
        return await self._ingest(records, previous_count)

    async def full_reload(self, records: Sequence[Any]) -> ImportSummary:
        """Wipe the fact store and both aggregates, then load records.

        Args:
            records: Raw inbound records

        Returns:
            ImportSummary for the run (previous_count is always 0)
        """
        logger.info(f"Starting full reload with {len(records)} records")
        await self.wipe()
        return await self._ingest(records, previous_count=0)

    async def wipe(self) -> None:
        """Delete every fact and aggregate row and restart id sequences."""
        try:
            deleted = await delete_all_records(self.db)
            await self.db.execute(delete(KeywordAggregate))
            await self.db.execute(delete(CityAggregate))
            await reset_sequences(
                self.db,
                [
                    FeedbackRecord.__tablename__,
                    KeywordAggregate.__tablename__,
                    CityAggregate.__tablename__
                ]
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Cleared {deleted} records and both aggregate tables")

    def normalize_all(self, records: Sequence[Any]) -> tuple[List[NormalizedRecord], int]:
        """Normalize every record, counting the ones that cannot be read.

        Returns:
            (normalized records, error count)
        """
        normalized = []
        errors = 0

        for index, raw in enumerate(records):
            try:
                normalized.append(normalize_record(raw, clock=self.clock))
            except (RecordValidationError, ValueError, TypeError) as e:
                errors += 1
                logger.warning(f"Skipping record {index + 1}: {e}")

        return normalized, errors

    async def _ingest(self, records: Sequence[Any], previous_count: int) -> ImportSummary:
        normalized, error_count = self.normalize_all(records)

        inserted_count = 0
        total_batches = (len(normalized) + self.batch_size - 1) // self.batch_size

        for start in range(0, len(normalized), self.batch_size):
            batch = normalized[start:start + self.batch_size]
            batch_number = start // self.batch_size + 1

            try:
                inserted_count += await insert_batch(self.db, batch)
            except SQLAlchemyError as e:
                error_count += len(batch)
                logger.error(f"Batch {batch_number}/{total_batches} failed, {len(batch)} records not inserted: {e}")
                continue

            logger.info(
                f"Processed batch {batch_number}/{total_batches}: "
                f"inserted {inserted_count}, errors {error_count}"
            )

        await self.refresh_aggregates()

        final_counts = await table_counts(self.db)
        logger.info(
            f"Import completed: {inserted_count} inserted, {error_count} errors, "
            f"{final_counts.records} total records"
        )

        return ImportSummary(
            previous_count=previous_count,
            inserted_count=inserted_count,
            error_count=error_count,
            total_requested=len(records),
            final_count=final_counts.records,
            final_counts=final_counts
        )

    async def refresh_aggregates(self) -> tuple[int, int]:
        """Recompute both aggregate tables.

        Returns:
            (keyword rows, city rows)
        """
        keywords = await recompute_keyword_aggregate(self.db)
        cities = await recompute_city_aggregate(self.db)
        return keywords, cities
