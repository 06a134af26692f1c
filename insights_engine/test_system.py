#!/usr/bin/env python3
"""
This file consolidates the engine tests:
- Unit tests for sentiment rules and record normalization
- Integration tests for the ingestion pipeline
- Aggregation consistency and conservation tests
- Filtered aggregation tests
- Narrative generator tests
"""
import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import database
import import_cli
import ingestion
from aggregation import (
    filtered_keyword_aggregate, group_statistics, recompute_city_aggregate, recompute_keyword_aggregate
)
from conftest import make_record
from database import build_engine, get_db_session, init_db, table_counts
from fact_store import count_records, query_records_page
from ingestion import IngestionPipeline
from models import CityAggregate, FeedbackRecord, KeywordAggregate
from narrative import TemplateConclusionGenerator, build_conclusion_context, generate_conclusion
from schemas import ConclusionRequest, InsightFilter, NormalizedRecord, RecordFilter
from sentiment import canonical_sentiment, dominant_sentiment, percentage
from validator import RecordValidationError, normalize_record, parse_date


def fixed_clock():
    return datetime(2024, 6, 1, 15, 45, 0)


async def stored_keywords(db):
    result = await db.execute(select(KeywordAggregate).order_by(KeywordAggregate.keyword))
    return {row.keyword: row for row in result.scalars().all()}


# ============================================================================
# UNIT TESTS - SENTIMENT RULES
# ============================================================================

class TestDominantSentiment:
    """Tests for the single dominant-sentiment rule."""

    def test_positive_majority(self):
        assert dominant_sentiment(70, 20, 10) == "positive"

    def test_negative_plurality(self):
        assert dominant_sentiment(33, 34, 33) == "negative"

    def test_all_zero_is_neutral(self):
        assert dominant_sentiment(0, 0, 0) == "neutral"

    def test_neutral_majority(self):
        assert dominant_sentiment(10, 20, 70) == "neutral"

    def test_positive_wins_tie_with_negative(self):
        assert dominant_sentiment(50, 50, 0) == "positive"

    def test_negative_wins_tie_with_neutral(self):
        assert dominant_sentiment(0, 50, 50) == "negative"

    def test_deterministic(self):
        """Same inputs always give the same answer."""
        results = {dominant_sentiment(40, 40, 20) for _ in range(10)}
        assert results == {"positive"}


class TestSentimentLabels:
    """Tests for label canonicalization and percentages."""

    def test_indonesian_aliases(self):
        assert canonical_sentiment("positif") == "positive"
        assert canonical_sentiment("NEGATIF") == "negative"
        assert canonical_sentiment(" netral ") == "neutral"

    def test_unknown_label(self):
        assert canonical_sentiment("mixed") is None
        assert canonical_sentiment(1) is None
        assert canonical_sentiment(None) is None

    def test_percentage_rounding(self):
        assert percentage(2, 3) == 66.67
        assert percentage(1, 3) == 33.33
        assert percentage(0, 3) == 0.0

    def test_percentage_of_empty_group(self):
        assert percentage(0, 0) == 0.0

    def test_percentage_rounds_half_up(self):
        """Exact halves round up, like SQL ROUND."""
        assert percentage(1, 800) == 0.13
        assert percentage(1, 8) == 12.5
        assert percentage(5, 16) == 31.25


# ============================================================================
# UNIT TESTS - RECORD NORMALIZATION
# ============================================================================

class TestRecordNormalization:
    """Tests for the best-effort validator."""

    def test_empty_record_gets_every_default(self):
        """A record with no fields is still fully populated."""
        record = normalize_record({}, clock=fixed_clock)

        assert record.source == "Unknown"
        assert record.employee_name == "Unknown"
        assert record.region == "Unknown"
        assert record.city == "Unknown"
        assert record.keyword == "Unknown"
        assert record.original_insight == ""
        assert record.sentence_insight == ""
        assert record.sentiment == "neutral"
        assert record.date == datetime(2024, 6, 1)

    def test_upstream_field_names(self):
        record = normalize_record(make_record(keyword="gaji", sentiment="negatif", kota="Bandung"))

        assert record.source == "Survey Online"
        assert record.employee_name == "Ahmad Budi"
        assert record.region == "Jakarta Pusat"
        assert record.city == "Bandung"
        assert record.keyword == "gaji"
        assert record.sentiment == "negative"
        assert record.date == datetime(2024, 1, 15, 10, 30, 0)

    def test_canonical_field_names(self):
        record = normalize_record({
            "source": "Email",
            "employee_name": "Sari",
            "date": "2024-02-01",
            "region": "Witel Bogor",
            "city": "Bogor",
            "keyword": "fasilitas",
            "sentiment": "positive",
        })

        assert record.city == "Bogor"
        assert record.keyword == "fasilitas"
        assert record.sentiment == "positive"

    def test_blank_values_become_defaults(self):
        record = normalize_record(make_record(keyword="   ", kota=""), clock=fixed_clock)

        assert record.keyword == "Unknown"
        assert record.city == "Unknown"

    def test_invalid_sentiment_becomes_neutral(self):
        record = normalize_record(make_record(sentiment="mixed"))
        assert record.sentiment == "neutral"

    def test_unparseable_date_uses_clock(self):
        record = normalize_record(make_record(date="not a date"), clock=fixed_clock)
        assert record.date == datetime(2024, 6, 1)

    def test_numeric_values_are_stringified(self):
        record = normalize_record(make_record(keyword=42))
        assert record.keyword == "42"

    def test_non_mapping_record_rejected(self):
        with pytest.raises(RecordValidationError):
            normalize_record("not a record")

        with pytest.raises(RecordValidationError):
            normalize_record(None)

    def test_nested_field_rejected(self):
        with pytest.raises(RecordValidationError):
            normalize_record(make_record(keyword=["a", "b"]))

    def test_date_formats(self):
        assert parse_date("2024-03-05") == datetime(2024, 3, 5)
        assert parse_date("2024-03-05T08:15:00") == datetime(2024, 3, 5, 8, 15)
        assert parse_date("2024-03-05T08:15:00.123Z") == datetime(2024, 3, 5, 8, 15, 0, 123000)
        assert parse_date(date(2024, 3, 5)) == datetime(2024, 3, 5)
        assert parse_date("05/03/2024") is None
        assert parse_date(12345) is None

    def test_offset_dates_converted_to_utc(self):
        jakarta = timezone(timedelta(hours=7))

        assert parse_date("2024-01-31T23:30:00+07:00") == datetime(2024, 1, 31, 16, 30)
        assert parse_date(datetime(2024, 2, 1, 3, 0, tzinfo=jakarta)) == datetime(2024, 1, 31, 20, 0)


class TestFilterSchema:
    """Tests for filter predicate validation."""

    def test_empty_filter(self):
        assert InsightFilter().is_empty()
        assert InsightFilter(search="  ", sentiment="all").is_empty()

    def test_sentiment_alias(self):
        assert InsightFilter(sentiment="negatif").sentiment == "negative"

    def test_unknown_sentiment_rejected(self):
        with pytest.raises(ValidationError):
            InsightFilter(sentiment="angry")

    def test_reversed_date_range_rejected(self):
        with pytest.raises(ValidationError):
            InsightFilter(date_from="2024-02-01", date_to="2024-01-01")

    def test_query_parameter_names(self):
        predicate = RecordFilter(dateFrom="2024-01-01", dateTo="2024-01-31", kota="Bandung")

        assert predicate.date_from == date(2024, 1, 1)
        assert predicate.date_to == date(2024, 1, 31)
        assert predicate.city == "Bandung"


# ============================================================================
# INTEGRATION TESTS - INGESTION PIPELINE
# ============================================================================

class TestIngestionPipeline:
    """Test full reload and incremental append."""

    @pytest.mark.asyncio
    async def test_layanan_end_to_end(self, db_session):
        """Two positive and one negative record give 66.67 / 33.33 / 0.0."""
        records = [
            make_record(keyword="layanan", sentiment="positif"),
            make_record(keyword="layanan", sentiment="positif"),
            make_record(keyword="layanan", sentiment="negatif"),
        ]

        summary = await IngestionPipeline(db_session).full_reload(records)

        assert summary.inserted_count == 3
        assert summary.error_count == 0
        assert summary.final_count == 3

        row = (await stored_keywords(db_session))["layanan"]
        assert row.total_count == 3
        assert row.positive_count == 2
        assert row.negative_count == 1
        assert row.neutral_count == 0
        assert row.positif_percentage == 66.67
        assert row.negatif_percentage == 33.33
        assert row.netral_percentage == 0.0
        assert row.dominant_sentiment == "positive"

    @pytest.mark.asyncio
    async def test_malformed_record_counts_one_error(self, db_session):
        """One unreadable record in a batch of 100 costs exactly one error."""
        records = [make_record(keyword=f"kw{i % 7}") for i in range(99)]
        records.insert(50, "not a record")

        summary = await IngestionPipeline(db_session).full_reload(records)

        assert summary.total_requested == 100
        assert summary.error_count == 1
        assert summary.inserted_count == 99
        assert summary.final_count == 99

    @pytest.mark.asyncio
    async def test_failed_batch_is_skipped(self, db_session, monkeypatch):
        """A batch that fails to commit is counted and the next batch still runs."""
        real_insert = ingestion.insert_batch
        calls = {"n": 0}

        async def flaky_insert(db, batch):
            calls["n"] += 1
            if calls["n"] == 2:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return await real_insert(db, batch)

        monkeypatch.setattr(ingestion, "insert_batch", flaky_insert)

        records = [make_record(keyword=f"kw{i}") for i in range(5)]
        summary = await IngestionPipeline(db_session, batch_size=2).full_reload(records)

        assert calls["n"] == 3
        assert summary.inserted_count == 3
        assert summary.error_count == 2
        assert summary.final_count == 3
        assert summary.final_counts.keyword_aggregates == 3

    @pytest.mark.asyncio
    async def test_rejected_batch_rolls_back_and_continues(self, db_session, monkeypatch):
        """A batch the database refuses is rolled back and the session keeps working."""
        normalized = [normalize_record(make_record(keyword=f"kw{i}")) for i in range(5)]
        # Bypasses validation so the CHECK constraint rejects the second batch
        normalized[2] = NormalizedRecord.model_construct(**{**normalized[2].model_dump(), "sentiment": "bogus"})

        pipeline = IngestionPipeline(db_session, batch_size=2)
        monkeypatch.setattr(pipeline, "normalize_all", lambda records: (normalized, 0))

        summary = await pipeline.incremental_append([{}] * 5)

        assert summary.inserted_count == 3
        assert summary.error_count == 2
        assert summary.final_count == summary.previous_count + summary.inserted_count == 3

        keywords = (await db_session.execute(select(FeedbackRecord.keyword))).scalars().all()
        assert sorted(keywords) == ["kw0", "kw1", "kw4"]
        assert set(await stored_keywords(db_session)) == {"kw0", "kw1", "kw4"}

    @pytest.mark.asyncio
    async def test_batches_of_configured_size(self, db_session, monkeypatch):
        sizes = []
        real_insert = ingestion.insert_batch

        async def recording_insert(db, batch):
            sizes.append(len(batch))
            return await real_insert(db, batch)

        monkeypatch.setattr(ingestion, "insert_batch", recording_insert)

        await IngestionPipeline(db_session).full_reload([make_record() for _ in range(250)])

        assert sizes == [100, 100, 50]

    @pytest.mark.asyncio
    async def test_full_reload_with_empty_input(self, db_session):
        """Empty input leaves every table empty."""
        pipeline = IngestionPipeline(db_session)
        await pipeline.full_reload([make_record(), make_record(keyword="gaji", kota="Bandung")])

        summary = await pipeline.full_reload([])

        assert summary.final_count == 0
        assert summary.inserted_count == 0
        assert summary.final_counts.records == 0
        assert summary.final_counts.keyword_aggregates == 0
        assert summary.final_counts.city_aggregates == 0

    @pytest.mark.asyncio
    async def test_full_reload_restarts_ids(self, db_session):
        pipeline = IngestionPipeline(db_session)
        await pipeline.full_reload([make_record(), make_record(), make_record()])
        await pipeline.full_reload([make_record(keyword="gaji")])

        ids = (await db_session.execute(select(FeedbackRecord.id))).scalars().all()
        assert ids == [1]

    @pytest.mark.asyncio
    async def test_incremental_append_keeps_existing_rows(self, db_session):
        pipeline = IngestionPipeline(db_session)
        await pipeline.full_reload([make_record(sentiment="positif")])

        summary = await pipeline.incremental_append([
            make_record(sentiment="negatif"),
            make_record(keyword="gaji"),
        ])

        assert summary.previous_count == 1
        assert summary.inserted_count == 2
        assert summary.final_count == summary.previous_count + summary.inserted_count

        rows = await stored_keywords(db_session)
        assert rows["layanan"].total_count == 2
        assert rows["layanan"].dominant_sentiment == "positive"
        assert rows["gaji"].total_count == 1

    @pytest.mark.asyncio
    async def test_incremental_append_does_not_deduplicate(self, db_session):
        pipeline = IngestionPipeline(db_session)
        record = make_record()

        await pipeline.incremental_append([record])
        await pipeline.incremental_append([record])

        assert await count_records(db_session) == 2


# ============================================================================
# INTEGRATION TESTS - AGGREGATION
# ============================================================================

class TestAggregation:
    """Test the stored keyword and city aggregates."""

    @pytest.fixture
    async def loaded_session(self, db_session):
        records = [
            make_record(keyword="layanan", sentiment="positif", kota="Jakarta", date="2024-01-10"),
            make_record(keyword="layanan", sentiment="negatif", kota="Bandung", date="2024-02-10"),
            make_record(keyword="gaji", sentiment="negatif", kota="Jakarta", date="2024-02-15"),
            make_record(keyword="gaji", sentiment="netral", kota="Surabaya", date="2024-03-01"),
            make_record(keyword="fasilitas", sentiment="positif", kota="Jakarta", date="2024-03-20"),
            {"sentimen": "positif"},
        ]
        await IngestionPipeline(db_session).full_reload(records)
        return db_session

    @pytest.mark.asyncio
    async def test_keyword_counts_are_conserved(self, loaded_session):
        """Every record is counted under exactly one keyword."""
        rows = await stored_keywords(loaded_session)

        assert sum(row.total_count for row in rows.values()) == await count_records(loaded_session)
        for row in rows.values():
            assert row.total_count == row.positive_count + row.negative_count + row.neutral_count

    @pytest.mark.asyncio
    async def test_city_counts_are_conserved(self, loaded_session):
        result = await loaded_session.execute(select(CityAggregate))
        rows = {row.city: row for row in result.scalars().all()}

        assert set(rows) == {"Jakarta", "Bandung", "Surabaya", "Unknown"}
        assert rows["Jakarta"].total_count == 3
        assert sum(row.total_count for row in rows.values()) == await count_records(loaded_session)

    @pytest.mark.asyncio
    async def test_missing_keyword_grouped_as_unknown(self, loaded_session):
        rows = await stored_keywords(loaded_session)
        assert rows["Unknown"].total_count == 1
        assert rows["Unknown"].positive_count == 1

    @pytest.mark.asyncio
    async def test_percentages_add_up(self, loaded_session):
        for row in (await stored_keywords(loaded_session)).values():
            total = row.positif_percentage + row.negatif_percentage + row.netral_percentage
            assert abs(total - 100.0) <= 0.02

    @pytest.mark.asyncio
    async def test_last_seen_is_latest_date(self, loaded_session):
        rows = await stored_keywords(loaded_session)
        assert rows["gaji"].last_seen == datetime(2024, 3, 1)

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, loaded_session):
        """Recomputing twice yields the same rows."""
        def snapshot(rows):
            return {key: row.to_dict() | {"id": None, "created_at": None} for key, row in rows.items()}

        first = snapshot(await stored_keywords(loaded_session))
        await recompute_keyword_aggregate(loaded_session)
        await recompute_keyword_aggregate(loaded_session)
        second = snapshot(await stored_keywords(loaded_session))

        assert first == second

    @pytest.mark.asyncio
    async def test_recompute_replaces_stale_rows(self, loaded_session):
        loaded_session.add(KeywordAggregate(keyword="stale", total_count=99))
        await loaded_session.commit()

        count = await recompute_keyword_aggregate(loaded_session)

        rows = await stored_keywords(loaded_session)
        assert "stale" not in rows
        assert count == len(rows)

    @pytest.mark.asyncio
    async def test_recompute_on_empty_store(self, db_session):
        assert await recompute_keyword_aggregate(db_session) == 0
        assert await recompute_city_aggregate(db_session) == 0

    @pytest.mark.asyncio
    async def test_groups_ordered_by_total(self, loaded_session):
        groups = await group_statistics(loaded_session, FeedbackRecord.keyword)
        totals = [group.total_count for group in groups]
        assert totals == sorted(totals, reverse=True)


# ============================================================================
# INTEGRATION TESTS - FILTERED AGGREGATION
# ============================================================================

class TestFilteredAggregation:
    """Test on-demand keyword statistics over filtered records."""

    @pytest.fixture
    async def loaded_session(self, db_session):
        records = [
            make_record(keyword="layanan", sentiment="positif", date="2024-01-10 08:00:00",
                        originalInsight="Layanan IT sangat cepat"),
            make_record(keyword="layanan", sentiment="negatif", date="2024-01-31 23:30:00"),
            make_record(keyword="gaji", sentiment="negatif", date="2024-02-15"),
            make_record(keyword="gaji", sentiment="netral", date="2024-03-01"),
            make_record(keyword="fasilitas", sentiment="positif", date="2024-03-20",
                        sentenceInsight="Ruang kerja nyaman"),
        ]
        await IngestionPipeline(db_session).full_reload(records)
        return db_session

    @pytest.mark.asyncio
    async def test_empty_filter_matches_stored_aggregate(self, loaded_session):
        """With no filter the on-demand result equals the stored table."""
        stored = await stored_keywords(loaded_session)
        filtered = await filtered_keyword_aggregate(loaded_session, InsightFilter())

        assert {row.keyword for row in filtered} == set(stored)
        for row in filtered:
            expected = stored[row.keyword]
            assert row.total_count == expected.total_count
            assert row.positive_count == expected.positive_count
            assert row.negative_count == expected.negative_count
            assert row.neutral_count == expected.neutral_count
            assert row.positif_percentage == expected.positif_percentage
            assert row.negatif_percentage == expected.negatif_percentage
            assert row.netral_percentage == expected.netral_percentage
            assert row.last_seen == expected.last_seen
            assert row.dominant_sentiment == expected.dominant_sentiment

    @pytest.mark.asyncio
    async def test_none_filter_matches_empty_filter(self, loaded_session):
        assert (
            await filtered_keyword_aggregate(loaded_session, None)
            == await filtered_keyword_aggregate(loaded_session, InsightFilter())
        )

    @pytest.mark.asyncio
    async def test_rank_is_one_based(self, loaded_session):
        rows = await filtered_keyword_aggregate(loaded_session)
        assert [row.rank for row in rows] == list(range(1, len(rows) + 1))

    @pytest.mark.asyncio
    async def test_sentiment_filter(self, loaded_session):
        rows = await filtered_keyword_aggregate(loaded_session, InsightFilter(sentiment="negatif"))

        assert {row.keyword for row in rows} == {"layanan", "gaji"}
        for row in rows:
            assert row.negative_count == row.total_count
            assert row.negatif_percentage == 100.0
            assert row.dominant_sentiment == "negative"

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive_across_text_fields(self, loaded_session):
        by_original = await filtered_keyword_aggregate(loaded_session, InsightFilter(search="LAYANAN it"))
        by_sentence = await filtered_keyword_aggregate(loaded_session, InsightFilter(search="ruang KERJA"))
        by_keyword = await filtered_keyword_aggregate(loaded_session, InsightFilter(search="GAJ"))

        assert [(row.keyword, row.total_count) for row in by_original] == [("layanan", 1)]
        assert [row.keyword for row in by_sentence] == ["fasilitas"]
        assert [(row.keyword, row.total_count) for row in by_keyword] == [("gaji", 2)]

    @pytest.mark.asyncio
    async def test_search_treats_wildcards_literally(self, loaded_session):
        rows = await filtered_keyword_aggregate(loaded_session, InsightFilter(search="%"))
        assert rows == []

    @pytest.mark.asyncio
    async def test_date_to_includes_whole_day(self, loaded_session):
        rows = await filtered_keyword_aggregate(
            loaded_session,
            InsightFilter(date_from="2024-01-01", date_to="2024-01-31")
        )

        assert [(row.keyword, row.total_count) for row in rows] == [("layanan", 2)]

    @pytest.mark.asyncio
    async def test_combined_filters(self, loaded_session):
        rows = await filtered_keyword_aggregate(
            loaded_session,
            InsightFilter(sentiment="negative", date_from="2024-02-01")
        )

        assert [(row.keyword, row.total_count) for row in rows] == [("gaji", 1)]

    @pytest.mark.asyncio
    async def test_no_match_returns_empty(self, loaded_session):
        rows = await filtered_keyword_aggregate(loaded_session, InsightFilter(date_from="2030-01-01"))
        assert rows == []

    @pytest.mark.asyncio
    async def test_filter_does_not_touch_stored_aggregate(self, loaded_session):
        before = {key: row.total_count for key, row in (await stored_keywords(loaded_session)).items()}
        await filtered_keyword_aggregate(loaded_session, InsightFilter(sentiment="positive"))
        loaded_session.expire_all()
        after = {key: row.total_count for key, row in (await stored_keywords(loaded_session)).items()}

        assert before == after

    @pytest.mark.asyncio
    async def test_record_page_filters_by_city(self, db_session):
        await IngestionPipeline(db_session).full_reload([
            make_record(kota="Jakarta", date="2024-01-01"),
            make_record(kota="Bandung", date="2024-01-02"),
            make_record(kota="Jakarta", date="2024-01-03"),
        ])

        records, total = await query_records_page(db_session, RecordFilter(city="Jakarta"), page=1, limit=1)

        assert total == 2
        assert len(records) == 1
        assert records[0].date == datetime(2024, 1, 3)


# ============================================================================
# INTEGRATION TESTS - FILE DATABASE
# ============================================================================

class TestFileDatabase:
    """Test engine pooling and concurrent sessions on a file-backed database."""

    @pytest.fixture
    async def file_engine(self, tmp_path):
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'insights.db'}")
        await init_db(engine)
        yield engine
        await engine.dispose()

    def test_memory_database_shares_one_connection(self):
        engine = build_engine("sqlite+aiosqlite:///:memory:")
        assert isinstance(engine.sync_engine.pool, StaticPool)

    def test_file_database_pools_connections(self, tmp_path):
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pooled.db'}")
        assert not isinstance(engine.sync_engine.pool, StaticPool)

    @pytest.mark.asyncio
    async def test_read_during_refresh_does_not_undo_it(self, file_engine, monkeypatch):
        """A filtered read that overlaps an uncommitted refresh leaves the refresh intact."""
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as db:
            await IngestionPipeline(db).full_reload([make_record(keyword=f"kw{i}") for i in range(5)])

        deleted = asyncio.Event()
        real_commit = AsyncSession.commit

        async def slow_commit(self):
            # The refresh has issued its DELETE; hold the transaction open
            deleted.set()
            await asyncio.sleep(0.2)
            await real_commit(self)

        monkeypatch.setattr(AsyncSession, "commit", slow_commit)

        async def refresh():
            async with factory() as db:
                return await recompute_keyword_aggregate(db)

        async def read():
            await deleted.wait()
            async with factory() as db:
                return await filtered_keyword_aggregate(db)

        written, rows = await asyncio.gather(refresh(), read())

        assert written == 5
        assert [row.keyword for row in rows] == ["kw0", "kw1", "kw2", "kw3", "kw4"]
        async with factory() as db:
            assert set(await stored_keywords(db)) == {"kw0", "kw1", "kw2", "kw3", "kw4"}


# ============================================================================
# NARRATIVE CONCLUSIONS
# ============================================================================

class FailingGenerator:
    name = "ai"
    available = True

    async def generate(self, context):
        raise Exception("AI provider timeout after 10s")


class TestNarrative:
    """Test conclusion context and generator fallback."""

    @pytest.mark.asyncio
    async def test_context_totals(self, db_session):
        await IngestionPipeline(db_session).full_reload([
            make_record(keyword="layanan", sentiment="positif"),
            make_record(keyword="layanan", sentiment="positif"),
            make_record(keyword="gaji", sentiment="negatif"),
        ])

        context = await build_conclusion_context(db_session, ConclusionRequest(top_keywords=1))

        assert context.total_insights == 3
        assert context.positive_count == 2
        assert context.negative_count == 1
        assert context.positive_percentage == 66.67
        assert context.dominant_sentiment == "positive"
        assert context.top_keywords == ["layanan"]
        assert context.filters == {}

    @pytest.mark.asyncio
    async def test_context_keeps_filters(self, db_session):
        context = await build_conclusion_context(
            db_session,
            ConclusionRequest(sentiment="negatif", dateFrom="2024-01-01")
        )

        assert context.total_insights == 0
        assert context.dominant_sentiment == "neutral"
        assert context.filters == {"sentiment": "negative", "date_from": "2024-01-01"}

    @pytest.mark.asyncio
    async def test_template_mentions_numbers(self, db_session):
        await IngestionPipeline(db_session).full_reload([make_record(sentiment="negatif")])
        context = await build_conclusion_context(db_session, ConclusionRequest())

        text = await TemplateConclusionGenerator().generate(context)

        assert "100.0%" in text
        assert "negatif" in text
        assert "layanan" in text

    @pytest.mark.asyncio
    async def test_falls_back_when_ai_fails(self, db_session):
        context = await build_conclusion_context(db_session, ConclusionRequest())

        text, generator = await generate_conclusion(context, FailingGenerator(), TemplateConclusionGenerator())

        assert generator == "template"
        assert "SUMMARY EKSEKUTIF" in text


# ============================================================================
# COMMAND-LINE IMPORT
# ============================================================================

class TestImportCLI:
    """Test the import tool against the configured database."""

    @pytest.fixture(autouse=True)
    async def dispose_engine(self):
        yield
        await database.engine.dispose()

    def test_load_records_accepts_request_shape(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps({"data": [make_record()]}), encoding="utf-8")

        assert import_cli.load_records(path) == [make_record()]

    def test_load_records_rejects_object(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps({"wordInsight": "gaji"}), encoding="utf-8")

        with pytest.raises(ValueError):
            import_cli.load_records(path)

    @pytest.mark.asyncio
    async def test_full_then_incremental(self, tmp_path):
        full = tmp_path / "full.json"
        full.write_text(json.dumps([make_record(), make_record(keyword="gaji")]), encoding="utf-8")
        extra = tmp_path / "extra.json"
        extra.write_text(json.dumps([make_record(), "garbage"]), encoding="utf-8")

        assert await import_cli.main(["full", str(full)]) == 0
        assert await import_cli.main(["incremental", str(extra)]) == 2
        assert await import_cli.main(["refresh"]) == 0
        assert await import_cli.main(["verify", "--top", "5"]) == 0

        async with get_db_session() as db:
            counts = await table_counts(db)

        assert counts.records == 3
        assert counts.keyword_aggregates == 2

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert await import_cli.main(["full", str(tmp_path / "missing.json")]) == 1
