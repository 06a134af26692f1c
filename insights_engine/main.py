"""Main FastAPI application for employee feedback insights."""
import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

import queries
from aggregation import filtered_keyword_aggregate, recompute_city_aggregate, recompute_keyword_aggregate
from bookmarks import (
    DuplicateBookmarkError, add_bookmark, delete_bookmark, delete_bookmark_for_insight, list_bookmarks
)
from config import config
from database import get_db, init_db, table_counts
from fact_store import query_records_page, records_for_keyword
from ingestion import IngestionPipeline
from narrative import (
    ConclusionGenerator, OpenAIConclusionGenerator, TemplateConclusionGenerator,
    build_conclusion_context, generate_conclusion
)
from schemas import (
    ApiResponse, BookmarkRequest, ConclusionRequest, ImportRequest, InsightFilter, RecordFilter, page_size
)

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize services
ai_generator = OpenAIConclusionGenerator()
template_generator = TemplateConclusionGenerator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("Initializing database...")
    await init_db()
    logger.info("Application started successfully")
    yield
    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="Employee Insights API",
    description="Ingestion and sentiment aggregation of employee feedback",
    version="1.0.0",
    lifespan=lifespan
)


async def verify_api_key(x_api_key: str = Header(...)) -> None:
    """Verify API key authentication for admin operations.

    Override this dependency to plug in a different authentication scheme.
    """
    if x_api_key != config.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )


def _validation_message(error: ValidationError) -> str:
    return "; ".join(item["msg"] for item in error.errors())


async def insight_filter(
    search: Optional[str] = Query(None),
    sentiment: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo")
) -> InsightFilter:
    """Build a filter predicate from query parameters."""
    try:
        return InsightFilter(search=search, sentiment=sentiment, date_from=date_from, date_to=date_to)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=_validation_message(e))


async def record_filter(
    search: Optional[str] = Query(None),
    sentiment: Optional[str] = Query(None),
    kota: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo")
) -> RecordFilter:
    """Build a record listing filter from query parameters."""
    try:
        return RecordFilter(
            search=search,
            sentiment=sentiment,
            city=kota,
            source=source,
            date_from=date_from,
            date_to=date_to
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=_validation_message(e))


def get_conclusion_generators() -> tuple[OpenAIConclusionGenerator, ConclusionGenerator]:
    """Primary and fallback narrative generators."""
    return ai_generator, template_generator


def _storage_failure(action: str, exc: Exception) -> HTTPException:
    logger.error(f"{action} failed: {exc}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{action} failed: {exc}"
    )


# ============================================================================
# Ingestion and aggregate maintenance (admin)
# ============================================================================

@app.post("/api/data/import")
async def import_full_reload(
    request: ImportRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_api_key)
):
    """Replace every stored record with the submitted batch.

    Wipes the fact store and both aggregates, inserts the records in
    batches, then recomputes both aggregates.
    """
    try:
        summary = await IngestionPipeline(db).full_reload(request.data)
    except SQLAlchemyError as e:
        raise _storage_failure("Full reload", e)

    return ApiResponse(
        message=f"Imported {summary.inserted_count} of {summary.total_requested} records",
        data=summary.full_reload_payload()
    )


@app.post("/api/data/import-incremental")
async def import_incremental(
    request: ImportRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_api_key)
):
    """Append the submitted records to the fact store and refresh aggregates."""
    try:
        summary = await IngestionPipeline(db).incremental_append(request.data)
    except SQLAlchemyError as e:
        raise _storage_failure("Incremental import", e)

    return ApiResponse(
        message=f"Appended {summary.inserted_count} of {summary.total_requested} records",
        data=summary.incremental_payload()
    )


@app.post("/api/insights/refresh")
async def refresh_insight_summary(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_api_key)
):
    """Rebuild the keyword aggregate from the fact store."""
    try:
        count = await recompute_keyword_aggregate(db)
    except SQLAlchemyError as e:
        raise _storage_failure("Keyword aggregate refresh", e)

    return ApiResponse(message=f"Refreshed {count} keyword summaries", data={"count": count})


@app.post("/api/kota-summary/refresh")
async def refresh_kota_summary(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_api_key)
):
    """Rebuild the city aggregate from the fact store."""
    try:
        count = await recompute_city_aggregate(db)
    except SQLAlchemyError as e:
        raise _storage_failure("City aggregate refresh", e)

    return ApiResponse(message=f"Refreshed {count} city summaries", data={"count": count})


# ============================================================================
# Keyword insights
# ============================================================================

@app.get("/api/insights/filtered")
async def get_filtered_insights(
    predicate: InsightFilter = Depends(insight_filter),
    db: AsyncSession = Depends(get_db)
):
    """Keyword statistics over the records matching the filter.

    With no filter the result equals the stored keyword aggregate.
    """
    try:
        rows = await filtered_keyword_aggregate(db, predicate)
    except SQLAlchemyError as e:
        raise _storage_failure("Filtered query", e)

    return ApiResponse(
        message=f"Found {len(rows)} keywords",
        data=[row.model_dump(mode="json") for row in rows]
    )


@app.get("/api/insights/summary")
async def get_insight_summary(db: AsyncSession = Depends(get_db)):
    """All stored keyword summaries, largest first."""
    rows = await queries.list_keyword_aggregates(db)
    return ApiResponse(data=[row.to_dict() for row in rows])


@app.get("/api/insights/dashboard")
async def get_dashboard(db: AsyncSession = Depends(get_db)):
    """Totals, sentiment distribution and highlights for the dashboard."""
    return ApiResponse(data=await queries.dashboard_statistics(db))


@app.get("/api/insights/top-positive")
async def get_top_positive(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    rows = await queries.top_keywords_by_sentiment(db, "positive", limit=limit)
    return ApiResponse(data=[row.to_dict() for row in rows])


@app.get("/api/insights/top-negative")
async def get_top_negative(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    rows = await queries.top_keywords_by_sentiment(db, "negative", limit=limit)
    return ApiResponse(data=[row.to_dict() for row in rows])


@app.get("/api/insights/top-10")
async def get_top_10(db: AsyncSession = Depends(get_db)):
    """The ten most frequent keywords with their dominant sentiment."""
    rows = await queries.list_keyword_aggregates(db, limit=10)
    return ApiResponse(data=[row.to_dict() for row in rows])


@app.get("/api/insights/search/{word}")
async def search_insights(word: str, db: AsyncSession = Depends(get_db)):
    rows = await queries.search_keyword_aggregates(db, word)
    return ApiResponse(message=f"Found {len(rows)} keywords matching '{word}'", data=[row.to_dict() for row in rows])


@app.get("/api/insights/details/{word}")
async def get_insight_details(
    word: str,
    limit: int = Query(50, ge=1, le=500),
    predicate: InsightFilter = Depends(insight_filter),
    db: AsyncSession = Depends(get_db)
):
    """Raw records behind one keyword, newest first."""
    records = await records_for_keyword(db, word, predicate, limit=limit)
    return ApiResponse(data=[record.to_dict() for record in records])


@app.get("/api/insights/paginated")
async def get_insights_paginated(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    limit = page_size(limit)
    total = await queries.count_keyword_aggregates(db)
    rows = await queries.list_keyword_aggregates(db, limit=limit, offset=(page - 1) * limit)

    return ApiResponse(data={
        "insights": [row.to_dict() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit)
    })


# ============================================================================
# Raw employee insights
# ============================================================================

@app.get("/api/employee-insights/paginated")
async def get_employee_insights_paginated(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None),
    predicate: RecordFilter = Depends(record_filter),
    db: AsyncSession = Depends(get_db)
):
    """One page of raw records matching the filter, newest first."""
    limit = page_size(limit)
    try:
        records, total = await query_records_page(db, predicate, page, limit)
    except SQLAlchemyError as e:
        raise _storage_failure("Record query", e)

    return ApiResponse(data={
        "records": [record.to_dict() for record in records],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit)
    })


@app.get("/api/employee-insights/stats")
async def get_employee_insight_stats(db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await queries.record_statistics(db))


@app.get("/api/employee-insights/monthly-trends")
async def get_monthly_trends(db: AsyncSession = Depends(get_db)):
    """Per-month sentiment counts for the last 12 months with data."""
    return ApiResponse(data=await queries.monthly_trends(db))


# ============================================================================
# City summaries
# ============================================================================

@app.get("/api/kota-summary")
async def get_kota_summary(db: AsyncSession = Depends(get_db)):
    rows = await queries.list_city_aggregates(db)
    return ApiResponse(data=[row.to_dict() for row in rows])


@app.get("/api/kota-summary/{kota}")
async def get_kota_detail(kota: str, db: AsyncSession = Depends(get_db)):
    row = await queries.get_city_aggregate(db, kota)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No summary for kota '{kota}'"
        )
    return ApiResponse(data=row.to_dict())


# ============================================================================
# Bookmarks
# ============================================================================

@app.get("/api/bookmarks")
async def get_bookmarks(db: AsyncSession = Depends(get_db)):
    return ApiResponse(data=await list_bookmarks(db))


@app.post("/api/bookmarks", status_code=status.HTTP_201_CREATED)
async def create_bookmark(request: BookmarkRequest, db: AsyncSession = Depends(get_db)):
    if request.insight_id is None or not (request.insight_title or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="insight_id and insight_title are required"
        )

    try:
        bookmark = await add_bookmark(db, request.insight_id, request.insight_title.strip())
    except DuplicateBookmarkError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return ApiResponse(message="Bookmark added", data=bookmark.to_dict())


@app.delete("/api/bookmarks/insight/{insight_id}/{insight_title}")
async def remove_bookmark_for_insight(insight_id: int, insight_title: str, db: AsyncSession = Depends(get_db)):
    if not await delete_bookmark_for_insight(db, insight_id, insight_title):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bookmark not found")
    return ApiResponse(message="Bookmark removed")


@app.delete("/api/bookmarks/{bookmark_id}")
async def remove_bookmark(bookmark_id: int, db: AsyncSession = Depends(get_db)):
    if not await delete_bookmark(db, bookmark_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bookmark not found")
    return ApiResponse(message="Bookmark removed")


# ============================================================================
# Narrative conclusions
# ============================================================================

@app.post("/api/ai-conclusion/generate")
async def generate_ai_conclusion(
    request: ConclusionRequest,
    db: AsyncSession = Depends(get_db),
    generators: tuple = Depends(get_conclusion_generators)
):
    """Write a short narrative about the records matching the filter.

    Uses the AI provider when available and a template otherwise.
    """
    context = await build_conclusion_context(db, request)
    primary, fallback = generators
    conclusion, generator_name = await generate_conclusion(context, primary, fallback)

    return ApiResponse(
        message="Successfully generated conclusion",
        data={
            "conclusion": conclusion,
            "generator": generator_name,
            "context": context.model_dump()
        }
    )


# ============================================================================
# Diagnostics
# ============================================================================

@app.get("/api/debug/table-info")
async def get_table_info(db: AsyncSession = Depends(get_db)):
    counts = await table_counts(db)
    return ApiResponse(data=counts.model_dump())


@app.get("/health")
async def health_check():
    """Health check endpoint.

    Returns service status and whether the AI provider is usable.
    """
    return {
        "status": "healthy",
        "ai_provider": "healthy" if ai_generator.available else "degraded"
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Employee Insights API",
        "version": "1.0.0",
        "endpoints": {
            "import": "POST /api/data/import (admin)",
            "import_incremental": "POST /api/data/import-incremental (admin)",
            "refresh_insights": "POST /api/insights/refresh (admin)",
            "refresh_kota": "POST /api/kota-summary/refresh (admin)",
            "filtered": "GET /api/insights/filtered",
            "summary": "GET /api/insights/summary",
            "dashboard": "GET /api/insights/dashboard",
            "top_positive": "GET /api/insights/top-positive",
            "top_negative": "GET /api/insights/top-negative",
            "top_10": "GET /api/insights/top-10",
            "search": "GET /api/insights/search/{word}",
            "details": "GET /api/insights/details/{word}",
            "insights_paginated": "GET /api/insights/paginated",
            "records_paginated": "GET /api/employee-insights/paginated",
            "stats": "GET /api/employee-insights/stats",
            "monthly_trends": "GET /api/employee-insights/monthly-trends",
            "kota": "GET /api/kota-summary",
            "bookmarks": "GET|POST /api/bookmarks",
            "conclusion": "POST /api/ai-conclusion/generate",
            "table_info": "GET /api/debug/table-info",
            "health": "GET /health"
        }
    }


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Wrap HTTP errors in the response envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse(success=False, message=str(exc.detail), error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Wrap request validation errors in the response envelope."""
    message = "; ".join(str(item.get("msg")) for item in exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ApiResponse(success=False, message=message, error="Validation error").model_dump()
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unexpected errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ApiResponse(success=False, message="Internal server error", error=str(exc)).model_dump()
    )
