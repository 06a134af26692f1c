"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import config
from sentiment import SENTIMENTS, canonical_sentiment


class NormalizedRecord(BaseModel):
    """A fully-populated feedback record, ready for insertion."""

    source: str
    employee_name: str
    date: datetime
    region: str
    city: str
    original_insight: str = ""
    sentence_insight: str = ""
    keyword: str
    sentiment: str

    @field_validator("sentiment")
    @classmethod
    def sentiment_is_canonical(cls, value: str) -> str:
        if value not in SENTIMENTS:
            raise ValueError(f"sentiment must be one of {SENTIMENTS}")
        return value


class ImportRequest(BaseModel):
    """Request schema for bulk imports."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "data": [
                    {
                        "sourceData": "Survey Online",
                        "employeeName": "Ahmad Budi",
                        "date": "2024-01-15 10:30:00",
                        "witel": "Jakarta Pusat",
                        "kota": "Jakarta",
                        "originalInsight": "Layanan pelanggan sangat lambat",
                        "sentenceInsight": "Layanan pelanggan lambat",
                        "wordInsight": "layanan",
                        "sentimen": "negatif"
                    }
                ]
            }
        }
    )

    # Items are left untyped so a malformed record is counted, not rejected
    data: List[Any] = Field(..., description="Raw feedback records")


class FinalCounts(BaseModel):
    """Row counts of the core tables after an operation."""

    records: int
    keyword_aggregates: int
    city_aggregates: int


class ImportSummary(BaseModel):
    """Outcome of one ingestion run."""

    previous_count: int
    inserted_count: int
    error_count: int
    total_requested: int
    final_count: int
    final_counts: FinalCounts

    def full_reload_payload(self) -> dict:
        return {
            "inserted": self.inserted_count,
            "errors": self.error_count,
            "total": self.total_requested,
            "final_count": self.final_count,
            "final_counts": self.final_counts.model_dump()
        }

    def incremental_payload(self) -> dict:
        return {
            "previous_count": self.previous_count,
            **self.full_reload_payload()
        }


class InsightFilter(BaseModel):
    """Conjunctive filter over the fact store. Empty means match-all."""

    model_config = ConfigDict(populate_by_name=True)

    search: Optional[str] = None
    sentiment: Optional[str] = None
    date_from: Optional[date] = Field(None, alias="dateFrom")
    date_to: Optional[date] = Field(None, alias="dateTo")

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("sentiment")
    @classmethod
    def sentiment_is_known(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip() or value.strip().lower() == "all":
            return None
        label = canonical_sentiment(value)
        if label is None:
            raise ValueError(f"unknown sentiment '{value}'")
        return label

    @model_validator(mode="after")
    def date_range_is_ordered(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must not be after dateTo")
        return self

    def is_empty(self) -> bool:
        return not (self.search or self.sentiment or self.date_from or self.date_to)


class RecordFilter(InsightFilter):
    """Filter for raw record listings."""

    city: Optional[str] = Field(None, alias="kota")
    source: Optional[str] = None

    @field_validator("city", "source")
    @classmethod
    def blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip() or value.strip().lower() == "all":
            return None
        return value.strip()


class KeywordAggregateRow(BaseModel):
    """Keyword statistics computed on demand."""

    rank: int
    keyword: str
    total_count: int
    positive_count: int
    negative_count: int
    neutral_count: int
    positif_percentage: float
    negatif_percentage: float
    netral_percentage: float
    dominant_sentiment: str
    last_seen: Optional[datetime] = None


class BookmarkRequest(BaseModel):
    """Request schema for creating a bookmark."""

    insight_id: Optional[int] = None
    insight_title: Optional[str] = None


class ConclusionRequest(InsightFilter):
    """Request schema for a narrative conclusion over the filtered data."""

    page: str = Field("survey-dashboard", description="Dashboard page the conclusion is shown on")
    top_keywords: int = Field(5, ge=1, le=20)


class ConclusionContext(BaseModel):
    """Aggregate facts handed to a narrative generator."""

    page: str
    total_insights: int
    positive_count: int
    negative_count: int
    neutral_count: int
    positive_percentage: float
    negative_percentage: float
    neutral_percentage: float
    dominant_sentiment: str
    top_keywords: List[str]
    filters: dict


class ApiResponse(BaseModel):
    """Envelope for every endpoint."""

    success: bool = True
    message: str = ""
    data: Any = None
    error: Optional[str] = None


def page_size(limit: Optional[int]) -> int:
    """Clamp a requested page size to the configured bounds."""
    if not limit or limit < 1:
        return config.DEFAULT_PAGE_SIZE
    return min(limit, config.MAX_PAGE_SIZE)
