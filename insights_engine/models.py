"""Database models for the fact store and its derived aggregates."""
from datetime import datetime, UTC
from sqlalchemy import (
    CheckConstraint, Column, DateTime, Float, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

from sentiment import dominant_sentiment

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo anyway)."""
    return datetime.now(UTC).replace(tzinfo=None)


def _isoformat(value):
    return value.isoformat() if value else None


class FeedbackRecord(Base):
    """One feedback utterance. Written once by the ingestion pipeline, never updated."""

    __tablename__ = "employee_insights"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(255), nullable=False, index=True)
    employee_name = Column(String(255), nullable=False)
    date = Column(DateTime, nullable=False, index=True)
    region = Column(String(255), nullable=False, index=True)  # witel
    city = Column(String(255), nullable=False, index=True)  # kota
    original_insight = Column(Text, nullable=False, default="")
    sentence_insight = Column(Text, nullable=False, default="")
    keyword = Column(String(255), nullable=False, index=True)  # wordInsight
    sentiment = Column(String(20), nullable=False, index=True)  # positive, negative, neutral
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "sentiment IN ('positive', 'negative', 'neutral')",
            name="ck_employee_insights_sentiment"
        ),
        # Monotonic ids across deletes; Full Reload resets the sequence explicitly
        {"sqlite_autoincrement": True},
    )

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "source": self.source,
            "employee_name": self.employee_name,
            "date": _isoformat(self.date),
            "region": self.region,
            "city": self.city,
            "original_insight": self.original_insight,
            "sentence_insight": self.sentence_insight,
            "keyword": self.keyword,
            "sentiment": self.sentiment,
            "created_at": _isoformat(self.created_at)
        }


class _AggregateColumns:
    """Counts and percentages shared by both aggregate tables."""

    total_count = Column(Integer, nullable=False, default=0)
    positive_count = Column(Integer, nullable=False, default=0)
    negative_count = Column(Integer, nullable=False, default=0)
    neutral_count = Column(Integer, nullable=False, default=0)
    positif_percentage = Column(Float, nullable=False, default=0.0)
    negatif_percentage = Column(Float, nullable=False, default=0.0)
    netral_percentage = Column(Float, nullable=False, default=0.0)
    last_seen = Column(DateTime, nullable=True)

    @property
    def dominant_sentiment(self) -> str:
        return dominant_sentiment(
            self.positif_percentage,
            self.negatif_percentage,
            self.netral_percentage
        )

    def _stats_dict(self):
        return {
            "total_count": self.total_count,
            "positive_count": self.positive_count,
            "negative_count": self.negative_count,
            "neutral_count": self.neutral_count,
            "positif_percentage": self.positif_percentage,
            "negatif_percentage": self.negatif_percentage,
            "netral_percentage": self.netral_percentage,
            "dominant_sentiment": self.dominant_sentiment,
            "last_seen": _isoformat(self.last_seen)
        }


class KeywordAggregate(_AggregateColumns, Base):
    """Per-keyword summary of the fact store. Replaced wholesale on every recompute."""

    __tablename__ = "insight_summary"

    id = Column(Integer, primary_key=True, index=True)
    keyword = Column(String(255), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "keyword": self.keyword,
            **self._stats_dict(),
            "created_at": _isoformat(self.created_at)
        }


class CityAggregate(_AggregateColumns, Base):
    """Per-city summary of the fact store. Replaced wholesale on every recompute."""

    __tablename__ = "kota_summary"

    id = Column(Integer, primary_key=True, index=True)
    city = Column(String(255), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "city": self.city,
            **self._stats_dict(),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at)
        }


class Bookmark(Base):
    """A feedback record bookmarked under its keyword label."""

    __tablename__ = "bookmarked_insights"

    id = Column(Integer, primary_key=True, index=True)
    insight_id = Column(Integer, nullable=False, index=True)
    insight_title = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        UniqueConstraint("insight_id", "insight_title", name="uq_bookmark_insight"),
    )

    def to_dict(self):
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "insight_id": self.insight_id,
            "insight_title": self.insight_title,
            "created_at": _isoformat(self.created_at)
        }
