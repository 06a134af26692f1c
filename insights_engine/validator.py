"""Validation and normalization of inbound feedback records.

Normalization is best effort: missing or invalid values are replaced with
defaults instead of rejecting the record. Only a record whose shape cannot
be read at all raises RecordValidationError, which the ingestion pipeline
counts as a single error.
"""
import logging
from collections.abc import Mapping
from datetime import UTC, date, datetime
from typing import Any, Callable, Optional

from config import config
from models import utcnow
from schemas import NormalizedRecord
from sentiment import NEUTRAL, canonical_sentiment

logger = logging.getLogger(__name__)

# Field names used by the upstream JSON exports
FIELD_ALIASES = {
    "source": ("source", "sourceData"),
    "employee_name": ("employee_name", "employeeName"),
    "date": ("date",),
    "region": ("region", "witel"),
    "city": ("city", "kota"),
    "original_insight": ("original_insight", "originalInsight"),
    "sentence_insight": ("sentence_insight", "sentenceInsight"),
    "keyword": ("keyword", "wordInsight"),
    "sentiment": ("sentiment", "sentimen"),
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
)


class RecordValidationError(ValueError):
    """Raised when a raw record cannot be normalized at all."""


def _lookup(raw: Mapping, field: str) -> Any:
    for name in FIELD_ALIASES[field]:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def _as_text(field: str, value: Any) -> Optional[str]:
    """Stringify a scalar field value; None and blanks become None."""
    if value is None:
        return None
    if isinstance(value, (Mapping, list, tuple, set)):
        raise RecordValidationError(f"Field '{field}' must be a scalar, got {type(value).__name__}")
    text = str(value).strip()
    return text or None


def _as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to UTC and drop tzinfo; naive values pass through."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a supported date representation, or return None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        # Handles fractional seconds and offsets such as "...Z" / "+07:00"
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _as_naive_utc(parsed)


def normalize_record(
    raw: Any,
    clock: Callable[[], datetime] = utcnow
) -> NormalizedRecord:
    """Turn one raw inbound record into a fully-populated record.

    Args:
        raw: Raw record as supplied by the bulk source
        clock: Returns "now"; its date is used when the record has no usable date

    Returns:
        NormalizedRecord ready for insertion

    Raises:
        RecordValidationError: If the record is not a mapping or a field holds
            a nested structure
    """
    if not isinstance(raw, Mapping):
        raise RecordValidationError(f"Record must be an object, got {type(raw).__name__}")

    values = {}
    for field in config.CATEGORICAL_FIELDS:
        values[field] = _as_text(field, _lookup(raw, field)) or config.UNKNOWN_LABEL

    for field in config.TEXT_FIELDS:
        values[field] = _as_text(field, _lookup(raw, field)) or ""

    raw_date = _lookup(raw, "date")
    event_date = parse_date(raw_date)
    if event_date is None:
        if raw_date not in (None, ""):
            logger.warning(f"Unparseable date {raw_date!r}, using current date")
        now = clock()
        event_date = datetime(now.year, now.month, now.day)
    values["date"] = event_date

    raw_sentiment = _lookup(raw, "sentiment")
    sentiment = canonical_sentiment(raw_sentiment)
    if sentiment is None:
        if raw_sentiment not in (None, ""):
            logger.debug(f"Invalid sentiment {raw_sentiment!r} coerced to {NEUTRAL}")
        sentiment = NEUTRAL
    values["sentiment"] = sentiment

    return NormalizedRecord(**values)
