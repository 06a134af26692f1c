"""Canonical sentiment labels and the dominant-sentiment rule."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"

SENTIMENTS = (POSITIVE, NEGATIVE, NEUTRAL)

# Labels used by the upstream survey exports
SENTIMENT_ALIASES = {
    "positif": POSITIVE,
    "negatif": NEGATIVE,
    "netral": NEUTRAL,
}


def canonical_sentiment(value: object) -> Optional[str]:
    """Map a raw label to a canonical sentiment.

    Args:
        value: Raw sentiment label (any type)

    Returns:
        One of SENTIMENTS, or None when the value is not a known label
    """
    if not isinstance(value, str):
        return None

    label = value.strip().lower()
    if label in SENTIMENTS:
        return label
    return SENTIMENT_ALIASES.get(label)


def dominant_sentiment(
    positive_pct: float,
    negative_pct: float,
    neutral_pct: float
) -> str:
    """Pick the single sentiment that represents three percentages.

    Positive wins ties first, then negative. A winner must also be
    strictly above zero, so an all-zero group reports neutral.

    Args:
        positive_pct: Positive percentage (0-100)
        negative_pct: Negative percentage (0-100)
        neutral_pct: Neutral percentage (0-100)

    Returns:
        positive, negative, or neutral
    """
    if positive_pct > 0 and positive_pct >= negative_pct and positive_pct >= neutral_pct:
        return POSITIVE
    if negative_pct > 0 and negative_pct >= positive_pct and negative_pct >= neutral_pct:
        return NEGATIVE
    return NEUTRAL


def percentage(count: int, total: int) -> float:
    """Share of count in total, 0-100, rounded to two decimals."""
    if total <= 0:
        return 0.0
    # Half-up on the exact quotient, as SQL ROUND does
    share = Decimal(count * 100) / Decimal(total)
    return float(share.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
