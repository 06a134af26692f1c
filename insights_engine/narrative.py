"""Narrative conclusions over the filtered keyword aggregate.

Generators receive a ConclusionContext and return plain text. The OpenAI
generator is used when configured; the template generator is the
deterministic fallback.
"""
import asyncio
import logging
from typing import Protocol

from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from aggregation import filtered_keyword_aggregate
from config import config
from schemas import ConclusionContext, ConclusionRequest
from sentiment import NEGATIVE, NEUTRAL, POSITIVE, dominant_sentiment, percentage

logger = logging.getLogger(__name__)

PAGE_TITLES = {
    "survey-dashboard": "Survey Dashboard",
    "top-insights": "Top Insights",
    "smart-analytics": "Smart Analytics",
}


class ConclusionGenerator(Protocol):
    """Turns aggregate facts into a short narrative."""

    name: str

    async def generate(self, context: ConclusionContext) -> str:
        ...


async def build_conclusion_context(db: AsyncSession, request: ConclusionRequest) -> ConclusionContext:
    """Collect the facts a narrative is written from.

    Args:
        db: Database session
        request: Filter and page the conclusion is for

    Returns:
        ConclusionContext over the rows matching the request's filter
    """
    rows = await filtered_keyword_aggregate(db, request)

    total = sum(row.total_count for row in rows)
    positive = sum(row.positive_count for row in rows)
    negative = sum(row.negative_count for row in rows)
    neutral = sum(row.neutral_count for row in rows)

    positive_pct = percentage(positive, total)
    negative_pct = percentage(negative, total)
    neutral_pct = percentage(neutral, total)

    return ConclusionContext(
        page=request.page,
        total_insights=total,
        positive_count=positive,
        negative_count=negative,
        neutral_count=neutral,
        positive_percentage=positive_pct,
        negative_percentage=negative_pct,
        neutral_percentage=neutral_pct,
        dominant_sentiment=dominant_sentiment(positive_pct, negative_pct, neutral_pct),
        top_keywords=[row.keyword for row in rows[:request.top_keywords]],
        filters=request.model_dump(
            mode="json",
            include={"search", "sentiment", "date_from", "date_to"},
            exclude_none=True
        )
    )


def describe_filters(filters: dict) -> str:
    if not filters:
        return "Menampilkan semua data"
    parts = [f"{name}={value}" for name, value in filters.items()]
    return "Filter aktif: " + ", ".join(parts)


class OpenAIConclusionGenerator:
    """Writes conclusions with the OpenAI chat completions API."""

    name = "ai"

    def __init__(self):
        """Initialize the generator."""
        self.client = AsyncOpenAI(api_key=config.OPENAI_API_KEY) if config.OPENAI_API_KEY else None
        self.model = config.AI_MODEL
        self.timeout = config.AI_TIMEOUT_SECONDS

    @property
    def available(self) -> bool:
        return config.AI_PROVIDER_ENABLED and self.client is not None

    def _build_prompt(self, context: ConclusionContext) -> str:
        """Build the prompt for one conclusion.

        The model only sees aggregate numbers, never raw feedback text.
        """
        title = PAGE_TITLES.get(context.page, context.page)
        keywords = ", ".join(context.top_keywords) or "-"

        return f"""Sebagai AI analyst senior, berikan analisis untuk halaman {title} berdasarkan data berikut:

Data Summary:
- Total Insights: {context.total_insights}
- Sentimen Positif: {context.positive_count} ({context.positive_percentage}%)
- Sentimen Negatif: {context.negative_count} ({context.negative_percentage}%)
- Sentimen Netral: {context.neutral_count} ({context.neutral_percentage}%)
- Sentimen Dominan: {context.dominant_sentiment}
- Top Keywords: {keywords}
- {describe_filters(context.filters)}

Berikan analisis dalam 3 bagian:

**SUMMARY EKSEKUTIF:**
Ringkasan kondisi sentimen karyawan dan distribusi feedback.

**ANALISIS MENDALAM:**
Pola sentimen, keyword yang menonjol, dan area yang perlu perhatian.

**UPAYA PENGEMBANGAN:**
Rekomendasi yang actionable dan prioritas tindakan.

Gunakan bahasa Indonesia yang jelas dan profesional."""

    async def generate(self, context: ConclusionContext) -> str:
        """Generate a conclusion using OpenAI API.

        Args:
            context: Aggregate facts to write about

        Returns:
            Narrative text

        Raises:
            Exception: If AI provider fails (caller should handle with fallback)
        """
        if not self.client:
            raise Exception("OpenAI client not configured")

        try:
            async with asyncio.timeout(self.timeout):
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {
                            "role": "system",
                            "content": "You are an analyst summarizing employee feedback sentiment for HR."
                        },
                        {"role": "user", "content": self._build_prompt(context)}
                    ],
                    temperature=0.7,
                    max_tokens=1200
                )
        except asyncio.TimeoutError:
            raise Exception(f"AI provider timeout after {self.timeout}s")
        except Exception as e:
            raise Exception(f"AI provider error: {str(e)}")

        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise Exception("AI provider returned an empty conclusion")
        return text


class TemplateConclusionGenerator:
    """Deterministic conclusion built from the numbers alone."""

    name = "template"

    SENTIMENT_WORDS = {
        POSITIVE: "positif",
        NEGATIVE: "negatif",
        NEUTRAL: "netral",
    }

    async def generate(self, context: ConclusionContext) -> str:
        title = PAGE_TITLES.get(context.page, context.page)

        if context.total_insights == 0:
            return (
                f"**SUMMARY EKSEKUTIF:**\nTidak ada insight pada {title} "
                f"untuk filter ini ({describe_filters(context.filters)})."
            )

        dominant = self.SENTIMENT_WORDS[context.dominant_sentiment]
        keywords = ", ".join(context.top_keywords) or "-"

        summary = (
            f"Terdapat {context.total_insights} insight pada {title}. "
            f"Sentimen positif {context.positive_percentage}%, negatif {context.negative_percentage}% "
            f"dan netral {context.neutral_percentage}%, sehingga sentimen dominan adalah {dominant}."
        )
        analysis = (
            f"Keyword yang paling sering muncul: {keywords}. "
            f"{describe_filters(context.filters)}."
        )
        if context.dominant_sentiment == NEGATIVE:
            action = "Prioritaskan tindak lanjut pada keyword dengan sentimen negatif tertinggi."
        elif context.dominant_sentiment == POSITIVE:
            action = "Pertahankan praktik yang mendorong sentimen positif dan pantau keyword negatif."
        else:
            action = "Kumpulkan feedback yang lebih spesifik untuk memperjelas arah sentimen."

        return (
            f"**SUMMARY EKSEKUTIF:**\n{summary}\n\n"
            f"**ANALISIS MENDALAM:**\n{analysis}\n\n"
            f"**UPAYA PENGEMBANGAN:**\n{action}"
        )


async def generate_conclusion(
    context: ConclusionContext,
    primary: OpenAIConclusionGenerator,
    fallback: ConclusionGenerator
) -> tuple[str, str]:
    """Generate with the primary generator, falling back on any failure.

    Returns:
        (conclusion text, name of the generator that produced it)
    """
    try:
        if primary.available:
            logger.info("Attempting AI conclusion")
            return await primary.generate(context), primary.name
        raise Exception("AI provider disabled or not configured")
    except Exception as e:
        logger.warning(f"AI conclusion failed: {e}. Using template generator")

    return await fallback.generate(context), fallback.name
