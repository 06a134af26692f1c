"""Configuration management for the insights engine."""
import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration."""

    # Database Configuration
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./insights.db")

    # API Configuration
    API_KEY = os.getenv("API_KEY", "test-api-key-12345")

    # Ingestion Configuration
    IMPORT_BATCH_SIZE = int(os.getenv("IMPORT_BATCH_SIZE", "100"))
    UNKNOWN_LABEL = os.getenv("UNKNOWN_LABEL", "Unknown")

    # Dashboard queries
    TOP_INSIGHT_THRESHOLD = float(os.getenv("TOP_INSIGHT_THRESHOLD", "70"))
    DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # OpenAI Configuration (narrative conclusions)
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    AI_MODEL = os.getenv("AI_MODEL", "gpt-3.5-turbo")
    AI_TIMEOUT_SECONDS = int(os.getenv("AI_TIMEOUT_SECONDS", "10"))
    AI_PROVIDER_ENABLED = os.getenv("AI_PROVIDER_ENABLED", "true").lower() == "true"

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Columns that fall back to UNKNOWN_LABEL when missing
    CATEGORICAL_FIELDS = [
        "source",
        "employee_name",
        "region",
        "city",
        "keyword"
    ]

    # Free-text columns that fall back to an empty string
    TEXT_FIELDS = [
        "original_insight",
        "sentence_insight"
    ]


config = Config()
