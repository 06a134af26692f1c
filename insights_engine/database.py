"""Database connection and session handling."""
import logging
from sqlalchemy import func, select, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from config import config
from models import Base, CityAggregate, FeedbackRecord, KeywordAggregate
from schemas import FinalCounts

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and (
        url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"
    )


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine for the given URL.

    In-memory SQLite shares one connection through StaticPool, otherwise every
    session would see its own empty database. File-backed SQLite and other
    dialects keep the default pool so each session has its own connection and
    a closing session never rolls back another one's open transaction.
    """
    parsed = make_url(url)
    if _is_memory_sqlite(parsed):
        return create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False
        )
    if parsed.get_backend_name() == "sqlite":
        return create_async_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_async_engine(url, pool_pre_ping=True, echo=False)


# Create async engine
engine = build_engine(config.DATABASE_URL)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def init_db(target: AsyncEngine = None):
    """Initialize database tables."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """Dependency to get database session."""
    async with AsyncSessionLocal() as session:
        yield session


def get_db_session():
    """Get database session as context manager (for CLI usage).

    Returns:
        Async context manager for database session
    """
    return AsyncSessionLocal()


async def reset_sequences(db: AsyncSession, tables: list[str]) -> None:
    """Restart identifier sequences of the given tables.

    Only meaningful right after the tables were emptied. Runs inside the
    caller's transaction; the caller commits.
    """
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        # sqlite_sequence only exists once an AUTOINCREMENT table was created
        exists = await db.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
        )
        if exists.first() is None:
            return
        for table in tables:
            await db.execute(text("DELETE FROM sqlite_sequence WHERE name = :name"), {"name": table})
    elif dialect == "postgresql":
        for table in tables:
            await db.execute(
                text("SELECT setval(pg_get_serial_sequence(:table, 'id'), 1, false)"),
                {"table": table}
            )
    else:
        logger.warning(f"Sequence reset not supported for dialect '{dialect}'")


async def table_counts(db: AsyncSession) -> FinalCounts:
    """Row counts of the fact store and both aggregate tables."""
    records = await db.scalar(select(func.count()).select_from(FeedbackRecord))
    keywords = await db.scalar(select(func.count()).select_from(KeywordAggregate))
    cities = await db.scalar(select(func.count()).select_from(CityAggregate))

    return FinalCounts(
        records=records or 0,
        keyword_aggregates=keywords or 0,
        city_aggregates=cities or 0
    )
