"""
Database session management.

Provides the async engine factory and session makers used by migration jobs.
Each job opens its own session from the maker so concurrent jobs never share
a transaction.
"""
import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mtg_ingest.core.config import settings
from mtg_ingest.db.base import Base

logger = structlog.get_logger(__name__)


def create_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """
    Create an async engine for the configured store.

    PostgreSQL gets a pooled engine with statement timeouts; SQLite gets
    the driver defaults.
    """
    url = url or settings.database_url_computed
    echo = settings.debug if echo is None else echo

    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            echo=echo,
            pool_pre_ping=True,  # Verify connections before using them
            pool_size=5,
            max_overflow=10,
            pool_recycle=1800,
            connect_args={
                "server_settings": {
                    "idle_in_transaction_session_timeout": "300000",  # 5 min
                    "application_name": "mtg_ingest_worker",
                },
            },
        )
    return create_async_engine(url, echo=echo)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the options every job expects."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables (no migrations are managed here)."""
    # Register every model on Base.metadata
    import mtg_ingest.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", url=str(engine.url))


engine = create_engine()
async_session_maker = create_session_maker(engine)

