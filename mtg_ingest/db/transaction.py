"""
Transaction management utilities.

Provides a context manager for explicit transaction boundaries so a batch
write is committed as a whole or not at all.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def atomic(db: AsyncSession, name: str = "batch") -> AsyncGenerator[AsyncSession, None]:
    """
    Execute operations atomically - all or nothing.

    Usage:
        async with atomic(db) as session:
            await session.execute(stmt1)
            await session.execute(stmt2)
            # Auto-commits on success, auto-rollbacks on exception

    Args:
        db: SQLAlchemy async session
        name: Label used in the rollback log line

    Yields:
        The same session for chaining

    Raises:
        Exception: Re-raises any exception after rollback
    """
    try:
        yield db
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.warning("Transaction rolled back", transaction=name, error=str(e))
        raise
