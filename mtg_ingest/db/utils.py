"""
Database utility functions for idempotent bulk operations.

The importers need INSERT .. ON CONFLICT on both PostgreSQL (production)
and SQLite (local runs and tests); these helpers pick the right construct
for whatever engine the session is bound to.
"""
from typing import Any, Iterator, Sequence, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


def dialect_name(db: AsyncSession) -> str:
    """Name of the dialect the session is bound to."""
    return db.get_bind().dialect.name


def dialect_insert(db: AsyncSession, model):
    """
    Return an insert() supporting on_conflict_do_update/do_nothing.

    Raises:
        NotImplementedError: For dialects without ON CONFLICT support.
    """
    name = dialect_name(db)
    if name == "postgresql":
        return pg_insert(model)
    if name == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect '{name}'")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


def dedupe_by_key(rows: list[dict[str, Any]], key_columns: Sequence[str]) -> list[dict[str, Any]]:
    """
    Collapse rows sharing a conflict key, keeping the last occurrence.

    PostgreSQL refuses an ON CONFLICT DO UPDATE statement that touches the
    same row twice, so duplicates must go before the statement is built.
    """
    by_key: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        key = tuple(row[col] for col in key_columns)
        by_key.pop(key, None)
        by_key[key] = row
    return list(by_key.values())
