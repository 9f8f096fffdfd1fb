"""
Batch writes into the catalog store.

Every call is one transaction wrapped in the shared retry policy. Two write
modes exist:
- bulk: multi-row INSERT .. ON CONFLICT DO UPDATE (last write wins)
- per-row: INSERT .. ON CONFLICT DO NOTHING, counting rowcount to tell
  inserted rows from existing ones
"""
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog
from sqlalchemy import case, func, literal, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import (
    PLACEHOLDER_NAME_PREFIX,
    PLACEHOLDER_SET_CODE,
    PLACEHOLDER_SET_NAME,
)
from mtg_ingest.core.exceptions import BatchWriteError, RetryExhaustedError
from mtg_ingest.db.transaction import atomic
from mtg_ingest.db.utils import chunked, dedupe_by_key, dialect_insert
from mtg_ingest.models.card import Card
from mtg_ingest.models.card_set import CardSet
from mtg_ingest.models.price_record import PRICE_KEY_COLUMNS, PriceRecord
from mtg_ingest.services.migration.recovery import ErrorRecovery, RetryOptions

logger = structlog.get_logger(__name__)

# Card columns a NULL in the incoming row never overwrites
CARD_OPTIONAL_COLUMNS = [
    "rarity", "type_line", "mana_cost", "cmc", "oracle_text", "image_url",
]


def card_update_set(excluded) -> dict[str, Any]:
    """
    ON CONFLICT assignments for cards.

    Placeholder descriptors from price-only entries and missing optional
    fields keep the values already in the catalog.
    """
    placeholder_set = excluded.set_code == PLACEHOLDER_SET_CODE
    set_ = {
        "name": case(
            (excluded.name == literal(PLACEHOLDER_NAME_PREFIX) + excluded.uuid, Card.name),
            else_=excluded.name,
        ),
        "set_code": case((placeholder_set, Card.set_code), else_=excluded.set_code),
        "set_name": case(
            (or_(placeholder_set, excluded.set_name == excluded.set_code), Card.set_name),
            else_=excluded.set_name,
        ),
    }
    for col in CARD_OPTIONAL_COLUMNS:
        set_[col] = func.coalesce(getattr(excluded, col), getattr(Card, col))
    return set_


def set_update_set(excluded) -> dict[str, Any]:
    """ON CONFLICT assignments for sets; a fallback name keeps the stored one."""
    fallback = or_(excluded.name == excluded.code, excluded.name == PLACEHOLDER_SET_NAME)
    return {"name": case((fallback, CardSet.name), else_=excluded.name)}


def price_update_set(excluded) -> dict[str, Any]:
    return {"price": excluded.price}


@dataclass
class BatchWriteResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def __iadd__(self, other: "BatchWriteResult") -> "BatchWriteResult":
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        return self


class BatchWriter:
    """
    Writes homogeneous batches of rows with retry and all-or-nothing commits.

    When retries run out the whole batch is reported as failed through
    BatchWriteError; whether the job continues is the caller's decision.

    Usage:
        writer = BatchWriter(db, recovery)
        result = await writer.write_cards(rows, skip_existing=True)
    """

    def __init__(
        self,
        db: AsyncSession,
        recovery: ErrorRecovery,
        retry_options: Optional[RetryOptions] = None,
        dry_run: bool = False,
    ):
        self.db = db
        self.recovery = recovery
        self.retry_options = retry_options
        self.dry_run = dry_run
        self._sequence = 0

    async def _run(
        self,
        label: str,
        rows: Sequence[dict[str, Any]],
        work: Callable[[], Awaitable[BatchWriteResult]],
    ) -> BatchWriteResult:
        if not rows:
            return BatchWriteResult()
        if self.dry_run:
            return BatchWriteResult(inserted=len(rows))

        self._sequence += 1
        operation_id = f"{label}_{self._sequence}"

        async def attempt() -> BatchWriteResult:
            async with atomic(self.db, name=operation_id):
                return await work()

        try:
            return await self.recovery.with_retry(attempt, operation_id, self.retry_options)
        except RetryExhaustedError as e:
            logger.error(
                "Batch write failed",
                operation_id=operation_id,
                rows=len(rows),
                attempts=e.attempts,
                error=str(e.last_error),
            )
            raise BatchWriteError(
                f"{label} batch of {len(rows)} rows failed: {e.last_error}",
                count=len(rows),
            ) from e

    async def _upsert(
        self,
        model,
        rows: list[dict[str, Any]],
        key_columns: Sequence[str],
        build_set: Callable[[Any], dict[str, Any]],
    ) -> BatchWriteResult:
        unique_rows = dedupe_by_key(rows, key_columns)
        for chunk in chunked(unique_rows, settings.max_rows_per_statement):
            stmt = dialect_insert(self.db, model).values(list(chunk))
            set_ = build_set(stmt.excluded)
            set_["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(index_elements=list(key_columns), set_=set_)
            await self.db.execute(stmt)
        return BatchWriteResult(inserted=len(unique_rows), skipped=len(rows) - len(unique_rows))

    async def _insert_or_ignore(
        self,
        model,
        rows: list[dict[str, Any]],
        key_columns: Sequence[str],
    ) -> BatchWriteResult:
        result = BatchWriteResult()
        for row in rows:
            stmt = (
                dialect_insert(self.db, model)
                .values(**row)
                .on_conflict_do_nothing(index_elements=list(key_columns))
            )
            outcome = await self.db.execute(stmt)
            if outcome.rowcount and outcome.rowcount > 0:
                result.inserted += 1
            else:
                result.skipped += 1
        return result

    async def write_cards(self, cards: list[dict[str, Any]], skip_existing: bool) -> BatchWriteResult:
        """
        Write card rows.

        Args:
            cards: Row dicts keyed by Card column names
            skip_existing: Leave existing uuids untouched (per-row mode);
                otherwise upsert descriptive fields in bulk
        """
        if skip_existing:
            work = partial(self._insert_or_ignore, Card, cards, ["uuid"])
        else:
            work = partial(self._upsert, Card, cards, ["uuid"], card_update_set)
        return await self._run("cards", cards, work)

    async def write_sets(self, sets: list[dict[str, Any]], skip_existing: bool) -> BatchWriteResult:
        """Write card set rows keyed by code."""
        if skip_existing:
            work = partial(self._insert_or_ignore, CardSet, sets, ["code"])
        else:
            work = partial(self._upsert, CardSet, sets, ["code"], set_update_set)
        return await self._run("sets", sets, work)

    async def write_prices(self, prices: list[dict[str, Any]]) -> BatchWriteResult:
        """Upsert price rows; duplicates of one key keep the last price."""
        return await self._run(
            "prices",
            prices,
            partial(self._upsert, PriceRecord, prices, PRICE_KEY_COLUMNS, price_update_set),
        )

    async def update_prices(self, prices: list[dict[str, Any]]) -> BatchWriteResult:
        """
        Overwrite the price of existing rows only.

        Rows whose key does not exist are counted as skipped.
        """
        async def work() -> BatchWriteResult:
            result = BatchWriteResult()
            for row in dedupe_by_key(prices, PRICE_KEY_COLUMNS):
                stmt = (
                    update(PriceRecord)
                    .where(
                        PriceRecord.card_uuid == row["card_uuid"],
                        PriceRecord.price_date == row["price_date"],
                        PriceRecord.source == row["source"],
                        PriceRecord.variant == row["variant"],
                    )
                    .values(price=row["price"], updated_at=func.now())
                    .execution_options(synchronize_session=False)
                )
                outcome = await self.db.execute(stmt)
                if outcome.rowcount and outcome.rowcount > 0:
                    result.updated += 1
                else:
                    result.skipped += 1
            return result

        return await self._run("price_updates", prices, work)
