"""
Price repository for price record queries.

Writes go through the batch writer; this repository covers the reads the
importers, the exporter and the integrity checks need.
"""
from datetime import date
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.db.utils import chunked
from mtg_ingest.models.card import Card
from mtg_ingest.models.price_record import PriceRecord


class PriceRepository:
    """
    Repository for price record operations.

    Handles:
    - Conflict lookups for a (date, source) slice
    - Export queries for one source/variant
    - Aggregate counts for stats and integrity reports
    - Random samples for the data validator
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_existing_keys(
        self,
        card_uuids: Sequence[str],
        price_date: date,
        source: str,
    ) -> set[tuple[str, str]]:
        """
        Find which (card_uuid, variant) pairs already have a price.

        Args:
            card_uuids: Cards to check
            price_date: Observation date
            source: Price source

        Returns:
            Set of (card_uuid, variant) pairs with an existing row
        """
        existing: set[tuple[str, str]] = set()
        unique_uuids = sorted(set(card_uuids))
        for chunk in chunked(unique_uuids, settings.max_rows_per_statement):
            result = await self.db.execute(
                select(PriceRecord.card_uuid, PriceRecord.variant).where(
                    PriceRecord.card_uuid.in_(list(chunk)),
                    PriceRecord.price_date == price_date,
                    PriceRecord.source == source,
                )
            )
            existing.update((row.card_uuid, row.variant) for row in result)
        return existing

    async def get_prices_for_export(
        self,
        source: str,
        variant: str,
        date_range: tuple[date, date] | None = None,
    ) -> Sequence[Any]:
        """
        Rows of (card_uuid, price_date, price) for one source/variant.

        Ordered by uuid then date so callers can group in a single pass.
        """
        query = select(
            PriceRecord.card_uuid,
            PriceRecord.price_date,
            PriceRecord.price,
        ).where(
            PriceRecord.source == source,
            PriceRecord.variant == variant,
        )
        if date_range:
            start, end = date_range
            query = query.where(
                PriceRecord.price_date >= start,
                PriceRecord.price_date <= end,
            )
        query = query.order_by(PriceRecord.card_uuid, PriceRecord.price_date)

        result = await self.db.execute(query)
        return result.all()

    async def count(self, source: str | None = None) -> int:
        """Count price records, optionally for one source."""
        query = select(func.count()).select_from(PriceRecord)
        if source:
            query = query.where(PriceRecord.source == source)
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def count_by_source(self) -> dict[str, int]:
        """Price record counts keyed by source."""
        result = await self.db.execute(
            select(PriceRecord.source, func.count())
            .group_by(PriceRecord.source)
        )
        return {source: count for source, count in result.all()}

    async def get_date_range(self) -> tuple[date | None, date | None]:
        """Oldest and newest observation dates."""
        result = await self.db.execute(
            select(func.min(PriceRecord.price_date), func.max(PriceRecord.price_date))
        )
        oldest, newest = result.one()
        return oldest, newest

    async def count_priced_cards(self) -> int:
        """Number of catalog cards with at least one price."""
        result = await self.db.execute(
            select(func.count(func.distinct(PriceRecord.card_uuid)))
            .select_from(PriceRecord)
            .join(Card, Card.uuid == PriceRecord.card_uuid)
        )
        return result.scalar() or 0

    async def count_non_positive(self) -> int:
        """Count price records with a price of zero or less."""
        result = await self.db.execute(
            select(func.count()).select_from(PriceRecord).where(PriceRecord.price <= 0)
        )
        return result.scalar() or 0

    async def count_orphaned(self) -> int:
        """Count price records whose card_uuid has no card row."""
        result = await self.db.execute(
            select(func.count())
            .select_from(PriceRecord)
            .outerjoin(Card, Card.uuid == PriceRecord.card_uuid)
            .where(Card.id.is_(None))
        )
        return result.scalar() or 0

    async def count_duplicate_keys(self) -> int:
        """Count price keys held by more than one row."""
        duplicates = (
            select(
                PriceRecord.card_uuid,
                PriceRecord.price_date,
                PriceRecord.source,
                PriceRecord.variant,
            )
            .group_by(
                PriceRecord.card_uuid,
                PriceRecord.price_date,
                PriceRecord.source,
                PriceRecord.variant,
            )
            .having(func.count() > 1)
            .subquery()
        )
        result = await self.db.execute(select(func.count()).select_from(duplicates))
        return result.scalar() or 0

    async def get_random(self, limit: int = 10) -> Sequence[PriceRecord]:
        """Random sample of price records."""
        stmt = select(PriceRecord).order_by(func.random()).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()
