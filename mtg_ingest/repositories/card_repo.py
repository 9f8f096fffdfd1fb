"""
Card repository for catalog lookups.

This repository answers the questions the card matcher, the integrity
checks and the data validator ask of the catalog: name lookups, per-set
card lists and samples.
"""
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.models.card import Card
from mtg_ingest.models.card_set import CardSet
from mtg_ingest.repositories.base import BaseRepository


class CardRepository(BaseRepository[Card]):
    """
    Repository for card operations.

    Set codes are compared case-insensitively everywhere; names are
    compared exactly.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Card, db)

    async def find_by_name(self, name: str, limit: int = 2) -> Sequence[Card]:
        """
        Find printings with an exact name across all sets.

        The default limit of two is enough to tell a unique name from an
        ambiguous one.
        """
        result = await self.db.execute(
            select(Card).where(Card.name == name).order_by(Card.uuid).limit(limit)
        )
        return result.scalars().all()

    async def get_set_cards(self, set_code: str) -> Sequence[Card]:
        """All cards of a set in catalog order (by uuid)."""
        result = await self.db.execute(
            select(Card)
            .where(func.upper(Card.set_code) == set_code.upper())
            .order_by(Card.uuid)
        )
        return result.scalars().all()

    async def count_without_set(self) -> int:
        """Count cards whose set code has no card_sets row."""
        result = await self.db.execute(
            select(func.count())
            .select_from(Card)
            .outerjoin(CardSet, CardSet.code == Card.set_code)
            .where(CardSet.id.is_(None))
        )
        return result.scalar() or 0

    async def count_sets(self) -> int:
        """Number of card sets in the catalog."""
        result = await self.db.execute(select(func.count()).select_from(CardSet))
        return result.scalar() or 0

    async def get_random(self, limit: int = 10) -> Sequence[Card]:
        """Random sample of cards."""
        stmt = select(Card).order_by(func.random()).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def get_random_sets(self, limit: int = 10) -> Sequence[CardSet]:
        """Random sample of card sets."""
        stmt = select(CardSet).order_by(func.random()).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()
