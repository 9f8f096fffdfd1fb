"""
PriceRecord model for per-date price observations.

One row per (card, date, source, variant). Re-imports overwrite the price
rather than adding rows.

Note: card_uuid is indexed but deliberately not a foreign key. The JSON
importer writes each card's prices as soon as the card is streamed, which
can be ahead of the card batch that creates the row.
"""
from datetime import date

from sqlalchemy import Date, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mtg_ingest.core.constants import PriceSource, PriceVariant
from mtg_ingest.db.base import Base

# Conflict key used by every upsert into price_records
PRICE_KEY_COLUMNS = ("card_uuid", "price_date", "source", "variant")


class PriceRecord(Base):
    """
    Price of one card variant at one marketplace on one date.

    Attributes:
        card_uuid: Card identity (MTGJSON uuid)
        price_date: Observation date
        price: Price in USD
        source: Marketplace (tcgplayer, cardkingdom, mtgo, cardsphere)
        variant: Printing finish (normal, foil)
    """

    __tablename__ = "price_records"

    card_uuid: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    price_date: Mapped[date] = mapped_column(Date, nullable=False)
    price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PriceSource.TCGPLAYER.value
    )
    variant: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PriceVariant.NORMAL.value
    )

    __table_args__ = (
        UniqueConstraint(*PRICE_KEY_COLUMNS, name="uq_price_records_key"),
        Index("ix_price_records_card_date", "card_uuid", "price_date"),
        Index("ix_price_records_date", "price_date"),
        Index("ix_price_records_source_variant", "source", "variant"),
    )

    def __repr__(self) -> str:
        return (
            f"<PriceRecord {self.card_uuid} {self.source}/{self.variant} "
            f"{self.price_date}: {self.price}>"
        )
