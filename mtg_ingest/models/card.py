"""
Card model representing canonical MTG printings.
"""
from typing import Optional

from sqlalchemy import Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mtg_ingest.core.constants import MAX_CARD_NAME_LENGTH, MAX_SET_CODE_LENGTH
from mtg_ingest.db.base import Base


class Card(Base):
    """
    Represents a Magic: The Gathering printing.

    Identity is the MTGJSON uuid; importers upsert descriptive fields but
    never change it.
    """

    __tablename__ = "cards"

    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)

    # Card identity
    name: Mapped[str] = mapped_column(String(MAX_CARD_NAME_LENGTH), nullable=False, index=True)
    set_code: Mapped[str] = mapped_column(String(MAX_SET_CODE_LENGTH), nullable=False, index=True)
    set_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Card characteristics
    rarity: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    type_line: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mana_cost: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cmc: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    oracle_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        Index("ix_cards_name_set", "name", "set_code"),
    )

    def __repr__(self) -> str:
        return f"<Card {self.name} ({self.set_code}) {self.uuid}>"
