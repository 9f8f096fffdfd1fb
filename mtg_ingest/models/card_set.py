"""Card set model, derived by the importers from the cards they scan."""
from datetime import date
from typing import Optional

from sqlalchemy import Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mtg_ingest.core.constants import MAX_SET_CODE_LENGTH
from mtg_ingest.db.base import Base


class CardSet(Base):
    """Magic: The Gathering set keyed by its code."""

    __tablename__ = "card_sets"

    code: Mapped[str] = mapped_column(
        String(MAX_SET_CODE_LENGTH),
        unique=True,
        index=True,
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    set_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    release_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    card_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<CardSet code={self.code} name={self.name}>"
