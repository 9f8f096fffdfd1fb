"""Typed records produced by the source readers."""
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional


@dataclass(frozen=True)
class PricePoint:
    """One flat price observation ready to become a PriceRecord row."""
    card_uuid: str
    price_date: date
    price: float
    source: str
    variant: str

    def to_row(self) -> dict[str, Any]:
        return {
            "card_uuid": self.card_uuid,
            "price_date": self.price_date,
            "price": self.price,
            "source": self.source,
            "variant": self.variant,
        }


@dataclass
class CardCandidate:
    """Descriptive card values extracted from a source entry."""
    uuid: str
    name: str
    set_code: str
    set_name: str
    rarity: Optional[str] = None
    type_line: Optional[str] = None
    mana_cost: Optional[str] = None
    cmc: Optional[float] = None
    oracle_text: Optional[str] = None
    image_url: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "set_code": self.set_code,
            "set_name": self.set_name,
            "rarity": self.rarity,
            "type_line": self.type_line,
            "mana_cost": self.mana_cost,
            "cmc": self.cmc,
            "oracle_text": self.oracle_text,
            "image_url": self.image_url,
        }


def parse_price_date(value: Any) -> Optional[date]:
    """
    Parse a price-map key into a date.

    Accepts YYYY-MM-DD and full ISO timestamps; returns None otherwise.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_price_value(value: Any) -> Optional[float]:
    """Parse a price into a non-negative finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price < 0:
        return None
    return round(price, 2)
