"""
Reader for the legacy price-history snapshot file.

Shape: [{"date": ISO, "cards": [{"uuid": str, "prices": {"YYYY-MM-DD": number}}]}]

The legacy format only ever held TCGplayer normal prices.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import ijson
import structlog

from mtg_ingest.core.constants import PriceSource, PriceVariant
from mtg_ingest.core.exceptions import SourceFormatError
from mtg_ingest.services.readers.records import (
    PricePoint,
    parse_price_date,
    parse_price_value,
)

logger = structlog.get_logger(__name__)


@dataclass
class PriceHistoryCounts:
    snapshots: int = 0
    cards: int = 0
    price_points: int = 0


class PriceHistoryReader:
    """Streams snapshots from a legacy price-history file with ijson."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.invalid_points = 0

    def stream_snapshots(self) -> Iterator[dict[str, Any]]:
        """Yield snapshot objects one at a time."""
        with open(self.path, "rb") as f:
            try:
                for snapshot in ijson.items(f, "item", use_float=True):
                    yield snapshot
            except ijson.JSONError as e:
                raise SourceFormatError(f"Malformed price history in {self.path.name}: {e}") from e

    def count(self) -> PriceHistoryCounts:
        """First pass: count snapshots, cards and raw price points."""
        counts = PriceHistoryCounts()
        for snapshot in self.stream_snapshots():
            counts.snapshots += 1
            for card in _cards_of(snapshot):
                counts.cards += 1
                prices = card.get("prices")
                if isinstance(prices, dict):
                    counts.price_points += len(prices)
        return counts

    def iter_price_points(self) -> Iterator[PricePoint]:
        """Second pass: flatten every snapshot into tcgplayer/normal points."""
        for snapshot in self.stream_snapshots():
            for card in _cards_of(snapshot):
                uuid = card.get("uuid")
                prices = card.get("prices")
                if not uuid or not isinstance(prices, dict):
                    self.invalid_points += len(prices) if isinstance(prices, dict) else 0
                    continue
                for raw_date, raw_price in prices.items():
                    price_date = parse_price_date(raw_date)
                    price = parse_price_value(raw_price)
                    if price_date is None or price is None:
                        self.invalid_points += 1
                        continue
                    yield PricePoint(
                        card_uuid=str(uuid),
                        price_date=price_date,
                        price=price,
                        source=PriceSource.TCGPLAYER.value,
                        variant=PriceVariant.NORMAL.value,
                    )


def _cards_of(snapshot: Any) -> list[dict[str, Any]]:
    if not isinstance(snapshot, dict):
        return []
    cards = snapshot.get("cards")
    if not isinstance(cards, list):
        return []
    return [c for c in cards if isinstance(c, dict)]
