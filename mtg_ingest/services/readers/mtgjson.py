"""
Streaming reader for MTGJSON price dumps.

The dump is a single JSON object whose "data" member maps card uuids to
price objects and can run to several gigabytes. The reader walks ijson's
event stream and materializes one entry at a time, so memory use is
bounded by the largest single card entry rather than the file.
"""
from pathlib import Path
from typing import Any, Iterator, Optional

import ijson
import structlog

from mtg_ingest.core.constants import (
    MAX_CARD_NAME_LENGTH,
    MAX_SET_CODE_LENGTH,
    PLACEHOLDER_NAME_PREFIX,
    PLACEHOLDER_SET_CODE,
    PLACEHOLDER_SET_NAME,
    PriceSource,
    PriceVariant,
)
from mtg_ingest.core.exceptions import RowValidationError, SourceFormatError
from mtg_ingest.services.readers.records import (
    CardCandidate,
    PricePoint,
    parse_price_date,
    parse_price_value,
)

logger = structlog.get_logger(__name__)

_START_EVENTS = ("start_map", "start_array")
_END_EVENTS = ("end_map", "end_array")

# Retail price maps under "paper", keyed by marketplace
PAPER_SOURCES = {
    "tcgplayer": PriceSource.TCGPLAYER,
    "cardkingdom": PriceSource.CARDKINGDOM,
}
VARIANTS = (PriceVariant.NORMAL, PriceVariant.FOIL)


class MtgjsonPriceReader:
    """
    Pull-based iterator over the entries of an MTGJSON "data" member.

    Yields (key, value) pairs. For the usual object form the key is the
    card uuid; when "data" is an array the key is None and the entry is
    expected to carry its own "uuid".

    Usage:
        for key, entry in MtgjsonPriceReader(path):
            ...
    """

    def __init__(self, path: Path | str, data_key: str = "data"):
        self.path = Path(path)
        self.data_key = data_key
        self.entries_read = 0

    def __iter__(self) -> Iterator[tuple[Optional[str], Any]]:
        with open(self.path, "rb") as f:
            try:
                yield from self._iter_entries(ijson.parse(f, use_float=True))
            except ijson.JSONError as e:
                logger.error(
                    "MTGJSON stream parse failed",
                    path=str(self.path),
                    entries_read=self.entries_read,
                    error=str(e),
                )
                raise SourceFormatError(
                    f"Malformed JSON in {self.path.name} after {self.entries_read} entries: {e}"
                ) from e

    def _iter_entries(self, events) -> Iterator[tuple[Optional[str], Any]]:
        depth = 0
        data_depth: Optional[int] = None
        data_found = False
        pending_data = False
        key: Optional[str] = None
        builder: Optional[ijson.ObjectBuilder] = None
        nested = 0

        for _prefix, event, value in events:
            # Inside one entry: feed the builder until the entry closes
            if builder is not None:
                builder.event(event, value)
                if event in _START_EVENTS:
                    nested += 1
                elif event in _END_EVENTS:
                    nested -= 1
                if nested == 0:
                    self.entries_read += 1
                    yield key, builder.value
                    builder = None
                    key = None
                continue

            # Directly inside the data container
            if data_depth is not None and depth == data_depth:
                if event == "map_key":
                    key = value
                elif event in _END_EVENTS:
                    depth -= 1
                    data_depth = None
                elif event in _START_EVENTS:
                    builder = ijson.ObjectBuilder()
                    builder.event(event, value)
                    nested = 1
                else:
                    # Scalar entry; the importer rejects it as malformed
                    self.entries_read += 1
                    yield key, value
                    key = None
                continue

            if event == "map_key":
                pending_data = depth == 1 and value == self.data_key
            elif event in _START_EVENTS:
                depth += 1
                if pending_data and depth == 2:
                    data_depth = depth
                    data_found = True
                pending_data = False
            elif event in _END_EVENTS:
                depth -= 1
            else:
                pending_data = False

        if not data_found:
            raise SourceFormatError(
                f"{self.path.name} has no top-level '{self.data_key}' object"
            )


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_card_candidate(
    key: Optional[str],
    entry: Any,
    require_descriptors: bool = False,
) -> CardCandidate:
    """
    Build a Card candidate from one MTGJSON entry.

    Args:
        key: Key of the entry under "data" (the uuid in the object form)
        entry: Parsed entry value
        require_descriptors: Reject entries without name/set instead of
            filling placeholders

    Returns:
        CardCandidate

    Raises:
        RowValidationError: If the entry is malformed or fails validation
    """
    if not isinstance(entry, dict):
        raise RowValidationError(
            f"Entry {key!r} is a {type(entry).__name__}, expected an object"
        )

    uuid = _text(entry.get("uuid")) or _text(key)
    if not uuid:
        raise RowValidationError("Entry has no uuid")
    if len(uuid) > 36:
        raise RowValidationError(f"Entry uuid {uuid[:40]!r} is too long")

    name = _text(entry.get("name"))
    set_code = _text(entry.get("setCode"))
    set_name = _text(entry.get("setName"))

    if require_descriptors and not (name and set_code):
        raise RowValidationError(f"Entry {uuid} has no name or set code")

    name = name or f"{PLACEHOLDER_NAME_PREFIX}{uuid}"
    set_code = (set_code or PLACEHOLDER_SET_CODE).upper()
    set_name = set_name or (PLACEHOLDER_SET_NAME if set_code == PLACEHOLDER_SET_CODE else set_code)

    if len(name) > MAX_CARD_NAME_LENGTH:
        raise RowValidationError(f"Entry {uuid} name exceeds {MAX_CARD_NAME_LENGTH} characters")
    if len(set_code) > MAX_SET_CODE_LENGTH:
        raise RowValidationError(f"Entry {uuid} set code {set_code!r} is too long")

    cmc = entry.get("manaValue", entry.get("convertedManaCost", entry.get("cmc")))
    try:
        cmc = float(cmc) if cmc is not None else None
    except (TypeError, ValueError):
        cmc = None

    return CardCandidate(
        uuid=uuid,
        name=name,
        set_code=set_code,
        set_name=set_name,
        rarity=_text(entry.get("rarity")),
        type_line=_text(entry.get("type") or entry.get("typeLine")),
        mana_cost=_text(entry.get("manaCost")),
        cmc=cmc,
        oracle_text=_text(entry.get("text") or entry.get("oracleText")),
        image_url=_text(entry.get("imageUrl")),
    )


def _collect(
    card_uuid: str,
    price_map: Any,
    source: PriceSource,
    variant: PriceVariant,
    points: list[PricePoint],
) -> int:
    """Append the points of one date->price map; returns the invalid count."""
    if not isinstance(price_map, dict):
        return 0

    invalid = 0
    for raw_date, raw_price in price_map.items():
        price_date = parse_price_date(raw_date)
        price = parse_price_value(raw_price)
        if price_date is None or price is None:
            invalid += 1
            continue
        points.append(PricePoint(card_uuid, price_date, price, source.value, variant.value))
    return invalid


def extract_mtgjson_prices(card_uuid: str, entry: dict[str, Any]) -> tuple[list[PricePoint], int]:
    """
    Flatten the nested price maps of one entry.

    Handles paper.{tcgplayer,cardkingdom}.retail.{normal,foil}, the flat
    mtgo / mtgoFoil maps, and the nested mtgo.cardhoarder.retail form.

    Returns:
        (price points, number of dropped date/price pairs)
    """
    points: list[PricePoint] = []
    invalid = 0

    paper = entry.get("paper")
    if isinstance(paper, dict):
        for provider, source in PAPER_SOURCES.items():
            marketplace = paper.get(provider)
            retail = marketplace.get("retail") if isinstance(marketplace, dict) else None
            if not isinstance(retail, dict):
                continue
            for variant in VARIANTS:
                invalid += _collect(card_uuid, retail.get(variant.value), source, variant, points)

    mtgo = entry.get("mtgo")
    if isinstance(mtgo, dict):
        cardhoarder = mtgo.get("cardhoarder")
        if isinstance(cardhoarder, dict):
            retail = cardhoarder.get("retail")
            if isinstance(retail, dict):
                for variant in VARIANTS:
                    invalid += _collect(card_uuid, retail.get(variant.value), PriceSource.MTGO, variant, points)
        else:
            invalid += _collect(card_uuid, mtgo, PriceSource.MTGO, PriceVariant.NORMAL, points)

    invalid += _collect(card_uuid, entry.get("mtgoFoil"), PriceSource.MTGO, PriceVariant.FOIL, points)

    return points, invalid
