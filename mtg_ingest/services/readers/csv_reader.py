"""CSV parser for Cardsphere exports."""
import csv
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, TextIO

import structlog

from mtg_ingest.core.constants import (
    MAX_CARD_NAME_LENGTH,
    MAX_SET_CODE_LENGTH,
    PriceVariant,
    StagingStatus,
)
from mtg_ingest.core.exceptions import RowValidationError, SourceFormatError

logger = structlog.get_logger(__name__)

# Byte-order mark some spreadsheet exports put before the first header
BOM = "\ufeff"


@dataclass
class StagingRow:
    """A parsed CSV row awaiting reconciliation against the catalog."""
    row_number: int
    name: str
    set_code: Optional[str] = None
    set_name: Optional[str] = None
    quantity: Optional[int] = None
    condition: Optional[str] = None
    language: Optional[str] = None
    foil: bool = False
    price: Optional[float] = None
    card_uuid: Optional[str] = None

    # Matching results (filled during card matching)
    status: StagingStatus = StagingStatus.PENDING
    matched_uuid: Optional[str] = None
    match_method: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def variant(self) -> str:
        return PriceVariant.FOIL.value if self.foil else PriceVariant.NORMAL.value


@dataclass
class RowError:
    row_number: int
    message: str


@dataclass
class CsvParseResult:
    """Outcome of parsing one file."""
    fieldnames: list[str] = field(default_factory=list)
    columns: dict[str, str] = field(default_factory=dict)
    rows: list[StagingRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    total_rows: int = 0


class CardsphereCsvParser:
    """
    Parser for Cardsphere CSV exports.

    Headers are matched case-insensitively against COLUMN_ALIASES; cells
    are trimmed. A bad row becomes a RowError and never stops the parse.
    """

    # Field -> accepted header spellings (lower case)
    COLUMN_ALIASES = {
        "name": ("name", "card name", "card"),
        "set_code": ("set", "set code", "edition"),
        "set_name": ("set name",),
        "quantity": ("quantity", "qty", "count"),
        "condition": ("condition",),
        "language": ("language", "lang"),
        "foil": ("foil", "finish"),
        "price": ("price", "value"),
        "card_uuid": ("uuid", "card uuid"),
    }
    REQUIRED_FIELDS = ("name", "set_code")

    FOIL_VALUES = {
        "true": True, "yes": True, "1": True, "foil": True,
        "false": False, "no": False, "0": False, "nonfoil": False, "normal": False,
    }

    def __init__(self, delimiter: str = ",", encoding: str = "utf-8-sig"):
        self.delimiter = delimiter
        self.encoding = encoding

    @classmethod
    def resolve_columns(cls, fieldnames: Iterable[str]) -> dict[str, str]:
        """Map field names to the actual headers present in the file."""
        headers = {
            h.lstrip(BOM).strip().lower(): h
            for h in fieldnames
            if h is not None and h.strip()
        }
        columns = {}
        for field_name, aliases in cls.COLUMN_ALIASES.items():
            for alias in aliases:
                if alias in headers:
                    columns[field_name] = headers[alias]
                    break
        return columns

    def parse_file(self, path: Path | str, max_rows: Optional[int] = None) -> CsvParseResult:
        """Parse a CSV file from disk."""
        try:
            with open(path, newline="", encoding=self.encoding) as f:
                return self.parse(f, max_rows=max_rows)
        except UnicodeDecodeError as e:
            raise SourceFormatError(f"{Path(path).name} is not valid {self.encoding}: {e}") from e

    def parse(self, stream: TextIO, max_rows: Optional[int] = None) -> CsvParseResult:
        """
        Parse CSV content into staging rows.

        Args:
            stream: Text stream positioned at the header row
            max_rows: Stop after this many data rows

        Returns:
            CsvParseResult with valid rows and row errors

        Raises:
            SourceFormatError: No header row or broken CSV structure
        """
        reader = csv.DictReader(stream, delimiter=self.delimiter)
        result = CsvParseResult()

        try:
            fieldnames = reader.fieldnames
            if not fieldnames or not any(h and h.strip() for h in fieldnames):
                raise SourceFormatError("CSV file has no header row")

            result.fieldnames = [h.lstrip(BOM).strip() for h in fieldnames if h is not None]
            result.columns = self.resolve_columns(fieldnames)

            for row_number, raw in enumerate(reader, start=2):  # Header is line 1
                if max_rows is not None and result.total_rows >= max_rows:
                    break
                if not any((v or "").strip() for k, v in raw.items() if k is not None):
                    continue  # Blank line

                result.total_rows += 1
                try:
                    result.rows.append(self.parse_row(raw, result.columns, row_number))
                except RowValidationError as e:
                    result.errors.append(RowError(row_number, str(e)))
        except csv.Error as e:
            raise SourceFormatError(f"CSV structure error: {e}") from e

        logger.debug(
            "CSV parsed",
            total_rows=result.total_rows,
            valid_rows=len(result.rows),
            invalid_rows=len(result.errors),
        )
        return result

    def parse_row(self, raw: dict[str, Any], columns: dict[str, str], row_number: int) -> StagingRow:
        """Validate and convert one raw DictReader row."""

        def cell(field_name: str) -> Optional[str]:
            header = columns.get(field_name)
            if header is None:
                return None
            value = raw.get(header)
            if value is None:
                return None
            value = value.strip()
            return value or None

        name = cell("name")
        if not name:
            raise RowValidationError("Missing card name")
        if len(name) > MAX_CARD_NAME_LENGTH:
            raise RowValidationError(f"Card name exceeds {MAX_CARD_NAME_LENGTH} characters")

        set_code = cell("set_code")
        if not set_code:
            raise RowValidationError(f"Missing set for '{name}'")
        if len(set_code) > MAX_SET_CODE_LENGTH:
            raise RowValidationError(f"Set code '{set_code}' is too long")

        return StagingRow(
            row_number=row_number,
            name=name,
            set_code=set_code.upper(),
            set_name=cell("set_name"),
            quantity=self._parse_quantity(cell("quantity")),
            condition=cell("condition"),
            language=cell("language"),
            foil=self._parse_foil(cell("foil")),
            price=self._parse_price(cell("price")),
            card_uuid=cell("card_uuid"),
        )

    @classmethod
    def _parse_foil(cls, value: Optional[str]) -> bool:
        """Parse foil indicator; unknown spellings are row errors."""
        if value is None:
            return False
        normalized = value.lower().replace("-", "").replace(" ", "")
        if normalized not in cls.FOIL_VALUES:
            raise RowValidationError(f"Invalid foil value '{value}'")
        return cls.FOIL_VALUES[normalized]

    @staticmethod
    def _parse_quantity(value: Optional[str]) -> Optional[int]:
        if value is None:
            return None
        try:
            quantity = int(value)
        except ValueError:
            raise RowValidationError(f"Invalid quantity '{value}'")
        if quantity < 0:
            raise RowValidationError(f"Invalid quantity '{value}'")
        return quantity

    @staticmethod
    def _parse_price(value: Optional[str]) -> Optional[float]:
        """Parse price value, removing currency symbols and separators."""
        if value is None:
            return None
        cleaned = (
            value.replace("$", "").replace("€", "").replace("£", "")
            .replace(",", "").replace(" ", "").strip()
        )
        if not cleaned:
            return None
        try:
            price = float(cleaned)
        except ValueError:
            raise RowValidationError(f"Invalid price '{value}'")
        if price < 0 or not math.isfinite(price):
            raise RowValidationError(f"Invalid price '{value}'")
        return round(price, 2)
