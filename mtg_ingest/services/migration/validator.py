"""
Sample-based sanity checks over stored rows.

Where the integrity checker counts relational problems across whole
tables, the validator pulls a random sample of cards, prices and sets and
inspects each row's fields. Missing required values are errors; values
that are storable but implausible are warnings.
"""
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import (
    MAX_CARD_NAME_LENGTH,
    MAX_SET_CODE_LENGTH,
    PriceSource,
    PriceVariant,
)
from mtg_ingest.models.card import Card
from mtg_ingest.models.card_set import CardSet
from mtg_ingest.models.price_record import PriceRecord
from mtg_ingest.repositories.card_repo import CardRepository
from mtg_ingest.repositories.price_repo import PriceRepository

logger = structlog.get_logger(__name__)

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
MAX_CMC = 20
MAX_PRICE = 100_000
EARLIEST_DATE = date(1990, 1, 1)

SOURCES = {s.value for s in PriceSource}
VARIANTS = {v.value for v in PriceVariant}


@dataclass
class ValidationIssue:
    item: str  # uuid, set code or price key of the offending row
    field: str
    value: Any
    message: str


@dataclass
class ValidationReport:
    items_checked: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, item: str, field_name: str, value: Any, message: str) -> None:
        self.errors.append(ValidationIssue(item, field_name, value, message))

    def warn(self, item: str, field_name: str, value: Any, message: str) -> None:
        self.warnings.append(ValidationIssue(item, field_name, value, message))

    def to_dict(self) -> dict[str, Any]:
        def issues(items: list[ValidationIssue]) -> list[dict[str, Any]]:
            return [
                {"item": i.item, "field": i.field, "value": _jsonable(i.value), "message": i.message}
                for i in items
            ]

        return {
            "valid": self.valid,
            "items_checked": self.items_checked,
            "errors": issues(self.errors),
            "warnings": issues(self.warnings),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _check_date(report: ValidationReport, item: str, field_name: str, value: date) -> None:
    if value > date.today():
        report.warn(item, field_name, value, "Date is in the future")
    elif value < EARLIEST_DATE:
        report.warn(item, field_name, value, f"Date is before {EARLIEST_DATE.isoformat()}")


class DataValidator:
    """
    Validate random samples of the catalog store.

    Usage:
        validator = DataValidator(db)
        report = await validator.validate_cards(sample_size=500)
        if not report.valid:
            ...
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.cards = CardRepository(db)
        self.prices = PriceRepository(db)

    async def validate_cards(self, sample_size: Optional[int] = None) -> ValidationReport:
        sample = await self.cards.get_random(sample_size or settings.validation_sample_size)
        report = ValidationReport(items_checked=len(sample))
        for card in sample:
            self._check_card(report, card)
        self._log("cards", report)
        return report

    async def validate_prices(self, sample_size: Optional[int] = None) -> ValidationReport:
        sample = await self.prices.get_random(sample_size or settings.validation_sample_size)
        report = ValidationReport(items_checked=len(sample))
        for record in sample:
            self._check_price(report, record)
        self._log("prices", report)
        return report

    async def validate_sets(self, sample_size: Optional[int] = None) -> ValidationReport:
        sample = await self.cards.get_random_sets(sample_size or settings.validation_sample_size)
        report = ValidationReport(items_checked=len(sample))
        for card_set in sample:
            self._check_set(report, card_set)
        self._log("sets", report)
        return report

    @staticmethod
    def _check_card(report: ValidationReport, card: Card) -> None:
        item = card.uuid or f"card#{card.id}"
        if not card.uuid:
            report.error(item, "uuid", card.uuid, "Card has no uuid")
        if not card.name:
            report.error(item, "name", card.name, "Card has no name")
        if not card.set_code:
            report.error(item, "set_code", card.set_code, "Card has no set code")

        if card.name:
            if len(card.name) > MAX_CARD_NAME_LENGTH:
                report.warn(item, "name", card.name, f"Name is longer than {MAX_CARD_NAME_LENGTH} characters")
            if CONTROL_CHARS.search(card.name):
                report.warn(item, "name", card.name, "Name contains control characters")
        if card.set_code and len(card.set_code) > MAX_SET_CODE_LENGTH:
            report.warn(item, "set_code", card.set_code, f"Set code is longer than {MAX_SET_CODE_LENGTH} characters")
        if card.cmc is not None and not 0 <= card.cmc <= MAX_CMC:
            report.warn(item, "cmc", card.cmc, f"Mana value outside 0-{MAX_CMC}")

    @staticmethod
    def _check_price(report: ValidationReport, record: PriceRecord) -> None:
        item = f"{record.card_uuid}/{record.price_date}/{record.source}/{record.variant}"
        if not record.card_uuid:
            report.error(item, "card_uuid", record.card_uuid, "Price has no card uuid")
        if record.price_date is None:
            report.error(item, "price_date", None, "Price has no date")
        if record.price is None:
            report.error(item, "price", None, "Price has no value")

        if record.price is not None:
            if not math.isfinite(record.price) or record.price < 0:
                report.warn(item, "price", record.price, "Price is negative or not finite")
            elif record.price > MAX_PRICE:
                report.warn(item, "price", record.price, f"Price is above {MAX_PRICE}")
        if record.price_date is not None:
            _check_date(report, item, "price_date", record.price_date)
        if record.source not in SOURCES:
            report.warn(item, "source", record.source, "Unknown price source")
        if record.variant not in VARIANTS:
            report.warn(item, "variant", record.variant, "Unknown price variant")

    @staticmethod
    def _check_set(report: ValidationReport, card_set: CardSet) -> None:
        item = card_set.code or f"set#{card_set.id}"
        if not card_set.code:
            report.error(item, "code", card_set.code, "Set has no code")
        if not card_set.name:
            report.error(item, "name", card_set.name, "Set has no name")

        if card_set.code and len(card_set.code) > MAX_SET_CODE_LENGTH:
            report.warn(item, "code", card_set.code, f"Set code is longer than {MAX_SET_CODE_LENGTH} characters")
        if card_set.card_count is not None and card_set.card_count < 1:
            report.warn(item, "card_count", card_set.card_count, "Set has no cards")
        if card_set.release_date is not None:
            _check_date(report, item, "release_date", card_set.release_date)

    @staticmethod
    def _log(table: str, report: ValidationReport) -> None:
        logger.info(
            "Sample validation finished",
            table=table,
            items_checked=report.items_checked,
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
