"""
Post-import consistency checks over the catalog store.

Price rows carry no foreign key to cards (prices may land before their
card batch is flushed), so orphans are surfaced here instead.
"""
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.repositories.card_repo import CardRepository
from mtg_ingest.repositories.price_repo import PriceRepository

logger = structlog.get_logger(__name__)


@dataclass
class IntegrityIssue:
    check: str
    count: int
    message: str


@dataclass
class IntegrityReport:
    issues: list[IntegrityIssue] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "issues": [
                {"check": i.check, "count": i.count, "message": i.message}
                for i in self.issues
            ],
            "stats": dict(self.stats),
        }


class IntegrityChecker:
    """Run the checks and collect them into an IntegrityReport."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.cards = CardRepository(db)
        self.prices = PriceRepository(db)

    async def check(self) -> IntegrityReport:
        report = IntegrityReport()

        checks = [
            ("orphaned_prices", self.prices.count_orphaned, "price records reference unknown cards"),
            ("cards_without_set", self.cards.count_without_set, "cards reference unknown sets"),
            ("duplicate_price_keys", self.prices.count_duplicate_keys, "price keys have more than one row"),
            ("non_positive_prices", self.prices.count_non_positive, "price records are zero or negative"),
        ]
        for name, count_fn, description in checks:
            count = await count_fn()
            report.stats[name] = count
            if count:
                report.issues.append(IntegrityIssue(name, count, f"{count} {description}"))

        logger.info(
            "Integrity check finished",
            valid=report.valid,
            issues=[i.check for i in report.issues],
        )
        return report

    async def generate_report(self) -> dict[str, Any]:
        """Integrity results plus store totals, as a plain dict."""
        report = await self.check()
        data = report.to_dict()
        data["totals"] = {
            "cards": await self.cards.count(),
            "sets": await self.cards.count_sets(),
            "prices": await self.prices.count(),
            "priced_cards": await self.prices.count_priced_cards(),
        }
        return data
