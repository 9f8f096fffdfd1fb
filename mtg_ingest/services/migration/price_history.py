"""
Migration of the legacy price-history snapshot file, and its inverse.

The legacy file only carried TCGplayer normal prices, so both directions
are fixed to source=tcgplayer, variant=normal.
"""
import json
import shutil
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import ImportType, MigrationPhase, PriceSource, PriceVariant
from mtg_ingest.core.exceptions import BatchWriteError
from mtg_ingest.repositories.price_repo import PriceRepository
from mtg_ingest.services.migration.base import (
    MigrationBase,
    MigrationOptions,
    MigrationResult,
)
from mtg_ingest.services.migration.batch_writer import BatchWriter, BatchWriteResult
from mtg_ingest.services.migration.recovery import ErrorRecovery
from mtg_ingest.services.readers.price_history import PriceHistoryReader
from mtg_ingest.services.readers.records import PricePoint

logger = structlog.get_logger(__name__)


@dataclass
class PriceHistoryOptions(MigrationOptions):
    resume_from_checkpoint: bool = False
    checkpoint_id: Optional[str] = None


@dataclass
class PriceHistoryStats:
    snapshots: int = 0
    cards: int = 0
    price_points: int = 0
    migrated_prices: int = 0
    duplicate_prices: int = 0
    invalid_prices: int = 0
    failed_prices: int = 0


class PriceHistoryMigrator(MigrationBase):
    """
    Flatten legacy snapshots into price records.

    Two streaming passes over the file: one to count price points for an
    accurate progress total, one to write them in checkpointed batches.
    """

    import_type = ImportType.PRICE_HISTORY

    def __init__(
        self,
        db: AsyncSession,
        source_file: Path | str,
        options: Optional[PriceHistoryOptions] = None,
        recovery: Optional[ErrorRecovery] = None,
        job_id: Optional[str] = None,
    ):
        options = options or PriceHistoryOptions()
        super().__init__(db, options, recovery=recovery, job_id=job_id)
        self.options: PriceHistoryOptions = options
        self.source_file = Path(source_file)
        self.stats = PriceHistoryStats()
        self.writer = BatchWriter(db, self.recovery, dry_run=options.dry_run)

    @property
    def checkpoint_id(self) -> str:
        return self.options.checkpoint_id or f"price_history:{self.source_file.resolve()}"

    def log_details(self) -> dict[str, Any]:
        details = super().log_details()
        details["source_file"] = str(self.source_file)
        return details

    def _result(self) -> MigrationResult:
        return MigrationResult(
            success=True,
            processed=self.stats.migrated_prices,
            failed=self.stats.invalid_prices + self.stats.failed_prices,
            skipped=self.stats.duplicate_prices,
            errors=self.tracker.get_progress().errors,
            warnings=list(self.warnings),
            stats=asdict(self.stats),
        )

    async def migrate(self) -> MigrationResult:
        self.register_progress_callback()

        self.set_phase(MigrationPhase.VALIDATING_SOURCE)
        if not self.source_file.exists():
            self.add_warning(f"No price history file at {self.source_file}; nothing to migrate")
            return self._result()
        self.validate_source_file(self.source_file, settings.json_max_file_size)

        self.set_phase(MigrationPhase.PARSING)
        reader = PriceHistoryReader(self.source_file)
        counts = reader.count()
        self.stats.snapshots = counts.snapshots
        self.stats.cards = counts.cards
        self.stats.price_points = counts.price_points
        self.tracker.set_total(counts.price_points)
        self.log.info(
            "Price history counted",
            snapshots=counts.snapshots,
            cards=counts.cards,
            price_points=counts.price_points,
        )

        self.set_phase(MigrationPhase.PREPARING_DATA)
        self.check_cancelled()

        self.set_phase(MigrationPhase.IMPORTING_PRICES)
        await self.recovery.process_with_checkpoints(
            reader.iter_price_points(),
            self._import_batch,
            self.options.batch_size,
            self.checkpoint_id,
            resume_from_checkpoint=self.options.resume_from_checkpoint,
            progress=self.tracker,
        )

        self.stats.invalid_prices = reader.invalid_points
        if reader.invalid_points:
            self.tracker.increment_failed(reader.invalid_points)
            self.add_warning(f"{reader.invalid_points} price points had an invalid date or price")

        return self._result()

    async def _import_batch(self, batch: list[PricePoint]) -> BatchWriteResult:
        self.check_cancelled()
        try:
            result = await self.writer.write_prices([point.to_row() for point in batch])
        except BatchWriteError as e:
            self.stats.failed_prices += e.count
            self.tracker.increment_failed(e.count)
            self.record_row_error(str(e))
            if not self.options.continue_on_error:
                raise
            return BatchWriteResult(failed=e.count)

        self.stats.migrated_prices += result.inserted
        self.stats.duplicate_prices += result.skipped
        self.tracker.increment_processed(len(batch))
        return result

    async def migrate_and_backup(self, backup_file: Path | str) -> MigrationResult:
        """Copy the legacy file to backup_file, then migrate it."""
        if self.source_file.exists():
            backup = Path(backup_file)
            backup.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.source_file, backup)
            self.log.info("Price history backed up", backup_file=str(backup))
        return await self.run()


async def export_price_history(
    db: AsyncSession,
    output_path: Optional[Path | str] = None,
    date_range: Optional[tuple[date, date]] = None,
) -> list[dict[str, Any]]:
    """
    Export tcgplayer/normal prices in the legacy snapshot format.

    Produces a single snapshot dated now, cards sorted by uuid and each
    card's prices sorted by date.

    Args:
        db: Database session
        output_path: Also write the JSON here when given
        date_range: Inclusive (start, end) filter on price dates

    Returns:
        The legacy structure: [{"date": ..., "cards": [...]}]
    """
    rows = await PriceRepository(db).get_prices_for_export(
        PriceSource.TCGPLAYER.value,
        PriceVariant.NORMAL.value,
        date_range,
    )

    cards: list[dict[str, Any]] = []
    current: Optional[dict[str, Any]] = None
    for card_uuid, price_date, price in rows:
        if current is None or current["uuid"] != card_uuid:
            current = {"uuid": card_uuid, "prices": {}}
            cards.append(current)
        current["prices"][price_date.isoformat()] = price

    export = [{"date": datetime.now(timezone.utc).isoformat(), "cards": cards}]

    if output_path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(export, f, indent=2)

    logger.info(
        "Price history exported",
        cards=len(cards),
        prices=len(rows),
        output_path=str(output_path) if output_path else None,
    )
    return export
