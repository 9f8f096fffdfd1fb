"""
Streaming import of MTGJSON price dumps.

Cards are buffered and flushed in batches; each card's prices are written
as soon as the card is read. Set rows are written ahead of the first card
batch that references them.
"""
import asyncio
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import ImportType, MigrationPhase
from mtg_ingest.core.exceptions import BatchWriteError, RowValidationError
from mtg_ingest.services.migration.base import (
    MigrationBase,
    MigrationOptions,
    MigrationResult,
)
from mtg_ingest.services.migration.batch_writer import BatchWriter
from mtg_ingest.services.migration.recovery import ErrorRecovery
from mtg_ingest.services.readers.mtgjson import (
    MtgjsonPriceReader,
    build_card_candidate,
    extract_mtgjson_prices,
)
from mtg_ingest.services.readers.records import PricePoint


@dataclass
class JsonMigrationOptions(MigrationOptions):
    """
    Options for MTGJSON imports.

    progress_callback receives a JsonImportStats copy after every card batch.
    """
    skip_existing: bool = True
    require_descriptors: bool = False


@dataclass
class JsonImportStats:
    total_cards: int = 0
    processed_cards: int = 0
    skipped_cards: int = 0
    failed_cards: int = 0
    processed_prices: int = 0
    invalid_prices: int = 0
    failed_prices: int = 0
    processed_sets: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class JsonMigration(MigrationBase):
    """
    Import cards, sets and prices from an MTGJSON price file.

    Re-running with skip_existing leaves existing card and set rows alone
    and reports every card as skipped; prices are always upserted.
    """

    import_type = ImportType.MTGJSON

    def __init__(
        self,
        db: AsyncSession,
        source_file: Path | str,
        options: Optional[JsonMigrationOptions] = None,
        recovery: Optional[ErrorRecovery] = None,
        job_id: Optional[str] = None,
    ):
        options = options or JsonMigrationOptions()
        super().__init__(db, options, recovery=recovery, job_id=job_id)
        self.options: JsonMigrationOptions = options
        self.source_file = Path(source_file)
        self.stats = JsonImportStats()
        self.writer = BatchWriter(db, self.recovery, dry_run=options.dry_run)

        self._card_buffer: list[dict[str, Any]] = []
        self._known_sets: set[str] = set()
        self._pending_sets: dict[str, str] = {}

    def log_details(self) -> dict[str, Any]:
        details = super().log_details()
        details["source_file"] = str(self.source_file)
        return details

    async def migrate(self) -> MigrationResult:
        self.set_phase(MigrationPhase.VALIDATING_SOURCE)
        size = self.validate_source_file(self.source_file, settings.json_max_file_size)
        self.log.info("Importing MTGJSON prices", source_file=str(self.source_file), size=size)

        self.set_phase(MigrationPhase.PARSING)
        reader = MtgjsonPriceReader(self.source_file)

        self.set_phase(MigrationPhase.PREPARING_DATA)
        self._card_buffer = []
        self._pending_sets = {}

        self.set_phase(MigrationPhase.IMPORTING_CARDS)
        for key, entry in reader:
            await self._process_entry(key, entry)
            # Let other jobs run between entries
            await asyncio.sleep(0)

        await self._flush_cards()

        return MigrationResult(
            success=True,
            processed=self.stats.processed_cards + self.stats.processed_prices,
            failed=self.stats.errors + self.stats.failed_cards + self.stats.failed_prices,
            skipped=self.stats.skipped_cards,
            errors=self.tracker.get_progress().errors,
            warnings=list(self.warnings),
            stats=self.stats.to_dict(),
        )

    async def _process_entry(self, key: Optional[str], entry: Any) -> None:
        self.stats.total_cards += 1

        try:
            candidate = build_card_candidate(key, entry, self.options.require_descriptors)
        except RowValidationError as e:
            self.stats.errors += 1
            self.tracker.update(
                total=self.stats.total_cards,
                failed=self.tracker.get_progress().failed + 1,
            )
            self.record_row_error(str(e))
            return

        points, invalid = extract_mtgjson_prices(candidate.uuid, entry)
        self.stats.invalid_prices += invalid

        if candidate.set_code not in self._known_sets:
            self._known_sets.add(candidate.set_code)
            self._pending_sets[candidate.set_code] = candidate.set_name

        self._card_buffer.append(candidate.to_row())

        if points:
            await self._write_prices(candidate.uuid, points)

        if len(self._card_buffer) >= self.options.batch_size:
            await self._flush_cards()

    async def _write_prices(self, card_uuid: str, points: list[PricePoint]) -> None:
        try:
            result = await self.writer.write_prices([p.to_row() for p in points])
        except BatchWriteError as e:
            self.stats.failed_prices += e.count
            self.record_row_error(f"Prices for {card_uuid}: {e}")
            if not self.options.continue_on_error:
                raise
            return
        self.stats.processed_prices += result.inserted

    async def _flush_sets(self) -> None:
        if not self._pending_sets:
            return
        sets = [{"code": code, "name": name} for code, name in self._pending_sets.items()]
        self._pending_sets = {}
        try:
            result = await self.writer.write_sets(sets, self.options.skip_existing)
        except BatchWriteError as e:
            self.record_row_error(str(e))
            if not self.options.continue_on_error:
                raise
            return
        self.stats.processed_sets += result.inserted

    async def _flush_cards(self) -> None:
        """Write buffered sets then cards, then report progress."""
        if not self._card_buffer:
            return
        self.check_cancelled()

        batch = self._card_buffer
        self._card_buffer = []

        await self._flush_sets()

        try:
            result = await self.writer.write_cards(batch, self.options.skip_existing)
        except BatchWriteError as e:
            self.stats.failed_cards += e.count
            self.tracker.increment_failed(e.count)
            self.record_row_error(str(e))
            if not self.options.continue_on_error:
                raise
        else:
            self.stats.processed_cards += result.inserted
            self.stats.skipped_cards += result.skipped
            self.tracker.update(
                total=self.stats.total_cards,
                processed=self.tracker.get_progress().processed + len(batch),
            )

        self.log.debug("Card batch flushed", **self.stats.to_dict())
        if self.options.progress_callback:
            try:
                self.options.progress_callback(JsonImportStats(**self.stats.to_dict()))
            except Exception as e:
                self.log.warning("Progress callback error", error=str(e))
