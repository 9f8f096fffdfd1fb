"""
Staged import of Cardsphere CSV exports.

Pipeline: validate source -> parse -> stage -> match -> resolve conflicts
-> write prices. Only file access and CSV structure errors are fatal; bad
or unmatched rows are counted and reported.
"""
import csv
import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import (
    ConflictResolution,
    ImportType,
    MigrationPhase,
    PriceSource,
    StagingStatus,
)
from mtg_ingest.core.exceptions import BatchWriteError, MigrationError
from mtg_ingest.repositories.price_repo import PriceRepository
from mtg_ingest.services.migration.base import (
    MigrationBase,
    MigrationOptions,
    MigrationResult,
)
from mtg_ingest.services.migration.batch_writer import BatchWriter, BatchWriteResult
from mtg_ingest.services.migration.matcher import CardMatcher
from mtg_ingest.services.migration.recovery import ErrorRecovery
from mtg_ingest.services.readers.csv_reader import CardsphereCsvParser, StagingRow

# Display names reported by validate_csv_format
REQUIRED_COLUMNS = {"name": "Name", "set_code": "Set"}
OPTIONAL_COLUMNS = {
    "set_name": "Set Name",
    "quantity": "Quantity",
    "condition": "Condition",
    "language": "Language",
    "foil": "Foil",
    "price": "Price",
}


@dataclass
class CsvImportOptions(MigrationOptions):
    conflict_resolution: ConflictResolution = ConflictResolution.SKIP
    validate_cards: bool = True
    fuzzy_matching: bool = True
    delimiter: str = ","
    encoding: str = "utf-8-sig"
    max_file_size: int = field(default_factory=lambda: settings.csv_max_file_size)
    resume_from_checkpoint: bool = False
    checkpoint_id: Optional[str] = None


@dataclass
class CsvImportStats:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    matched_rows: int = 0
    unmatched_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    updated_rows: int = 0
    conflict_errors: int = 0
    failed_rows: int = 0


class CsvImporter(MigrationBase):
    """
    Import Cardsphere prices for cards reconciled against the catalog.

    Prices land as source=cardsphere on today's (UTC) date. A matched row
    that already has a price for that key is skipped, overwritten or
    failed according to conflict_resolution.
    """

    import_type = ImportType.CARDSPHERE_CSV

    def __init__(
        self,
        db: AsyncSession,
        source_file: Path | str,
        options: Optional[CsvImportOptions] = None,
        recovery: Optional[ErrorRecovery] = None,
        job_id: Optional[str] = None,
        price_date: Optional[date] = None,
    ):
        options = options or CsvImportOptions()
        super().__init__(db, options, recovery=recovery, job_id=job_id)
        self.options: CsvImportOptions = options
        self.source_file = Path(source_file)
        self.price_date = price_date or datetime.now(timezone.utc).date()
        self.stats = CsvImportStats()
        self.parser = CardsphereCsvParser(delimiter=options.delimiter, encoding=options.encoding)
        self.matcher = CardMatcher(db)
        self.writer = BatchWriter(db, self.recovery, dry_run=options.dry_run)

    @property
    def checkpoint_id(self) -> str:
        return self.options.checkpoint_id or f"csv_import:{self.source_file.resolve()}"

    def log_details(self) -> dict[str, Any]:
        details = super().log_details()
        details["source_file"] = str(self.source_file)
        details["price_date"] = self.price_date.isoformat()
        return details

    def _validate_source(self) -> None:
        self.validate_source_file(self.source_file, self.options.max_file_size)
        if self.source_file.suffix.lower() != ".csv":
            self.add_warning(
                f"Unexpected file extension '{self.source_file.suffix}', parsing as CSV"
            )

    async def migrate(self) -> MigrationResult:
        self.register_progress_callback()

        self.set_phase(MigrationPhase.VALIDATING_SOURCE)
        self._validate_source()

        self.set_phase(MigrationPhase.PARSING)
        parsed = self.parser.parse_file(self.source_file)
        self.stats.total_rows = parsed.total_rows
        self.stats.valid_rows = len(parsed.rows)
        self.stats.invalid_rows = len(parsed.errors)
        self.tracker.update(total=parsed.total_rows, failed=len(parsed.errors))
        for error in parsed.errors:
            self.record_row_error(f"Row {error.row_number}: {error.message}")

        missing = [name for key, name in REQUIRED_COLUMNS.items() if key not in parsed.columns]
        if missing:
            self.add_warning(f"Missing required columns: {', '.join(missing)}")

        self.set_phase(MigrationPhase.PREPARING_DATA)
        rows = parsed.rows
        self.check_cancelled()

        self.set_phase(MigrationPhase.MATCHING_CARDS)
        await self._match(rows)

        for row in rows:
            if row.status == StagingStatus.UNMATCHED:
                self.stats.skipped_rows += 1
                self.add_warning(f"Row {row.row_number}: {row.error_message}")
        self.tracker.increment_processed(self.stats.unmatched_rows)

        priced = self._priced_rows([r for r in rows if r.status == StagingStatus.MATCHED])
        self.check_cancelled()

        # Conflicts are resolved per batch so a resumed run skips exactly
        # the batches an earlier run committed
        self.set_phase(MigrationPhase.IMPORTING_PRICES)
        if priced:
            await self.recovery.process_with_checkpoints(
                priced,
                self._import_batch,
                self.options.batch_size,
                self.checkpoint_id,
                resume_from_checkpoint=self.options.resume_from_checkpoint,
                progress=self.tracker,
            )

        return MigrationResult(
            success=True,
            processed=self.stats.imported_rows + self.stats.updated_rows,
            failed=self.stats.invalid_rows + self.stats.conflict_errors + self.stats.failed_rows,
            skipped=self.stats.skipped_rows,
            errors=self.tracker.get_progress().errors,
            warnings=list(self.warnings),
            stats=dataclasses.asdict(self.stats),
        )

    async def _match(self, rows: list[StagingRow]) -> None:
        if self.options.validate_cards:
            counts = await self.matcher.match_rows(rows, fuzzy=self.options.fuzzy_matching)
            self.stats.unmatched_rows = counts["unmatched"]
            self.stats.matched_rows = sum(v for k, v in counts.items() if k != "unmatched")
            return

        # Without validation only an explicit UUID column identifies the card
        for row in rows:
            if row.card_uuid:
                row.status = StagingStatus.MATCHED
                row.matched_uuid = row.card_uuid
                row.match_method = "uuid"
                self.stats.matched_rows += 1
            else:
                row.status = StagingStatus.UNMATCHED
                row.error_message = f"No UUID for '{row.name}' and card validation is off"
                self.stats.unmatched_rows += 1

    def _priced_rows(self, matched: list[StagingRow]) -> list[StagingRow]:
        """Matched rows that carry a price; the rest are skipped with a warning."""
        priced = []
        for row in matched:
            if row.price is None:
                self.stats.skipped_rows += 1
                self.tracker.increment_processed()
                self.add_warning(f"Row {row.row_number}: '{row.name}' has no price, skipped")
            else:
                priced.append(row)
        return priced

    async def _resolve_conflicts(
        self,
        rows: list[StagingRow],
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        """
        Split a batch into price rows to insert and rows to overwrite.

        A row conflicts when a cardsphere price already exists for its
        card and variant on price_date.
        """
        existing = await PriceRepository(self.db).get_existing_keys(
            [row.matched_uuid for row in rows],
            self.price_date,
            PriceSource.CARDSPHERE.value,
        )

        inserts, updates = [], []
        for row in rows:
            price_row = {
                "card_uuid": row.matched_uuid,
                "price_date": self.price_date,
                "price": row.price,
                "source": PriceSource.CARDSPHERE.value,
                "variant": row.variant,
            }
            if (row.matched_uuid, row.variant) not in existing:
                inserts.append(price_row)
                continue

            resolution = self.options.conflict_resolution
            if resolution == ConflictResolution.UPDATE:
                updates.append(price_row)
            elif resolution == ConflictResolution.ERROR:
                self.stats.conflict_errors += 1
                self.tracker.increment_failed()
                self.record_row_error(
                    f"Row {row.row_number}: price for '{row.name}' on "
                    f"{self.price_date.isoformat()} already exists"
                )
            else:
                self.stats.skipped_rows += 1
                self.tracker.increment_processed()

        return inserts, updates

    async def _import_batch(self, batch: list[StagingRow]) -> BatchWriteResult:
        self.check_cancelled()

        inserts, updates = await self._resolve_conflicts(batch)
        result = BatchWriteResult()

        for rows, write in ((inserts, self.writer.write_prices), (updates, self.writer.update_prices)):
            if not rows:
                continue
            try:
                result += await write(rows)
            except BatchWriteError as e:
                result.failed += e.count
                self.record_row_error(str(e))
                if not self.options.continue_on_error:
                    raise

        self.stats.imported_rows += result.inserted
        self.stats.updated_rows += result.updated
        self.stats.skipped_rows += result.skipped
        self.stats.failed_rows += result.failed
        progress = self.tracker.get_progress()
        self.tracker.update(
            processed=progress.processed + len(inserts) + len(updates) - result.failed,
            failed=progress.failed + result.failed,
        )
        return result

    @staticmethod
    def validate_csv_format(
        path: Path | str,
        delimiter: str = ",",
        encoding: str = "utf-8-sig",
    ) -> dict[str, Any]:
        """
        Check a file's header for the columns the importer needs.

        Returns:
            dict with valid, required_fields, found_fields, missing_fields
        """
        all_fields = list(REQUIRED_COLUMNS.values()) + list(OPTIONAL_COLUMNS.values())
        try:
            with open(path, newline="", encoding=encoding) as f:
                header = next(csv.reader(f, delimiter=delimiter), [])
        except (OSError, UnicodeDecodeError, csv.Error):
            return {
                "valid": False,
                "required_fields": all_fields,
                "found_fields": [],
                "missing_fields": list(REQUIRED_COLUMNS.values()),
            }

        found = [h.strip() for h in header if h.strip()]
        columns = CardsphereCsvParser.resolve_columns(found)
        missing = [name for key, name in REQUIRED_COLUMNS.items() if key not in columns]
        return {
            "valid": not missing,
            "required_fields": all_fields,
            "found_fields": found,
            "missing_fields": missing,
        }

    async def get_import_preview(self, max_rows: int = 10) -> dict[str, Any]:
        """
        Parse and match a sample without writing anything.

        estimated_matches extrapolates the sample's match rate to the file.
        """
        issues: list[str] = []
        try:
            self._validate_source()
            parsed = self.parser.parse_file(self.source_file)
        except MigrationError as e:
            issues.append(f"Preview failed: {e}")
            return {"total_rows": 0, "sample_rows": [], "estimated_matches": 0, "issues": issues}

        sample = parsed.rows[:max_rows]
        sample_errors = [e for e in parsed.errors if e.row_number <= max_rows + 1]
        if sample_errors:
            issues.append(f"{len(sample_errors)} of the first {max_rows} rows have validation errors")
        issues.extend(self.warnings)

        counts = await self.matcher.match_rows(sample, fuzzy=self.options.fuzzy_matching)
        matched = sum(v for k, v in counts.items() if k != "unmatched")
        match_rate = matched / len(sample) if sample else 0.0

        return {
            "total_rows": parsed.total_rows,
            "sample_rows": [
                {**dataclasses.asdict(row), "status": row.status.value} for row in sample
            ],
            "estimated_matches": round(len(parsed.rows) * match_rate),
            "issues": issues,
        }
