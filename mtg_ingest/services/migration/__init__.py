"""Migration runtime and the import jobs built on it."""
from mtg_ingest.services.migration.base import (
    MigrationBase,
    MigrationOptions,
    MigrationResult,
)
from mtg_ingest.services.migration.batch_writer import BatchWriter, BatchWriteResult
from mtg_ingest.services.migration.csv_importer import (
    CsvImporter,
    CsvImportOptions,
    CsvImportStats,
)
from mtg_ingest.services.migration.integrity import IntegrityChecker, IntegrityReport
from mtg_ingest.services.migration.json_migration import (
    JsonImportStats,
    JsonMigration,
    JsonMigrationOptions,
)
from mtg_ingest.services.migration.manager import MigrationManager
from mtg_ingest.services.migration.matcher import CardMatcher, MatchMethod, MatchResult
from mtg_ingest.services.migration.price_history import (
    PriceHistoryMigrator,
    PriceHistoryOptions,
    export_price_history,
)
from mtg_ingest.services.migration.progress import MigrationProgress, ProgressTracker
from mtg_ingest.services.migration.recovery import (
    ErrorRecovery,
    RecoveryCheckpoint,
    RetryOptions,
)
from mtg_ingest.services.migration.validator import (
    DataValidator,
    ValidationIssue,
    ValidationReport,
)

__all__ = [
    "BatchWriteResult",
    "BatchWriter",
    "CardMatcher",
    "CsvImportOptions",
    "CsvImportStats",
    "CsvImporter",
    "DataValidator",
    "ErrorRecovery",
    "IntegrityChecker",
    "IntegrityReport",
    "JsonImportStats",
    "JsonMigration",
    "JsonMigrationOptions",
    "MatchMethod",
    "MatchResult",
    "MigrationBase",
    "MigrationManager",
    "MigrationOptions",
    "MigrationProgress",
    "MigrationResult",
    "PriceHistoryMigrator",
    "PriceHistoryOptions",
    "ProgressTracker",
    "RecoveryCheckpoint",
    "RetryOptions",
    "ValidationIssue",
    "ValidationReport",
    "export_price_history",
]
