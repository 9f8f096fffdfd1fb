"""
Base class for migration jobs.

A job owns its progress tracker, its cancel flag and its ImportLog row;
subclasses implement migrate() and call back into the helpers here for
phases, row errors, cancellation checks and source validation.
"""
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import CANCELLED_MESSAGE, ImportType, MigrationPhase
from mtg_ingest.core.exceptions import MigrationCancelledError, SourceFileError
from mtg_ingest.repositories.import_log_repo import ImportLogRepository
from mtg_ingest.services.migration.progress import MigrationProgress, ProgressTracker
from mtg_ingest.services.migration.recovery import ErrorRecovery

logger = structlog.get_logger(__name__)


@dataclass
class MigrationOptions:
    """Options shared by every job type."""
    batch_size: int = field(default_factory=lambda: settings.default_batch_size)
    continue_on_error: bool = True
    dry_run: bool = False
    progress_callback: Optional[Callable[..., None]] = None

    def to_metadata(self) -> dict[str, Any]:
        """JSON-safe view of the options for the import log."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if callable(value):
                continue
            if isinstance(value, Enum):
                value = value.value
            data[f.name] = value
        return data


@dataclass
class MigrationResult:
    """Final outcome of a job."""
    success: bool
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    job_id: Optional[str] = None


class MigrationBase(ABC):
    """
    Abstract migration job.

    run() brackets migrate() with the ImportLog lifecycle:
    started -> completed | failed. A fatal exception marks the row failed
    and propagates; a cancel request ends the job as failed with
    "Cancelled by request" and returns a result instead.
    """

    import_type: ImportType

    def __init__(
        self,
        db: AsyncSession,
        options: MigrationOptions,
        recovery: Optional[ErrorRecovery] = None,
        job_id: Optional[str] = None,
    ):
        self.db = db
        self.options = options
        self.job_id = job_id or f"migration_{uuid.uuid4().hex[:12]}"
        self.recovery = recovery or ErrorRecovery()
        self.tracker = ProgressTracker()
        self.warnings: list[str] = []
        self.import_log_id: Optional[int] = None
        self._cancel_requested = False
        self._started = time.monotonic()
        self.log = logger.bind(job_id=self.job_id, import_type=self.import_type.value)

    @abstractmethod
    async def migrate(self) -> MigrationResult:
        """Run the job body and return its result."""

    def log_details(self) -> dict[str, Any]:
        """Metadata recorded on the ImportLog row at start."""
        return {"job_id": self.job_id, "options": self.options.to_metadata()}

    @property
    def progress(self) -> MigrationProgress:
        return self.tracker.get_progress()

    def cancel(self) -> None:
        """Ask the job to stop before its next batch."""
        self._cancel_requested = True
        self.log.info("Cancellation requested")

    def check_cancelled(self) -> None:
        if self._cancel_requested:
            raise MigrationCancelledError(CANCELLED_MESSAGE)

    def set_phase(self, phase: MigrationPhase) -> None:
        self.log.debug("Phase changed", phase=phase.value)
        self.tracker.set_phase(phase)

    def add_warning(self, message: str) -> None:
        if len(self.warnings) < settings.max_progress_errors:
            self.warnings.append(message)

    def record_row_error(self, message: str, warn: bool = True) -> None:
        """Row-level problem: never fatal, kept in progress errors."""
        self.tracker.add_error(message)
        if warn:
            self.add_warning(message)

    def register_progress_callback(self) -> None:
        """Forward tracker snapshots to options.progress_callback."""
        if self.options.progress_callback:
            self.tracker.on_progress(self.options.progress_callback)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def validate_source_file(self, path: Path, max_size: int) -> int:
        """
        Check the source exists, is a non-empty regular file under max_size.

        Returns:
            File size in bytes

        Raises:
            SourceFileError: On any failed check
        """
        if not path.exists():
            raise SourceFileError(f"Source file not found: {path}")
        if not path.is_file():
            raise SourceFileError(f"Source path is not a file: {path}")
        try:
            size = path.stat().st_size
        except OSError as e:
            raise SourceFileError(f"Source file is not readable: {path}: {e}") from e
        if size == 0:
            raise SourceFileError(f"Source file is empty: {path}")
        if size > max_size:
            raise SourceFileError(
                f"Source file is too large: {size} bytes (limit {max_size})"
            )
        return size

    def _error_sample(self, messages: list[str]) -> Optional[str]:
        # Row errors are also warnings; keep each message once, in order
        sample = list(dict.fromkeys(messages))[:settings.error_sample_size]
        return "; ".join(sample) if sample else None

    async def _finish_log(self, result: MigrationResult, error_message: Optional[str]) -> None:
        if self.import_log_id is None:
            return
        await ImportLogRepository(self.db).finish(
            self.import_log_id,
            success=result.success,
            records_processed=result.processed,
            records_failed=result.failed,
            error_message=error_message,
            details={
                "skipped": result.skipped,
                "duration_ms": result.duration_ms,
                "stats": result.stats,
                "warning_count": len(result.warnings),
            },
        )
        await self.db.commit()

    def failure_result(self, message: str) -> MigrationResult:
        progress = self.tracker.get_progress()
        return MigrationResult(
            success=False,
            processed=progress.processed,
            failed=progress.failed,
            duration_ms=self.elapsed_ms(),
            errors=[message] + progress.errors,
            warnings=list(self.warnings),
            job_id=self.job_id,
        )

    async def run(self) -> MigrationResult:
        """
        Execute the job with ImportLog bookkeeping.

        Returns:
            MigrationResult (also for cancelled jobs)

        Raises:
            Exception: Any fatal error from migrate(), after logging it
        """
        self._started = time.monotonic()
        import_log = await ImportLogRepository(self.db).start(
            self.import_type.value, self.log_details()
        )
        self.import_log_id = import_log.id
        await self.db.commit()
        self.log.info("Migration started", import_log_id=self.import_log_id)

        try:
            result = await self.migrate()
        except MigrationCancelledError:
            await self.db.rollback()
            self.set_phase(MigrationPhase.FAILED)
            result = self.failure_result(CANCELLED_MESSAGE)
            await self._finish_log(result, CANCELLED_MESSAGE)
            self.log.warning("Migration cancelled", processed=result.processed)
            return result
        except Exception as e:
            await self.db.rollback()
            result = self.failure_result(str(e))
            self.tracker.add_error(str(e))
            self.set_phase(MigrationPhase.FAILED)
            try:
                await self._finish_log(result, self._error_sample(result.errors))
            except Exception as log_error:
                self.log.error("Failed to record migration failure", error=str(log_error))
            self.log.error(
                "Migration failed",
                error=str(e),
                error_type=type(e).__name__,
                processed=result.processed,
            )
            raise

        result.job_id = self.job_id
        result.duration_ms = self.elapsed_ms()
        self.set_phase(MigrationPhase.COMPLETED if result.success else MigrationPhase.FAILED)
        await self._finish_log(result, self._error_sample(result.errors + result.warnings))
        self.log.info(
            "Migration finished",
            success=result.success,
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            duration_ms=result.duration_ms,
        )
        return result
