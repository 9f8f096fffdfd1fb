"""
Job orchestration for migrations.

The manager starts each job as its own asyncio task with its own session,
tracks running jobs, and keeps finished jobs in a bounded TTL registry so
progress and results stay queryable for a while after completion.
"""
import asyncio
import uuid
from dataclasses import dataclass
from datetime import date
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import ImportType
from mtg_ingest.core.registry import TTLRegistry
from mtg_ingest.models.import_log import ImportLog
from mtg_ingest.repositories.card_repo import CardRepository
from mtg_ingest.repositories.import_log_repo import ImportLogRepository
from mtg_ingest.repositories.price_repo import PriceRepository
from mtg_ingest.services.migration.base import MigrationBase, MigrationResult
from mtg_ingest.services.migration.csv_importer import CsvImporter, CsvImportOptions
from mtg_ingest.services.migration.integrity import IntegrityChecker
from mtg_ingest.services.migration.json_migration import JsonMigration, JsonMigrationOptions
from mtg_ingest.services.migration.price_history import (
    PriceHistoryMigrator,
    PriceHistoryOptions,
)
from mtg_ingest.services.migration.progress import MigrationProgress
from mtg_ingest.services.migration.recovery import ErrorRecovery
from mtg_ingest.services.migration.validator import DataValidator

logger = structlog.get_logger(__name__)


@dataclass
class ActiveJob:
    job: MigrationBase
    task: "asyncio.Task[MigrationResult]"


@dataclass
class FinishedJob:
    import_type: str
    progress: MigrationProgress
    result: MigrationResult


class MigrationManager:
    """
    Start, observe and cancel migration jobs.

    Usage:
        manager = MigrationManager(async_session_maker)
        job_id = await manager.start_json_import("AllPrices.json")
        result = await manager.wait_for(job_id)
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        recovery: Optional[ErrorRecovery] = None,
    ):
        if session_maker is None:
            from mtg_ingest.db.session import async_session_maker
            session_maker = async_session_maker
        self.session_maker = session_maker
        self.recovery = recovery or ErrorRecovery()
        self._active: dict[str, ActiveJob] = {}
        # Cancelled jobs still draining to their next batch boundary
        self._stopping: dict[str, ActiveJob] = {}
        self._finished: TTLRegistry[FinishedJob] = TTLRegistry(
            max_size=settings.job_history_max_size,
            ttl=settings.job_history_ttl_seconds,
        )

    @staticmethod
    def _new_job_id() -> str:
        return f"migration_{uuid.uuid4().hex[:12]}"

    def _launch(
        self,
        job: MigrationBase,
        session: AsyncSession,
        runner: Optional[Callable[[], Awaitable[MigrationResult]]] = None,
    ) -> str:
        task = asyncio.create_task(
            self._execute(job, session, runner or job.run),
            name=job.job_id,
        )
        self._active[job.job_id] = ActiveJob(job=job, task=task)
        logger.info(
            "Migration job launched",
            job_id=job.job_id,
            import_type=job.import_type.value,
        )
        return job.job_id

    async def _execute(
        self,
        job: MigrationBase,
        session: AsyncSession,
        runner: Callable[[], Awaitable[MigrationResult]],
    ) -> MigrationResult:
        result: Optional[MigrationResult] = None
        try:
            result = await runner()
        except Exception as e:
            logger.error(
                "Migration job failed",
                job_id=job.job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = job.failure_result(str(e))
        finally:
            await session.close()
            if result is None:
                result = job.failure_result("Job task was cancelled")
            self._finished.set(
                job.job_id,
                FinishedJob(
                    import_type=job.import_type.value,
                    progress=job.progress,
                    result=result,
                ),
            )
            self._active.pop(job.job_id, None)
            self._stopping.pop(job.job_id, None)
        return result

    async def start_json_import(
        self,
        path: Path | str,
        options: Optional[JsonMigrationOptions] = None,
    ) -> str:
        """Start an MTGJSON price import; returns the job id."""
        session = self.session_maker()
        job = JsonMigration(
            session, path, options, recovery=self.recovery, job_id=self._new_job_id()
        )
        return self._launch(job, session)

    async def start_csv_import(
        self,
        path: Path | str,
        options: Optional[CsvImportOptions] = None,
        price_date: Optional[date] = None,
    ) -> str:
        """Start a Cardsphere CSV import; returns the job id."""
        session = self.session_maker()
        job = CsvImporter(
            session,
            path,
            options,
            recovery=self.recovery,
            job_id=self._new_job_id(),
            price_date=price_date,
        )
        return self._launch(job, session)

    async def start_price_history_migration(
        self,
        path: Path | str,
        options: Optional[PriceHistoryOptions] = None,
        backup_file: Optional[Path | str] = None,
    ) -> str:
        """Start a legacy price-history migration; returns the job id."""
        session = self.session_maker()
        job = PriceHistoryMigrator(
            session, path, options, recovery=self.recovery, job_id=self._new_job_id()
        )
        runner = None
        if backup_file:
            runner = partial(job.migrate_and_backup, backup_file)
        return self._launch(job, session, runner)

    def get_progress(self, job_id: str) -> Optional[MigrationProgress]:
        """Progress of a running or recently finished job."""
        active = self._active.get(job_id) or self._stopping.get(job_id)
        if active:
            return active.job.progress
        finished = self._finished.get(job_id)
        return finished.progress if finished else None

    def get_result(self, job_id: str) -> Optional[MigrationResult]:
        finished = self._finished.get(job_id)
        return finished.result if finished else None

    def get_active_migrations(self) -> list[dict[str, Any]]:
        return [
            {
                "job_id": job_id,
                "import_type": active.job.import_type.value,
                "progress": active.job.progress.to_dict(),
            }
            for job_id, active in self._active.items()
        ]

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a running job.

        The job leaves the active listing at once; it stops at its next
        batch boundary, and wait_for() still returns its result.

        Returns:
            True if the job was running
        """
        active = self._active.pop(job_id, None)
        if active is None:
            return False
        active.job.cancel()
        self._stopping[job_id] = active
        logger.info("Migration job cancel requested", job_id=job_id)
        return True

    async def wait_for(self, job_id: str) -> Optional[MigrationResult]:
        """Wait for a job to finish and return its result."""
        active = self._active.get(job_id) or self._stopping.get(job_id)
        if active:
            return await active.task
        return self.get_result(job_id)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for them to stop."""
        for job_id in list(self._active):
            self.cancel(job_id)
        tasks = [active.task for active in self._stopping.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def get_history(
        self,
        limit: int = 20,
        import_type: Optional[ImportType] = None,
    ) -> Sequence[ImportLog]:
        """Most recent ImportLog rows, across all job types unless one is given."""
        async with self.session_maker() as db:
            return await ImportLogRepository(db).get_recent(
                limit, import_type.value if import_type else None
            )

    async def check_integrity(self) -> dict[str, Any]:
        async with self.session_maker() as db:
            return await IntegrityChecker(db).generate_report()

    async def validate_data(
        self,
        check_cards: bool = True,
        check_prices: bool = True,
        check_sets: bool = True,
        sample_size: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Validate random samples of each table.

        Returns one report dict per checked table plus an ``overall``
        summary; tables that were not checked are left out.
        """
        sections = {}
        async with self.session_maker() as db:
            validator = DataValidator(db)
            if check_cards:
                sections["cards"] = await validator.validate_cards(sample_size)
            if check_prices:
                sections["prices"] = await validator.validate_prices(sample_size)
            if check_sets:
                sections["sets"] = await validator.validate_sets(sample_size)

        data: dict[str, Any] = {name: report.to_dict() for name, report in sections.items()}
        data["overall"] = {
            "valid": all(r.valid for r in sections.values()),
            "total_errors": sum(len(r.errors) for r in sections.values()),
            "total_warnings": sum(len(r.warnings) for r in sections.values()),
        }
        return data

    async def get_database_stats(self) -> dict[str, Any]:
        """Row counts and price coverage of the catalog store."""
        async with self.session_maker() as db:
            cards = CardRepository(db)
            prices = PriceRepository(db)
            oldest, newest = await prices.get_date_range()
            return {
                "cards": await cards.count(),
                "sets": await cards.count_sets(),
                "prices": await prices.count(),
                "prices_by_source": await prices.count_by_source(),
                "priced_cards": await prices.count_priced_cards(),
                "oldest_price_date": oldest.isoformat() if oldest else None,
                "newest_price_date": newest.isoformat() if newest else None,
                "active_jobs": len(self._active),
            }
