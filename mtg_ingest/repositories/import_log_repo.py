"""
Import log repository.

Every job writes exactly one row: created when the job starts, updated
once when it completes or fails.
"""
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.constants import ImportLogStatus
from mtg_ingest.models.import_log import ImportLog
from mtg_ingest.repositories.base import BaseRepository


class ImportLogRepository(BaseRepository[ImportLog]):
    """Repository for the job audit trail."""

    def __init__(self, db: AsyncSession):
        super().__init__(ImportLog, db)

    async def start(self, import_type: str, details: dict[str, Any] | None = None) -> ImportLog:
        """Create the row for a starting job."""
        return await self.create(
            import_type=import_type,
            status=ImportLogStatus.STARTED.value,
            started_at=datetime.now(timezone.utc),
            records_processed=0,
            records_failed=0,
            details=details or {},
        )

    async def finish(
        self,
        log_id: int,
        *,
        success: bool,
        records_processed: int,
        records_failed: int,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ImportLog | None:
        """
        Record the final outcome of a job.

        The row is reloaded by id, since a rollback earlier in the job
        expires any instance the caller still holds.

        Args:
            log_id: Id of the row created by start()
            success: True for completed, False for failed
            records_processed: Rows written
            records_failed: Rows that failed
            error_message: Bounded sample of error messages
            details: Extra metadata merged over what start() recorded

        Returns:
            Updated ImportLog, or None if the row is gone
        """
        log = await self.get_by_id(log_id)
        if log is None:
            return None

        merged = dict(log.details or {})
        if details:
            merged.update(details)

        status = ImportLogStatus.COMPLETED if success else ImportLogStatus.FAILED
        return await self.update(
            log,
            status=status.value,
            completed_at=datetime.now(timezone.utc),
            records_processed=records_processed,
            records_failed=records_failed,
            error_message=error_message,
            details=merged,
        )

    async def get_recent(
        self,
        limit: int = 20,
        import_type: str | None = None,
    ) -> Sequence[ImportLog]:
        """Most recent jobs first, optionally of one type only."""
        query = select(ImportLog)
        if import_type:
            query = query.where(ImportLog.import_type == import_type)
        result = await self.db.execute(
            query.order_by(ImportLog.started_at.desc(), ImportLog.id.desc()).limit(limit)
        )
        return result.scalars().all()
