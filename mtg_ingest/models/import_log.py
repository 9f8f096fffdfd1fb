"""Import log model: the durable audit trail of migration jobs."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from mtg_ingest.core.constants import ImportLogStatus
from mtg_ingest.db.base import Base


class ImportLog(Base):
    """
    One row per job, created at start and updated at completion or failure.

    This is the only persisted job state; history survives restarts.
    """

    __tablename__ = "import_logs"

    import_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ImportLogStatus.STARTED.value,
        nullable=False,
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    records_processed: Mapped[int] = mapped_column(default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    details: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("ix_import_logs_type_status", "import_type", "status"),
        Index("ix_import_logs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<ImportLog id={self.id} type={self.import_type} status={self.status}>"
