"""
Progress tracking for migration jobs.

ProgressTracker is a plain state container: it derives percentage, rate
and ETA from its counters and pushes snapshots to registered observers.
It does no I/O of its own.
"""
import dataclasses
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import MigrationPhase

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[["MigrationProgress"], None]


@dataclass
class MigrationProgress:
    """Snapshot of a job's progress."""
    phase: MigrationPhase = MigrationPhase.INITIALIZING
    processed: int = 0
    total: int = 0
    failed: int = 0
    percentage: int = 0
    rate: Optional[float] = None  # items per second
    eta: Optional[float] = None  # seconds remaining
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "processed": self.processed,
            "total": self.total,
            "failed": self.failed,
            "percentage": self.percentage,
            "rate": self.rate,
            "eta": self.eta,
            "start_time": self.start_time.isoformat(),
            "errors": list(self.errors),
        }


def _format_seconds(total_seconds: float) -> str:
    seconds = int(total_seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class ProgressTracker:
    """
    Tracks counters for one job and derives rate/ETA from them.

    Derived values, recomputed on every update:
    - percentage = round(100 * (processed + failed) / total)
    - rate = processed / elapsed seconds, once both are positive
    - eta = (total - processed - failed) / rate

    Usage:
        tracker = ProgressTracker()
        tracker.on_progress(lambda p: print(p.percentage))
        tracker.set_total(1000)
        tracker.increment_processed(100)
    """

    def __init__(
        self,
        initial: Optional[dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        max_errors: Optional[int] = None,
    ):
        self._clock = clock
        self._started = clock()
        self._callbacks: list[ProgressCallback] = []
        self.max_errors = max_errors if max_errors is not None else settings.max_progress_errors
        self._progress = MigrationProgress()
        if initial:
            self._apply(initial)
            self._recalculate()

    def _apply(self, changes: dict[str, Any]) -> None:
        for key, value in changes.items():
            if not hasattr(self._progress, key):
                raise AttributeError(f"MigrationProgress has no field '{key}'")
            if key == "phase":
                value = MigrationPhase(value)
            setattr(self._progress, key, value)

    def _elapsed(self) -> float:
        return max(0.0, self._clock() - self._started)

    def _recalculate(self) -> None:
        p = self._progress
        if p.total > 0:
            p.percentage = round(100 * (p.processed + p.failed) / p.total)

        elapsed = self._elapsed()
        if elapsed > 0 and p.processed > 0:
            p.rate = p.processed / elapsed
            if p.total > 0:
                remaining = max(0, p.total - p.processed - p.failed)
                p.eta = remaining / p.rate

    def _notify(self) -> None:
        snapshot = self.get_progress()
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning("Progress callback error", error=str(e))

    def update(self, **changes: Any) -> None:
        """Apply field changes, recompute derived values and notify."""
        self._apply(changes)
        self._recalculate()
        self._notify()

    def set_total(self, total: int) -> None:
        self.update(total=total)

    def set_phase(self, phase: MigrationPhase) -> None:
        self.update(phase=phase)

    def increment_processed(self, count: int = 1) -> None:
        self.update(processed=self._progress.processed + count)

    def increment_failed(self, count: int = 1) -> None:
        self.update(failed=self._progress.failed + count)

    def add_error(self, message: str) -> None:
        """Record an error message; beyond max_errors only the count grows."""
        if len(self._progress.errors) < self.max_errors:
            self._progress.errors.append(message)
        self._notify()

    def get_progress(self) -> MigrationProgress:
        """Copy of the current progress."""
        return dataclasses.replace(self._progress, errors=list(self._progress.errors))

    @property
    def phase(self) -> MigrationPhase:
        return self._progress.phase

    def is_complete(self) -> bool:
        p = self._progress
        if p.phase in (MigrationPhase.COMPLETED, MigrationPhase.FAILED):
            return True
        return p.total > 0 and p.processed + p.failed >= p.total

    def has_errors(self) -> bool:
        return bool(self._progress.errors) or self._progress.failed > 0

    def success_rate(self) -> int:
        """Processed share of everything attempted, as a percentage."""
        attempted = self._progress.processed + self._progress.failed
        if attempted == 0:
            return 100
        return round(100 * self._progress.processed / attempted)

    def on_progress(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: ProgressCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def reset(self) -> None:
        """Start over from an empty snapshot, keeping observers."""
        self._started = self._clock()
        self._progress = MigrationProgress()
        self._notify()

    def duration_string(self) -> str:
        return _format_seconds(self._elapsed())

    def eta_string(self) -> str:
        if not self._progress.eta:
            return "Unknown"
        return _format_seconds(self._progress.eta)

    def rate_string(self) -> str:
        rate = self._progress.rate
        if not rate:
            return "0 items/sec"
        if rate >= 1000:
            return f"{rate / 1000:.1f}k items/sec"
        return f"{round(rate)} items/sec"
