"""
Retry and checkpoint support for migration jobs.

ErrorRecovery is the single retry policy used by every importer, plus an
in-memory registry of checkpoints that lets a batched run resume after
the last committed batch.
"""
import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import structlog

from mtg_ingest.core.config import settings
from mtg_ingest.core.exceptions import MigrationCancelledError, RetryExhaustedError
from mtg_ingest.services.migration.progress import ProgressTracker

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class RetryOptions:
    """Backoff policy; delays are in seconds."""
    max_retries: int = field(default_factory=lambda: settings.max_retries)
    retry_delay: float = field(default_factory=lambda: settings.retry_delay)
    backoff_multiplier: float = field(default_factory=lambda: settings.backoff_multiplier)
    max_delay: float = field(default_factory=lambda: settings.max_delay)


@dataclass
class RecoveryCheckpoint:
    """Snapshot of a batched run; last_successful_batch counts committed batches."""
    id: str
    timestamp: datetime
    processed: int
    failed: int
    last_successful_batch: int
    errors: list[str] = field(default_factory=list)


class ErrorRecovery:
    """
    Retry-with-backoff wrapper and checkpoint registry.

    One instance is shared by the jobs a MigrationManager starts, so a
    resumed job finds the checkpoint its interrupted predecessor wrote.
    """

    def __init__(self):
        self._checkpoints: dict[str, RecoveryCheckpoint] = {}
        self._retry_attempts: dict[str, int] = {}

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_id: str,
        options: Optional[RetryOptions] = None,
    ) -> T:
        """
        Run an async operation, retrying failures with exponential backoff.

        Args:
            operation: Zero-argument coroutine factory
            operation_id: Label for logs and retry stats
            options: Retry policy (defaults from settings)

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: After max_retries retries all failed
        """
        options = options or RetryOptions()
        delay = options.retry_delay
        attempt = 0

        while True:
            try:
                result = await operation()
                self._retry_attempts.pop(operation_id, None)
                return result
            except MigrationCancelledError:
                raise
            except Exception as e:
                attempt += 1
                self._retry_attempts[operation_id] = attempt

                if attempt > options.max_retries:
                    logger.error(
                        "Operation failed after retries",
                        operation_id=operation_id,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise RetryExhaustedError(operation_id, attempt, e) from e

                wait = min(delay, options.max_delay)
                logger.warning(
                    "Operation failed, retrying",
                    operation_id=operation_id,
                    attempt=attempt,
                    max_retries=options.max_retries,
                    retry_in=wait,
                    error=str(e),
                )
                await asyncio.sleep(wait)
                delay *= options.backoff_multiplier

    def create_checkpoint(
        self,
        checkpoint_id: str,
        processed: int,
        failed: int,
        last_successful_batch: int,
        errors: Optional[list[str]] = None,
    ) -> RecoveryCheckpoint:
        """Store (or replace) a checkpoint under checkpoint_id."""
        checkpoint = RecoveryCheckpoint(
            id=checkpoint_id,
            timestamp=datetime.now(timezone.utc),
            processed=processed,
            failed=failed,
            last_successful_batch=last_successful_batch,
            errors=list(errors or []),
        )
        self._checkpoints[checkpoint_id] = checkpoint
        logger.info(
            "Checkpoint created",
            checkpoint_id=checkpoint_id,
            processed=processed,
            last_successful_batch=last_successful_batch,
        )
        return checkpoint

    def get_checkpoint(self, checkpoint_id: str) -> Optional[RecoveryCheckpoint]:
        return self._checkpoints.get(checkpoint_id)

    def list_checkpoints(self) -> list[RecoveryCheckpoint]:
        """All checkpoints, newest first."""
        return sorted(self._checkpoints.values(), key=lambda c: c.timestamp, reverse=True)

    def remove_checkpoint(self, checkpoint_id: str) -> bool:
        return self._checkpoints.pop(checkpoint_id, None) is not None

    def clear_checkpoints(self) -> None:
        self._checkpoints.clear()

    async def process_with_checkpoints(
        self,
        items: Iterable[T],
        processor: Callable[[list[T]], Awaitable[R]],
        batch_size: int,
        checkpoint_id: str,
        resume_from_checkpoint: bool = False,
        progress: Optional[ProgressTracker] = None,
        retry_options: Optional[RetryOptions] = None,
    ) -> list[R]:
        """
        Feed items to processor in batches, checkpointing as batches commit.

        On resume, the first last_successful_batch * batch_size items are
        skipped. A checkpoint is written under checkpoint_id every
        settings.checkpoint_interval batches, after the final batch, and
        when a batch raises (the error is then re-raised).

        Args:
            items: Any iterable; consumed lazily
            processor: Coroutine called with each batch
            batch_size: Items per batch
            checkpoint_id: Caller-chosen checkpoint key
            resume_from_checkpoint: Skip batches an earlier run committed
            progress: Tracker whose errors are copied into checkpoints
            retry_options: Retry each batch with this policy when given

        Returns:
            Processor results, one per batch processed in this run
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        committed = 0
        iterator = iter(items)

        if resume_from_checkpoint:
            checkpoint = self.get_checkpoint(checkpoint_id)
            if checkpoint and checkpoint.last_successful_batch > 0:
                committed = checkpoint.last_successful_batch
                skip = committed * batch_size
                iterator = itertools.islice(iterator, skip, None)
                logger.info(
                    "Resuming from checkpoint",
                    checkpoint_id=checkpoint_id,
                    last_successful_batch=committed,
                    skipped_items=skip,
                )

        results: list[R] = []
        processed_items = committed * batch_size

        def errors() -> list[str]:
            return progress.get_progress().errors if progress else []

        while True:
            batch = list(itertools.islice(iterator, batch_size))
            if not batch:
                break

            try:
                if retry_options is not None:
                    result = await self.with_retry(
                        lambda: processor(batch),
                        f"{checkpoint_id}_batch_{committed}",
                        retry_options,
                    )
                else:
                    result = await processor(batch)
            except Exception as e:
                self.create_checkpoint(
                    checkpoint_id,
                    processed=processed_items,
                    failed=len(batch),
                    last_successful_batch=committed,
                    errors=errors() + [str(e)],
                )
                raise

            results.append(result)
            committed += 1
            processed_items += len(batch)

            if committed % settings.checkpoint_interval == 0:
                self.create_checkpoint(checkpoint_id, processed_items, 0, committed, errors())

        if committed:
            self.create_checkpoint(checkpoint_id, processed_items, 0, committed, errors())
        return results

    async def validate_recovery(
        self,
        items: list[Any],
        validator: Callable[[Any], Any],
        sample_size: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Spot-check items after a recovered run.

        The validator may be sync or async and returns truthy for a valid
        item. Exceptions count as failures.
        """
        to_check = items[:sample_size] if sample_size else items
        errors: list[str] = []

        for index, item in enumerate(to_check):
            try:
                outcome = validator(item)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                if not outcome:
                    errors.append(f"Item {index} failed validation")
            except Exception as e:
                errors.append(f"Item {index} validation error: {e}")

        return {
            "valid": not errors,
            "checked_count": len(to_check),
            "errors": errors,
        }

    def get_retry_stats(self) -> list[dict[str, Any]]:
        """Operations currently between retries, with their attempt counts."""
        return [
            {"operation_id": op_id, "attempts": attempts}
            for op_id, attempts in self._retry_attempts.items()
        ]

    def reset_retry_counters(self) -> None:
        self._retry_attempts.clear()
