"""Tests for retry and checkpoint recovery."""
from unittest.mock import AsyncMock, patch

import pytest

from mtg_ingest.core.exceptions import MigrationCancelledError, RetryExhaustedError
from mtg_ingest.services.migration.progress import ProgressTracker
from mtg_ingest.services.migration.recovery import ErrorRecovery, RetryOptions


@pytest.fixture
def recovery():
    return ErrorRecovery()


@pytest.fixture
def no_sleep():
    """Skip real backoff sleeps and record the requested delays."""
    with patch(
        "mtg_ingest.services.migration.recovery.asyncio.sleep",
        new=AsyncMock(),
    ) as sleep:
        yield sleep


class TestWithRetry:
    """Tests for ErrorRecovery.with_retry."""

    @pytest.mark.asyncio
    async def test_returns_result_without_retry(self, recovery, no_sleep):
        """A successful operation runs once."""
        operation = AsyncMock(return_value="ok")

        result = await recovery.with_retry(operation, "op")

        assert result == "ok"
        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, recovery, no_sleep):
        """Transient failures are retried with exponential backoff."""
        operation = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        options = RetryOptions(max_retries=3, retry_delay=1.0, backoff_multiplier=2.0, max_delay=30.0)

        result = await recovery.with_retry(operation, "op", options)

        assert result == "ok"
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]
        assert recovery.get_retry_stats() == []

    @pytest.mark.asyncio
    async def test_delay_capped_by_max_delay(self, recovery, no_sleep):
        """Backoff never sleeps longer than max_delay."""
        operation = AsyncMock(side_effect=[RuntimeError()] * 3 + ["ok"])
        options = RetryOptions(max_retries=3, retry_delay=4.0, backoff_multiplier=3.0, max_delay=5.0)

        await recovery.with_retry(operation, "op", options)

        assert [c.args[0] for c in no_sleep.await_args_list] == [4.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_exhausted_raises_with_cause(self, recovery, no_sleep):
        """After max_retries the last error is chained into RetryExhaustedError."""
        error = RuntimeError("database is locked")
        operation = AsyncMock(side_effect=error)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await recovery.with_retry(operation, "write", RetryOptions(max_retries=2, retry_delay=0.1))

        assert exc_info.value.operation_id == "write"
        assert exc_info.value.attempts == 3
        assert exc_info.value.__cause__ is error
        assert operation.await_count == 3
        assert recovery.get_retry_stats() == [{"operation_id": "write", "attempts": 3}]

        recovery.reset_retry_counters()
        assert recovery.get_retry_stats() == []

    @pytest.mark.asyncio
    async def test_cancellation_not_retried(self, recovery, no_sleep):
        """A cancel request propagates immediately."""
        operation = AsyncMock(side_effect=MigrationCancelledError("stop"))

        with pytest.raises(MigrationCancelledError):
            await recovery.with_retry(operation, "op")

        assert operation.await_count == 1


class TestCheckpoints:
    """Tests for checkpoint registry and checkpointed processing."""

    def test_checkpoint_registry(self, recovery):
        """Checkpoints can be created, listed newest first and removed."""
        recovery.create_checkpoint("a", processed=10, failed=0, last_successful_batch=1)
        recovery.create_checkpoint("b", processed=20, failed=1, last_successful_batch=2)

        assert [c.id for c in recovery.list_checkpoints()] == ["b", "a"]
        assert recovery.get_checkpoint("a").processed == 10
        assert recovery.remove_checkpoint("a") is True
        assert recovery.remove_checkpoint("a") is False

        recovery.clear_checkpoints()
        assert recovery.list_checkpoints() == []

    @pytest.mark.asyncio
    async def test_batches_and_final_checkpoint(self, recovery):
        """Items are processed in order-preserving batches and a final checkpoint is kept."""
        seen = []

        async def processor(batch):
            seen.append(list(batch))
            return len(batch)

        results = await recovery.process_with_checkpoints(range(7), processor, 3, "job")

        assert seen == [[0, 1, 2], [3, 4, 5], [6]]
        assert results == [3, 3, 1]
        checkpoint = recovery.get_checkpoint("job")
        assert checkpoint.last_successful_batch == 3
        assert checkpoint.processed == 7

    @pytest.mark.asyncio
    async def test_failure_checkpoints_and_reraises(self, recovery):
        """A failing batch records the committed count, then raises."""
        tracker = ProgressTracker()
        tracker.add_error("row 3 bad")

        async def processor(batch):
            if 4 in batch:
                raise RuntimeError("write failed")
            return len(batch)

        with pytest.raises(RuntimeError):
            await recovery.process_with_checkpoints(range(10), processor, 2, "job", progress=tracker)

        checkpoint = recovery.get_checkpoint("job")
        assert checkpoint.last_successful_batch == 2
        assert checkpoint.processed == 4
        assert checkpoint.errors == ["row 3 bad", "write failed"]

    @pytest.mark.asyncio
    async def test_resume_matches_uninterrupted_run(self, recovery):
        """Interrupted then resumed processing covers each item exactly once."""
        written = []
        fail_once = {"armed": True}

        async def processor(batch):
            if 6 in batch and fail_once["armed"]:
                fail_once["armed"] = False
                raise RuntimeError("crash")
            written.extend(batch)
            return len(batch)

        with pytest.raises(RuntimeError):
            await recovery.process_with_checkpoints(range(10), processor, 3, "job")

        await recovery.process_with_checkpoints(
            range(10), processor, 3, "job", resume_from_checkpoint=True
        )

        assert written == list(range(10))

    @pytest.mark.asyncio
    async def test_periodic_checkpoints(self, recovery):
        """A checkpoint is written every checkpoint_interval batches."""
        with patch("mtg_ingest.services.migration.recovery.settings") as mock_settings:
            mock_settings.checkpoint_interval = 2
            with patch.object(recovery, "create_checkpoint", wraps=recovery.create_checkpoint) as spy:
                await recovery.process_with_checkpoints(range(5), AsyncMock(return_value=None), 1, "job")

        # Batches 2 and 4, plus the final checkpoint after batch 5
        assert [c.args[3] for c in spy.call_args_list] == [2, 4, 5]

    @pytest.mark.asyncio
    async def test_batch_retry_when_options_given(self, recovery, no_sleep):
        """retry_options wraps each batch in with_retry."""
        processor = AsyncMock(side_effect=[RuntimeError("flaky"), 2])

        results = await recovery.process_with_checkpoints(
            [1, 2], processor, 2, "job", retry_options=RetryOptions(max_retries=1, retry_delay=0)
        )

        assert results == [2]
        assert processor.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, recovery):
        """Batch size must be positive."""
        with pytest.raises(ValueError):
            await recovery.process_with_checkpoints([1], AsyncMock(), 0, "job")


class TestValidateRecovery:
    """Tests for ErrorRecovery.validate_recovery."""

    @pytest.mark.asyncio
    async def test_sync_and_async_validators(self, recovery):
        """Falsy results and exceptions both count as failures."""

        def validator(item):
            if item == 3:
                raise ValueError("bad")
            return item != 2

        async def async_validator(item):
            return True

        report = await recovery.validate_recovery([1, 2, 3, 4], validator)
        assert report["valid"] is False
        assert report["checked_count"] == 4
        assert len(report["errors"]) == 2

        report = await recovery.validate_recovery([1, 2, 3], async_validator, sample_size=2)
        assert report == {"valid": True, "checked_count": 2, "errors": []}
