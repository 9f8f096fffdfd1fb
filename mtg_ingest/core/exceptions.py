"""
Exception hierarchy for migration jobs.

Fatal errors derive from MigrationError and stop a job; RowValidationError
is row-level and only ever increments counters.
"""


class MigrationError(Exception):
    """Base class for job-fatal migration errors."""
    pass


class SourceFileError(MigrationError):
    """Source file is missing, unreadable, empty or over the size ceiling."""
    pass


class SourceFormatError(MigrationError):
    """Source stream or CSV structure could not be parsed."""
    pass


class MigrationCancelledError(MigrationError):
    """Raised inside a job after a cooperative cancel request."""
    pass


class RetryExhaustedError(MigrationError):
    """An operation kept failing after every retry attempt."""

    def __init__(self, operation_id: str, attempts: int, last_error: Exception):
        self.operation_id = operation_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Operation {operation_id} failed after {attempts} attempts: {last_error}"
        )


class BatchWriteError(MigrationError):
    """A batch could not be committed; all of its rows count as failed."""

    def __init__(self, message: str, count: int):
        self.count = count
        super().__init__(message)


class RowValidationError(ValueError):
    """A single input row is malformed."""
    pass
