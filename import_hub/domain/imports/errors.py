"""
Exceptions raised by the import pipeline.

Scope of each kind:
- ParseError: whole file, no partial dataset is produced.
- BatchWriteError: one batch; the batch processor records it and moves on.
- DestinationNotFoundError / JobFatalError: whole job, which ends as failed.
"""
from typing import Optional


class ImportPipelineError(Exception):
    """Base exception for the import pipeline."""
    pass


class ParseError(ImportPipelineError):
    """Raised when a file cannot be turned into a dataset."""

    def __init__(self, message: str, file_type: Optional[str] = None):
        self.file_type = file_type
        self.message = message
        super().__init__(message)


class UnsupportedFileTypeError(ParseError):
    """Raised when the file extension does not map to a supported format."""
    pass


class ReservedTableError(ImportPipelineError):
    """Raised when an import targets one of the system tables."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' is a system table and cannot be an import target")


class DestinationNotFoundError(ImportPipelineError):
    """Raised when the destination table does not exist."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Destination table '{table_name}' does not exist")


class BatchWriteError(ImportPipelineError):
    """Raised by a destination store when a bulk write is rejected."""

    def __init__(self, table_name: str, batch_size: int, message: str):
        self.table_name = table_name
        self.batch_size = batch_size
        self.message = message
        super().__init__(f"Failed to write {batch_size} rows to '{table_name}': {message}")


class ImportJobNotFoundError(ImportPipelineError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Import job '{job_id}' not found")


class InvalidJobTransitionError(ImportPipelineError):
    """Raised when a guarded status change finds an unexpected current status."""

    def __init__(self, job_id: str, expected: str, target: str, actual: Optional[str] = None):
        self.job_id = job_id
        self.expected = expected
        self.target = target
        self.actual = actual
        super().__init__(
            f"Import job '{job_id}' cannot move to '{target}': expected status '{expected}', "
            f"found '{actual}'"
        )


class JobFatalError(ImportPipelineError):
    """Raised after a job has been marked failed by an error outside the batch boundary."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        self.message = message
        super().__init__(f"Import job '{job_id}' failed: {message}")
