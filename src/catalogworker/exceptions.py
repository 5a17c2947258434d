"""Exception hierarchy for the import pipeline."""

from __future__ import annotations

from typing import Optional


class CatalogWorkerError(Exception):
    """Base class for all catalogworker errors."""


class InvalidCronExpression(CatalogWorkerError, ValueError):
    """Cron expression rejected at schedule/update time."""


class DownloadError(CatalogWorkerError):
    """Remote CSV could not be downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CsvParseError(CatalogWorkerError):
    """CSV text is syntactically malformed."""


class RowValidationError(CatalogWorkerError):
    """A single CSV row cannot be imported."""


class ProductValidationError(CatalogWorkerError):
    """The catalog store rejected a product upsert."""


class JobNotFoundError(CatalogWorkerError):
    """Job does not exist or is not owned by the caller."""

    def __init__(self, job_id: str):
        super().__init__(f"Scheduled import with ID {job_id} not found")
        self.job_id = job_id


class InvalidJobTransition(CatalogWorkerError):
    """Requested job status change is not allowed."""


class ExecutionAlreadyFinalized(CatalogWorkerError):
    """Execution log was already completed or failed."""


__all__ = [
    "CatalogWorkerError",
    "InvalidCronExpression",
    "DownloadError",
    "CsvParseError",
    "RowValidationError",
    "ProductValidationError",
    "JobNotFoundError",
    "InvalidJobTransition",
    "ExecutionAlreadyFinalized",
]
