"""
catalogworker - Scheduled CSV product imports.

Periodically downloads product CSVs (or Google Sheets exports), resolves
categories, families and typed attributes, and upserts products into a
catalog store. Each run is recorded in an execution log.

Usage:
    from catalogworker import build_scheduler, ScheduleImportRequest

    scheduler = await build_scheduler()
    await scheduler.start()
    await scheduler.schedule(
        ScheduleImportRequest(
            cron_expression="0 */6 * * *",
            csv_url="https://example.com/products.csv",
        ),
        owner_id=42,
    )
"""

__version__ = "0.1.0"

from .config import ImportConfig, WorkerConfig, get_config
from .exceptions import (
    CatalogWorkerError,
    CsvParseError,
    DownloadError,
    InvalidCronExpression,
    InvalidJobTransition,
    JobNotFoundError,
)
from .importer import ImportOrchestrator, ImportResult, InMemoryCatalogStore
from .scheduling import (
    ImportScheduler,
    ImportStatus,
    ScheduledImportJob,
    ScheduleImportRequest,
    UpdateScheduledImportRequest,
)
from .service import build_scheduler, serve

__all__ = [
    "__version__",
    # Config
    "ImportConfig",
    "WorkerConfig",
    "get_config",
    # Errors
    "CatalogWorkerError",
    "CsvParseError",
    "DownloadError",
    "InvalidCronExpression",
    "InvalidJobTransition",
    "JobNotFoundError",
    # Import pipeline
    "ImportOrchestrator",
    "ImportResult",
    "InMemoryCatalogStore",
    # Scheduling
    "ImportScheduler",
    "ImportStatus",
    "ScheduledImportJob",
    "ScheduleImportRequest",
    "UpdateScheduledImportRequest",
    # Service
    "build_scheduler",
    "serve",
]
