"""Service bootstrap for catalogworker.

Wires the job store, catalog backend, import orchestrator and scheduler from
WorkerConfig, and runs the scheduler until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
from typing import Optional

from .config import WorkerConfig, get_config
from .importer.catalog import CatalogStore
from .importer.orchestrator import ImportOrchestrator
from .scheduling.notifications import LoggingNotifier, Notifier
from .scheduling.postgres import PostgresJobStore
from .scheduling.scheduler import ImportScheduler
from .scheduling.store import InMemoryJobStore, JobStore
from .scheduling.timers import TimerRegistry

logger = logging.getLogger(__name__)


def load_catalog_backend(path: str) -> CatalogStore:
    """Instantiate a catalog store from a ``module:attribute`` import path.

    The attribute may be a class or any zero-argument factory.

    Raises:
        ValueError: if ``path`` is not of the form ``module:attribute``.
        ImportError: if the module cannot be imported.
        AttributeError: if the module has no such attribute.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid catalog backend path: {path!r} (expected module:attribute)")

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        logger.error(f"Failed to load catalog backend {path}: {e}")
        raise

    logger.info(f"Using catalog backend {path}")
    return factory()


async def build_job_store(config: WorkerConfig) -> JobStore:
    if not config.database_url:
        logger.warning("DATABASE_URL not set, scheduled imports will not survive a restart")
        return InMemoryJobStore()

    store = PostgresJobStore(config.database_url)
    await store.ensure_schema()
    return store


async def build_scheduler(
    config: Optional[WorkerConfig] = None,
    catalog: Optional[CatalogStore] = None,
    notifier: Optional[Notifier] = None,
) -> ImportScheduler:
    """Assemble an ImportScheduler from configuration (not started)."""
    config = config or get_config()
    catalog = catalog or load_catalog_backend(config.catalog_backend)

    return ImportScheduler(
        store=await build_job_store(config),
        importer=ImportOrchestrator(catalog, config.importer),
        timers=TimerRegistry(timezone=config.timezone),
        notifier=notifier or LoggingNotifier(),
        config=config.importer,
    )


async def serve(config: Optional[WorkerConfig] = None) -> None:
    """Run the import scheduler until a shutdown signal."""
    config = config or get_config()
    scheduler = await build_scheduler(config)

    restored = await scheduler.start()
    logger.info(
        f"{config.service_name} {config.service_version} started "
        f"({restored} scheduled imports, timezone {config.timezone})"
    )

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _shutdown_handler():
        logger.info("Shutdown signal received, stopping scheduler...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown_handler)

    await stop_event.wait()
    await scheduler.stop()
    logger.info("Import scheduler stopped.")


__all__ = ["build_scheduler", "build_job_store", "load_catalog_backend", "serve"]
