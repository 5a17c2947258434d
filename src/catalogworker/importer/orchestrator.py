"""
Import Orchestrator.

Runs the Fetch -> Normalize -> Batch import flow for one CSV URL.
Whole-run failures (download, CSV syntax) propagate to the caller;
per-row failures are collected in the returned ImportResult.
"""

import logging
import time
from typing import Optional

from ..config import ImportConfig
from .catalog import CatalogStore
from .executor import BatchImportExecutor, ImportResult
from .fetcher import CsvFetcher
from .normalizer import normalize_rows

logger = logging.getLogger(__name__)


class ImportOrchestrator:
    """Imports products for one owner from a remote CSV."""

    def __init__(
        self,
        catalog: CatalogStore,
        config: Optional[ImportConfig] = None,
        fetcher: Optional[CsvFetcher] = None,
    ):
        self.config = config or ImportConfig()
        self.catalog = catalog
        self.fetcher = fetcher or CsvFetcher(
            max_redirects=self.config.max_redirects,
            timeout=self.config.download_timeout,
        )
        self.executor = BatchImportExecutor(
            catalog,
            batch_size=self.config.batch_size,
            progress_interval=self.config.progress_interval,
        )

    async def import_from_csv(self, csv_url: str, owner_id: int) -> ImportResult:
        """Download, parse and import a CSV.

        Raises:
            DownloadError: if the CSV cannot be fetched.
            CsvParseError: if the CSV is malformed.
        """
        started = time.monotonic()
        logger.info(f"Starting CSV import from URL: {csv_url} for owner: {owner_id}")

        try:
            text = await self.fetcher.fetch(csv_url)
            return await self.executor.run(normalize_rows(text), owner_id, started)
        except Exception as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.error(f"CSV import failed after {elapsed}ms: {e}")
            raise


async def run_import(
    csv_url: str,
    owner_id: int,
    catalog: CatalogStore,
    config: Optional[ImportConfig] = None,
) -> ImportResult:
    """Run a one-off import outside of any schedule.

    CLI entry point.
    """
    orchestrator = ImportOrchestrator(catalog, config)
    return await orchestrator.import_from_csv(csv_url, owner_id)
