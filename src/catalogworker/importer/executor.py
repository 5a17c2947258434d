"""
Batch import executor.

Imports normalized CSV rows as products in fixed-size batches. Rows inside a
batch run concurrently; the next batch starts only once every row of the
current one has settled. A failing row is recorded and skipped, it never
aborts its batch or the run.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..exceptions import RowValidationError
from .catalog import CatalogStore, ProductUpsert
from .normalizer import RESERVED_COLUMNS, NormalizedRow
from .resolver import EntityResolver, RunCache

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
PROGRESS_LOG_INTERVAL = 50


@dataclass(frozen=True)
class RowError:
    """A row that could not be imported."""

    row: int
    identifier: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class ImportResult:
    """Aggregate outcome of one import run."""

    imported: int = 0
    errors: List[RowError] = field(default_factory=list)
    total_processed: int = 0
    execution_time: int = 0  # ms

    @property
    def success_rate(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return round(self.imported / self.total_processed * 100, 2)

    def error_messages(self, limit: Optional[int] = None) -> List[str]:
        errors = self.errors if limit is None else self.errors[:limit]
        return [e.message for e in errors]


def parse_sub_images(value: Optional[str]) -> List[str]:
    """Parse a subImages cell: a JSON array, else comma-separated URLs."""
    if not value or not value.strip():
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(url).strip() for url in parsed if str(url).strip()]
    return [url.strip() for url in value.split(",") if url.strip()]


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


class BatchImportExecutor:
    """Drives normalized rows through product upsert."""

    def __init__(
        self,
        catalog: CatalogStore,
        batch_size: int = BATCH_SIZE,
        progress_interval: int = PROGRESS_LOG_INTERVAL,
    ):
        self.catalog = catalog
        self.batch_size = batch_size
        self.progress_interval = progress_interval

    async def run(
        self,
        rows: Iterable[NormalizedRow],
        owner_id: int,
        started: Optional[float] = None,
    ) -> ImportResult:
        """Import every row for ``owner_id``.

        Args:
            rows: Normalized rows; consumed once.
            owner_id: Catalog owner the products belong to.
            started: ``time.monotonic()`` of the run start, for execution_time.

        Returns:
            ImportResult with counts and per-row errors.
        """
        started = time.monotonic() if started is None else started
        resolver = EntityResolver(self.catalog, RunCache())
        result = ImportResult()
        iterator = iter(rows)

        try:
            while True:
                batch = list(itertools.islice(iterator, self.batch_size))
                if not batch:
                    break

                first_row = result.total_processed + 1
                outcomes = await asyncio.gather(
                    *(
                        self._import_row(row, owner_id, resolver, first_row + offset)
                        for offset, row in enumerate(batch)
                    ),
                    return_exceptions=True,
                )

                for row, outcome in zip(batch, outcomes):
                    result.total_processed += 1
                    if isinstance(outcome, BaseException):
                        if not isinstance(outcome, Exception):
                            raise outcome
                        result.errors.append(
                            self._row_error(row, result.total_processed, outcome)
                        )
                    else:
                        result.imported += 1

                    if result.total_processed % self.progress_interval == 0:
                        self._log_progress(result)
        finally:
            resolver.cache.clear()

        result.execution_time = int((time.monotonic() - started) * 1000)
        if result.total_processed % self.progress_interval:
            self._log_progress(result)
        logger.info(
            f"CSV import completed in {result.execution_time}ms. "
            f"Total: {result.total_processed}, Imported: {result.imported} "
            f"({result.success_rate}%), Errors: {len(result.errors)}"
        )
        return result

    async def _import_row(
        self,
        row: NormalizedRow,
        owner_id: int,
        resolver: EntityResolver,
        row_number: int,
    ) -> None:
        name = (row.get("name") or "").strip()
        sku = (row.get("sku") or "").strip()
        logger.debug(f"Processing product {row_number}: {name or sku or 'Unknown'}")

        if not name or not sku:
            raise RowValidationError("Missing required fields: name and sku are mandatory")

        category = (row.get("category") or "").strip()
        family = (row.get("family") or "").strip()
        category_id = await resolver.resolve_category(category, owner_id) if category else None
        family_id = await resolver.resolve_family(family, owner_id) if family else None

        attributes = []
        for column, value in row.items():
            if column in RESERVED_COLUMNS or value is None or not value.strip():
                continue
            attributes.append(await resolver.resolve_attribute(column, value, owner_id))

        product = ProductUpsert(
            name=name,
            sku=sku,
            product_link=_optional(row.get("productLink")),
            image_url=_optional(row.get("imageUrl")),
            sub_images=parse_sub_images(row.get("subImages")),
            category_id=category_id,
            family_id=family_id,
            attributes=attributes,
        )
        await self.catalog.upsert_product(product, owner_id)

    @staticmethod
    def _row_error(row: NormalizedRow, row_number: int, error: Exception) -> RowError:
        identifier = (
            (row.get("name") or "").strip()
            or (row.get("sku") or "").strip()
            or f"Row {row_number}"
        )
        message = f"Failed to import product '{identifier}': {error}"
        logger.error(f"Error importing product at row {row_number}: {message}")
        logger.debug(f"Row {row_number} data: {row}")
        return RowError(row=row_number, identifier=identifier, message=message)

    @staticmethod
    def _log_progress(result: ImportResult) -> None:
        logger.info(
            f"Progress: {result.total_processed} products processed, "
            f"{result.imported} imported, {len(result.errors)} errors"
        )


__all__ = [
    "BATCH_SIZE",
    "PROGRESS_LOG_INTERVAL",
    "RowError",
    "ImportResult",
    "BatchImportExecutor",
    "parse_sub_images",
]
