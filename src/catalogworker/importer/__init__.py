"""
CSV import pipeline.

Components:
- fetcher: redirect-following download, Google Sheets URL translation
- normalizer: CSV parsing and header synonym mapping
- inference: attribute type inference and compatibility
- resolver: run-scoped find-or-create of categories/families/attributes
- executor: batched concurrent product upsert
- orchestrator: Fetch -> Normalize -> Import flow
- catalog: catalog store interface (implemented by the host)
"""

from .catalog import CatalogStore, InMemoryCatalogStore, ProductUpsert
from .executor import BatchImportExecutor, ImportResult, RowError
from .fetcher import CsvFetcher, translate_spreadsheet_url
from .inference import AttributeType, infer_attribute_type, is_type_compatible
from .normalizer import NormalizedRow, normalize_rows
from .orchestrator import ImportOrchestrator, run_import
from .resolver import EntityResolver, RunCache

__all__ = [
    "CatalogStore",
    "InMemoryCatalogStore",
    "ProductUpsert",
    "BatchImportExecutor",
    "ImportResult",
    "RowError",
    "CsvFetcher",
    "translate_spreadsheet_url",
    "AttributeType",
    "infer_attribute_type",
    "is_type_compatible",
    "NormalizedRow",
    "normalize_rows",
    "ImportOrchestrator",
    "run_import",
    "EntityResolver",
    "RunCache",
]
