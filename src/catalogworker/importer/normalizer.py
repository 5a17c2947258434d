"""
CSV row normalization.

Parses raw CSV text and maps header synonyms ("Product Name", "image_url",
...) onto the canonical product fields. Headers that are not product fields
pass through verbatim and become attribute columns.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Dict, Iterator, List

from ..exceptions import CsvParseError

logger = logging.getLogger(__name__)

# Canonical field name -> raw cell value, in header order
NormalizedRow = Dict[str, str]

CSV_FIELD_MAPPINGS: Dict[str, str] = {
    "product_name": "name",
    "product name": "name",
    "product_sku": "sku",
    "product sku": "sku",
    "family_name": "family",
    "family name": "family",
    "category_name": "category",
    "category name": "category",
    "product_link": "productLink",
    "product link": "productLink",
    "url": "productLink",
    "image_url": "imageUrl",
    "image url": "imageUrl",
    "image": "imageUrl",
    "sub_images": "subImages",
    "sub images": "subImages",
}

# Product fields; never treated as attributes
RESERVED_COLUMNS = frozenset(
    ["name", "sku", "productLink", "imageUrl", "subImages", "category", "family", "status"]
)

_CANONICAL_BY_LOWER = {column.lower(): column for column in RESERVED_COLUMNS}


def normalize_header(header: str) -> str:
    """Map a raw CSV header to its canonical field name.

    Lookup is case-insensitive; unknown headers are returned trimmed but
    otherwise untouched.
    """
    stripped = header.strip()
    key = stripped.lower()
    if key in CSV_FIELD_MAPPINGS:
        return CSV_FIELD_MAPPINGS[key]
    return _CANONICAL_BY_LOWER.get(key, stripped)


def normalize_rows(text: str) -> Iterator[NormalizedRow]:
    """Yield one NormalizedRow per CSV data record.

    The generator is lazy and single-use. Malformed CSV raises
    CsvParseError when the offending record is reached.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    reader = csv.reader(io.StringIO(text, newline=""), strict=True)

    try:
        header = next(reader, None)
        if header is None:
            return
        columns: List[str] = [normalize_header(h) for h in header]
        logger.debug(f"CSV columns: {columns}")

        for record in reader:
            if not any(cell.strip() for cell in record):
                continue
            if len(record) > len(columns):
                logger.debug(
                    f"Line {reader.line_num}: ignoring {len(record) - len(columns)} extra cells"
                )
            row: NormalizedRow = {}
            for index, column in enumerate(columns):
                row[column] = record[index] if index < len(record) else ""
            yield row
    except csv.Error as e:
        raise CsvParseError(f"Failed to parse CSV: line {reader.line_num}: {e}") from e


__all__ = [
    "NormalizedRow",
    "CSV_FIELD_MAPPINGS",
    "RESERVED_COLUMNS",
    "normalize_header",
    "normalize_rows",
]
