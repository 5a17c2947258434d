"""Attribute storage types and type inference for CSV cell values."""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Tuple


class AttributeType(str, Enum):
    """Storage types an attribute can have in the catalog."""

    # String-like
    STRING = "STRING"
    TEXT = "TEXT"
    EMAIL = "EMAIL"
    URL = "URL"
    PHONE = "PHONE"
    COLOR = "COLOR"
    HTML = "HTML"

    # Numeric
    INTEGER = "INTEGER"
    NUMBER = "NUMBER"
    FLOAT = "FLOAT"
    CURRENCY = "CURRENCY"
    PERCENTAGE = "PERCENTAGE"

    BOOLEAN = "BOOLEAN"

    # Date/time
    DATE = "DATE"
    DATETIME = "DATETIME"
    TIME = "TIME"

    # Complex
    JSON = "JSON"
    ARRAY = "ARRAY"
    FILE = "FILE"
    IMAGE = "IMAGE"
    ENUM = "ENUM"


LONG_TEXT_THRESHOLD = 255

_BOOLEAN_VALUES = frozenset(["true", "false", "1", "0", "yes", "no"])
_INTEGER_RE = re.compile(r"^-?\d+$")
_DECIMAL_RE = re.compile(r"^-?\d*\.\d+$")
_DATE_RES = (
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"),
)
_URL_RE = re.compile(r"^https?://.+", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _is_array(value: str) -> bool:
    return "," in value and len(value.split(",")) >= 2


# Evaluated top to bottom, first match wins
INFERENCE_RULES: List[Tuple[Callable[[str], bool], AttributeType]] = [
    (lambda v: v.lower() in _BOOLEAN_VALUES, AttributeType.BOOLEAN),
    (lambda v: bool(_INTEGER_RE.match(v)), AttributeType.INTEGER),
    (lambda v: bool(_DECIMAL_RE.match(v)), AttributeType.NUMBER),
    (lambda v: any(r.match(v) for r in _DATE_RES), AttributeType.DATE),
    (lambda v: bool(_URL_RE.match(v)), AttributeType.URL),
    (lambda v: bool(_EMAIL_RE.match(v)), AttributeType.EMAIL),
    (_is_array, AttributeType.ARRAY),
    (lambda v: len(v) > LONG_TEXT_THRESHOLD, AttributeType.TEXT),
]

ATTRIBUTE_TYPE_COMPATIBILITY: Dict[AttributeType, FrozenSet[AttributeType]] = {
    AttributeType.STRING: frozenset(
        [
            AttributeType.TEXT,
            AttributeType.EMAIL,
            AttributeType.URL,
            AttributeType.PHONE,
            AttributeType.COLOR,
        ]
    ),
    AttributeType.TEXT: frozenset([AttributeType.STRING, AttributeType.HTML]),
    AttributeType.NUMBER: frozenset(
        [
            AttributeType.INTEGER,
            AttributeType.FLOAT,
            AttributeType.CURRENCY,
            AttributeType.PERCENTAGE,
        ]
    ),
    AttributeType.INTEGER: frozenset([AttributeType.NUMBER]),
    AttributeType.ARRAY: frozenset([AttributeType.STRING]),
}


def infer_attribute_type(value: object) -> AttributeType:
    """Classify a cell value into an attribute storage type."""
    if value is None:
        return AttributeType.STRING

    text = str(value).strip()
    if not text:
        return AttributeType.STRING

    for predicate, attribute_type in INFERENCE_RULES:
        if predicate(text):
            return attribute_type
    return AttributeType.STRING


def is_type_compatible(stored: str, inferred: str) -> bool:
    """Check whether a value of ``inferred`` type fits a ``stored`` attribute."""
    if stored == inferred:
        return True

    try:
        stored_type = AttributeType(stored)
        inferred_type = AttributeType(inferred)
    except ValueError:
        return False

    return inferred_type in ATTRIBUTE_TYPE_COMPATIBILITY.get(
        stored_type, frozenset()
    ) or stored_type in ATTRIBUTE_TYPE_COMPATIBILITY.get(inferred_type, frozenset())


__all__ = [
    "AttributeType",
    "INFERENCE_RULES",
    "ATTRIBUTE_TYPE_COMPATIBILITY",
    "infer_attribute_type",
    "is_type_compatible",
]
