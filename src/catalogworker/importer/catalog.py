"""
Catalog store interface consumed by the import pipeline.

The catalog (products, categories, families, attributes) lives outside this
package. Hosts plug in their own implementation of ``CatalogStore`` through
the ``CATALOG_BACKEND`` setting; ``InMemoryCatalogStore`` is the reference
implementation used for local runs and tests.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from ..exceptions import ProductValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributeRecord:
    """An attribute as stored in the catalog."""

    id: int
    name: str
    type: str


@dataclass(frozen=True)
class AttributeValue:
    """Attribute id paired with the raw value for one product."""

    attribute_id: int
    value: str


@dataclass
class ProductUpsert:
    """Product payload built from one CSV row."""

    name: str
    sku: str
    product_link: Optional[str] = None
    image_url: Optional[str] = None
    sub_images: List[str] = field(default_factory=list)
    category_id: Optional[int] = None
    family_id: Optional[int] = None
    attributes: List[AttributeValue] = field(default_factory=list)


@dataclass
class ProductRecord:
    """Persisted product returned by an upsert."""

    id: int
    owner_id: int
    name: str
    sku: str
    product_link: Optional[str] = None
    image_url: Optional[str] = None
    sub_images: List[str] = field(default_factory=list)
    category_id: Optional[int] = None
    family_id: Optional[int] = None
    attributes: List[AttributeValue] = field(default_factory=list)


class CatalogStore(Protocol):
    """Find/create/upsert operations the importer needs from the catalog."""

    async def find_category(self, name: str, owner_id: int) -> Optional[int]:
        """Return the id of the owner's top-level category with this name."""
        ...

    async def create_category(self, name: str, owner_id: int) -> int:
        ...

    async def find_family(self, name: str, owner_id: int) -> Optional[int]:
        ...

    async def create_family(self, name: str, owner_id: int) -> int:
        ...

    async def find_attribute(self, name: str, owner_id: int) -> Optional[AttributeRecord]:
        ...

    async def create_attribute(
        self, name: str, attribute_type: str, owner_id: int
    ) -> AttributeRecord:
        ...

    async def upsert_product(self, product: ProductUpsert, owner_id: int) -> ProductRecord:
        """Create or update the product keyed by (sku, owner_id).

        Raises:
            ProductValidationError: if the catalog rejects the payload.
        """
        ...


class InMemoryCatalogStore:
    """Dictionary-backed CatalogStore."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.categories: Dict[Tuple[int, str], int] = {}
        self.families: Dict[Tuple[int, str], int] = {}
        self.attributes: Dict[Tuple[int, str], AttributeRecord] = {}
        self.products: Dict[Tuple[int, str], ProductRecord] = {}

    async def find_category(self, name: str, owner_id: int) -> Optional[int]:
        return self.categories.get((owner_id, name))

    async def create_category(self, name: str, owner_id: int) -> int:
        category_id = next(self._ids)
        self.categories[(owner_id, name)] = category_id
        logger.debug(f"Created category {name!r} (id={category_id}) for owner {owner_id}")
        return category_id

    async def find_family(self, name: str, owner_id: int) -> Optional[int]:
        return self.families.get((owner_id, name))

    async def create_family(self, name: str, owner_id: int) -> int:
        family_id = next(self._ids)
        self.families[(owner_id, name)] = family_id
        logger.debug(f"Created family {name!r} (id={family_id}) for owner {owner_id}")
        return family_id

    async def find_attribute(self, name: str, owner_id: int) -> Optional[AttributeRecord]:
        return self.attributes.get((owner_id, name))

    async def create_attribute(
        self, name: str, attribute_type: str, owner_id: int
    ) -> AttributeRecord:
        record = AttributeRecord(id=next(self._ids), name=name, type=str(attribute_type))
        self.attributes[(owner_id, name)] = record
        logger.debug(f"Created attribute {name!r} ({record.type}) for owner {owner_id}")
        return record

    async def upsert_product(self, product: ProductUpsert, owner_id: int) -> ProductRecord:
        if not product.name or not product.sku:
            raise ProductValidationError("Product name and sku are required")

        key = (owner_id, product.sku)
        existing = self.products.get(key)
        record = ProductRecord(
            id=existing.id if existing else next(self._ids),
            owner_id=owner_id,
            name=product.name,
            sku=product.sku,
            product_link=product.product_link,
            image_url=product.image_url,
            sub_images=list(product.sub_images),
            category_id=product.category_id,
            family_id=product.family_id,
            attributes=list(product.attributes),
        )
        self.products[key] = record
        return record


__all__ = [
    "AttributeRecord",
    "AttributeValue",
    "ProductUpsert",
    "ProductRecord",
    "CatalogStore",
    "InMemoryCatalogStore",
]
