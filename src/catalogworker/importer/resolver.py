"""
Entity resolution for CSV rows.

Finds or creates the categories, families and attributes a row refers to.
Results are kept in a RunCache that lives for exactly one import run; first
creation of each name is serialized so that concurrent rows naming the same
new entity end up with one id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .catalog import AttributeValue, CatalogStore
from .inference import infer_attribute_type, is_type_compatible

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, str]


@dataclass(frozen=True)
class CachedAttribute:
    id: int
    storage_type: str


@dataclass
class RunCache:
    """Entities resolved during one import run, keyed by (owner_id, name)."""

    categories: Dict[CacheKey, int] = field(default_factory=dict)
    families: Dict[CacheKey, int] = field(default_factory=dict)
    attributes: Dict[CacheKey, CachedAttribute] = field(default_factory=dict)
    _locks: Dict[Tuple[str, CacheKey], asyncio.Lock] = field(default_factory=dict)

    def lock_for(self, kind: str, key: CacheKey) -> asyncio.Lock:
        """Per-entity lock guarding first creation."""
        return self._locks.setdefault((kind, key), asyncio.Lock())

    def clear(self) -> None:
        self.categories.clear()
        self.families.clear()
        self.attributes.clear()
        self._locks.clear()


class EntityResolver:
    """Resolves entity names to catalog ids for one import run."""

    def __init__(self, catalog: CatalogStore, cache: Optional[RunCache] = None):
        self.catalog = catalog
        self.cache = cache if cache is not None else RunCache()

    async def resolve_category(self, name: str, owner_id: int) -> int:
        """Get or create a top-level category."""
        return await self._resolve_named(
            "category",
            self.cache.categories,
            name,
            owner_id,
            self.catalog.find_category,
            self.catalog.create_category,
        )

    async def resolve_family(self, name: str, owner_id: int) -> int:
        """Get or create a family."""
        return await self._resolve_named(
            "family",
            self.cache.families,
            name,
            owner_id,
            self.catalog.find_family,
            self.catalog.create_family,
        )

    async def _resolve_named(
        self,
        kind: str,
        cache: Dict[CacheKey, int],
        name: str,
        owner_id: int,
        find: Callable[[str, int], Awaitable[Optional[int]]],
        create: Callable[[str, int], Awaitable[int]],
    ) -> int:
        key = (owner_id, name)
        if key in cache:
            return cache[key]

        async with self.cache.lock_for(kind, key):
            # Another row may have created it while we waited
            if key in cache:
                return cache[key]

            logger.debug(f"Finding or creating {kind}: {name} for owner: {owner_id}")
            entity_id = await find(name, owner_id)
            if entity_id is None:
                entity_id = await create(name, owner_id)
                logger.debug(f"Created new {kind} {name!r} with ID: {entity_id}")

            cache[key] = entity_id
            return entity_id

    async def resolve_attribute(
        self, name: str, value: str, owner_id: int
    ) -> AttributeValue:
        """Get or create an attribute and pair it with ``value``.

        A new attribute gets the type inferred from ``value``. An existing one
        keeps its stored type; if the value does not fit that type a warning is
        logged and the value is imported anyway.
        """
        key = (owner_id, name)
        inferred = infer_attribute_type(value)

        cached = self.cache.attributes.get(key)
        if cached is None:
            async with self.cache.lock_for("attribute", key):
                cached = self.cache.attributes.get(key)
                if cached is None:
                    cached = await self._find_or_create_attribute(
                        name, inferred.value, owner_id
                    )
                    self.cache.attributes[key] = cached

        if not is_type_compatible(cached.storage_type, inferred.value):
            logger.warning(
                f"Attribute {name} type mismatch. Expected: {cached.storage_type}, "
                f"Found: {inferred.value}. Value: {value}"
            )

        return AttributeValue(attribute_id=cached.id, value=value.strip())

    async def _find_or_create_attribute(
        self, name: str, inferred_type: str, owner_id: int
    ) -> CachedAttribute:
        record = await self.catalog.find_attribute(name, owner_id)
        if record is None:
            record = await self.catalog.create_attribute(name, inferred_type, owner_id)
            logger.debug(
                f"Created new attribute {name!r} with ID: {record.id}, type: {inferred_type}"
            )
        return CachedAttribute(id=record.id, storage_type=str(record.type))


__all__ = ["CachedAttribute", "RunCache", "EntityResolver"]
