"""
Ordinance Catalog Service

Single-fetch catalog of ordinance records with the municipality exemplar set
computed once against the unfiltered store order and cached alongside it.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from flask import current_app, has_app_context

from .ordinance_grouping import GroupingContext, exemplar_for, group_records
from .record_store import OrdinanceRecord, RecordStore

logger = logging.getLogger(__name__)

RECORD_STORE_KEY = "record_store"


@dataclass(frozen=True)
class OrdinanceCatalog:
    """Unfiltered records plus their exemplar set."""
    records: Tuple[OrdinanceRecord, ...]
    exemplar_ids: FrozenSet = field(default_factory=frozenset)

    @classmethod
    def build(cls, records) -> 'OrdinanceCatalog':
        records = tuple(records)
        return cls(records=records, exemplar_ids=exemplar_for(records))

    def context(self, survey_group_key: str, uncategorized_group_key: str) -> GroupingContext:
        return GroupingContext(
            exemplar_ids=self.exemplar_ids,
            survey_group_key=survey_group_key,
            uncategorized_group_key=uncategorized_group_key,
        )

    def filter(self, department: Optional[str] = None, category: Optional[str] = None,
               search: Optional[str] = None) -> List[OrdinanceRecord]:
        """Return a filtered working copy; exemplar status is unaffected."""
        filtered = list(self.records)
        if department and department != 'all':
            filtered = [r for r in filtered if r.department == department]
        if category and category != 'all':
            filtered = [r for r in filtered if r.category == category]
        if search:
            needle = search.strip().lower()
            filtered = [
                r for r in filtered
                if needle in r.title.lower() or needle in r.municipality_name.lower()
            ]
        return filtered

    def departments(self) -> List[str]:
        return [key for key in group_records(self.records, uncategorized='') if key]

    def categories(self) -> List[str]:
        seen = {}
        for record in self.records:
            if record.category:
                seen.setdefault(record.category, None)
        return list(seen)


class OrdinanceCatalogService:
    """Service for loading and caching the ordinance catalog."""

    CACHE_KEY = "ordinances:catalog"

    @staticmethod
    def _store() -> RecordStore:
        return current_app.extensions[RECORD_STORE_KEY]

    @staticmethod
    def _cache_enabled() -> bool:
        return bool(current_app.config.get('ORDINANCE_CATALOG_CACHE_ENABLED', True))

    @classmethod
    def get_catalog(cls, store: Optional[RecordStore] = None) -> OrdinanceCatalog:
        """Return the cached catalog, fetching from the store on a miss."""
        cached = cls._get_cached()
        if cached is not None:
            return cached

        catalog = OrdinanceCatalog.build((store or cls._store()).fetch_all())
        cls._set_cached(catalog)
        return catalog

    @classmethod
    def _get_cached(cls) -> Optional[OrdinanceCatalog]:
        if not cls._cache_enabled():
            return None
        try:
            from ..extensions import cache
            cached_data = cache.get(cls.CACHE_KEY)
        except Exception as e:
            logger.warning(f"Ordinance catalog cache retrieval failed: {e}")
            return None
        if not cached_data:
            logger.debug("Ordinance catalog cache miss")
            return None

        logger.debug("Ordinance catalog cache hit")
        payload = json.loads(cached_data)
        records = tuple(OrdinanceRecord(**item) for item in payload['records'])
        return OrdinanceCatalog(records=records, exemplar_ids=frozenset(payload['exemplar_ids']))

    @classmethod
    def _set_cached(cls, catalog: OrdinanceCatalog) -> bool:
        if not cls._cache_enabled():
            return False
        try:
            from ..extensions import cache
            ttl = current_app.config.get('ORDINANCE_CATALOG_CACHE_TTL', 300)
            payload = {
                'records': [asdict(record) for record in catalog.records],
                'exemplar_ids': sorted(catalog.exemplar_ids, key=str),
            }
            cache.set(cls.CACHE_KEY, json.dumps(payload, ensure_ascii=False), timeout=ttl)
            logger.debug(f"Cached ordinance catalog ({len(catalog.records)} records, TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.warning(f"Failed to cache ordinance catalog: {e}")
            return False

    @classmethod
    def invalidate(cls) -> bool:
        if not has_app_context():
            return False
        try:
            from ..extensions import cache
            cache.delete(cls.CACHE_KEY)
            logger.debug("Invalidated ordinance catalog cache")
            return True
        except Exception as e:
            logger.warning(f"Failed to invalidate ordinance catalog cache: {e}")
            return False
