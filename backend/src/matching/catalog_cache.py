"""Supplier catalog cache.

Stages 2-4 and supersession scan the whole supplier catalog for every chunk.
The cache keeps one immutable snapshot per project and expires it after a
TTL. Matchers receive it by injection; worker and API entry points share
one instance per process through get_catalog_cache().
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from models.catalog_item import CatalogItem, CatalogRole
from models.interchange import InterchangeRow
from .ports import CatalogRecord, InterchangeRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogSnapshot:
    suppliers: Tuple[CatalogRecord, ...]
    interchange: Tuple[InterchangeRecord, ...]
    loaded_at: float
    _derived: dict = field(default_factory=dict, compare=False, repr=False)

    def supplier_by_id(self) -> Dict[UUID, CatalogRecord]:
        return self.derived("supplier_by_id", lambda snap: {s.id: s for s in snap.suppliers})

    def derived(self, name: str, builder: Callable[["CatalogSnapshot"], object]):
        """Build-once structure (index, lookup table) tied to this snapshot."""
        if name not in self._derived:
            self._derived[name] = builder(self)
        return self._derived[name]


class SupplierCatalogCache:
    """Project-scoped, time-invalidated cache of supplier catalogs.

    Args:
        ttl_seconds: Snapshot lifetime
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[UUID, CatalogSnapshot] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, db: Session, project_id: UUID) -> CatalogSnapshot:
        """Return the project's snapshot, loading it on a miss or after expiry."""
        now = self._clock()

        with self._lock:
            entry = self._entries.get(project_id)
            if entry is not None and now - entry.loaded_at < self.ttl_seconds:
                self.hits += 1
                return entry
            self.misses += 1

        snapshot = self._load(db, project_id, now)

        with self._lock:
            self._entries[project_id] = snapshot

        logger.info(
            f"Loaded supplier catalog for project {project_id}: "
            f"{len(snapshot.suppliers)} suppliers, {len(snapshot.interchange)} interchange rows"
        )
        return snapshot

    def invalidate(self, project_id: UUID) -> None:
        """Drop one project's snapshot (e.g. after a catalog re-import)."""
        with self._lock:
            self._entries.pop(project_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            return {
                "projects": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "ttl_seconds": self.ttl_seconds,
                "entries": {
                    str(project_id): {
                        "suppliers": len(entry.suppliers),
                        "interchange": len(entry.interchange),
                        "age_seconds": round(now - entry.loaded_at, 1),
                    }
                    for project_id, entry in self._entries.items()
                },
            }

    @staticmethod
    def _load(db: Session, project_id: UUID, now: float) -> CatalogSnapshot:
        suppliers = db.query(CatalogItem).filter(
            CatalogItem.project_id == project_id,
            CatalogItem.role == CatalogRole.SUPPLIER.value
        ).order_by(CatalogItem.id).all()

        rows = db.query(InterchangeRow).filter(
            InterchangeRow.project_id == project_id
        ).order_by(InterchangeRow.id).all()

        return CatalogSnapshot(
            suppliers=tuple(CatalogRecord.from_item(s) for s in suppliers),
            interchange=tuple(InterchangeRecord.from_row(r) for r in rows),
            loaded_at=now,
        )


_default_cache: Optional[SupplierCatalogCache] = None


def get_catalog_cache() -> SupplierCatalogCache:
    """Process-wide cache for the worker and API entry points."""
    global _default_cache
    if _default_cache is None:
        from config import settings
        _default_cache = SupplierCatalogCache(ttl_seconds=settings.CATALOG_CACHE_TTL_SECONDS)
    return _default_cache
