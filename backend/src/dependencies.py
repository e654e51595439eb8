"""Global FastAPI dependencies.

This module provides:
- get_actor_id: opaque actor identity from the X-Actor-Id header
- get_job_dispatcher: enqueues a job chunk on the work queue
- get_supplier_catalog_cache: process-wide supplier catalog cache

Authentication lives outside this service; the gateway in front of it
forwards the authenticated actor as X-Actor-Id.
"""

from typing import Callable, Optional
from uuid import UUID

from fastapi import Header

from matching.catalog_cache import SupplierCatalogCache, get_catalog_cache

JobDispatcher = Callable[[UUID], None]


def get_actor_id(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> Optional[str]:
    """Actor id used for job ownership and rule attribution (None if absent)."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


def _dispatch_to_queue(job_id: UUID) -> None:
    # Imported lazily so the API can start without a broker connection
    from workers.matching_worker import process_matching_job

    process_matching_job.delay(str(job_id))


def get_job_dispatcher() -> JobDispatcher:
    """Callable that enqueues the next chunk of a job.

    Tests override this dependency to run jobs in-process.
    """
    return _dispatch_to_queue


def get_supplier_catalog_cache() -> SupplierCatalogCache:
    return get_catalog_cache()
