"""Observability API endpoints: metrics, health and readiness."""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from database import get_db
from dependencies import get_supplier_catalog_cache
from matching.catalog_cache import SupplierCatalogCache
from .health import (
    check_database_health,
    check_redis_health,
    get_overall_health,
    HealthStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Expose Prometheus metrics in exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get("/health")
def health_check(
    db: Session = Depends(get_db),
    cache: SupplierCatalogCache = Depends(get_supplier_catalog_cache)
):
    """Component health plus supplier catalog cache statistics.

    Returns 503 if any component is unhealthy.
    """
    components = {
        "database": check_database_health(db),
        "redis": check_redis_health(),
    }
    overall_status = get_overall_health(components)

    stats = cache.stats()
    response_data = {
        "status": overall_status.value,
        "components": {
            name: {
                "status": comp.status.value,
                "message": comp.message,
                "latency_ms": comp.latency_ms,
            }
            for name, comp in components.items()
        },
        "catalog_cache": {
            "projects": stats["projects"],
            "hits": stats["hits"],
            "misses": stats["misses"],
            "ttl_seconds": stats["ttl_seconds"],
        },
    }

    status_code = 200 if overall_status != HealthStatus.UNHEALTHY else 503
    return JSONResponse(content=response_data, status_code=status_code)


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    """Ready when the database answers."""
    db_health = check_database_health(db)

    if db_health.status == HealthStatus.HEALTHY:
        return {"status": "ready"}

    return JSONResponse(
        content={"status": "not_ready", "message": db_health.message},
        status_code=503
    )
