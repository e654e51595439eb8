"""PartMatch Backend - Main FastAPI Application

Automotive parts record linkage between an inventory catalog and supplier
catalogs.

This module creates and configures the main FastAPI application, including:
- Matching job and project pipeline routers
- Master rule router (review learning loop, administration)
- Request ID middleware and exception handlers
- Health and metrics endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from observability.logging_config import configure_logging
from observability.middleware import RequestIDMiddleware
from observability.router import router as observability_router
from jobs.router import router as jobs_router
from jobs.router import projects_router
from jobs.stages import STAGES
from rules.router import router as rules_router

configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the stage registry so misconfigured chunk sizes and ceilings show up at boot."""
    logger.info(f"PartMatch API starting ({settings.ENVIRONMENT})")
    for job_type, stage in STAGES.items():
        logger.info(
            f"Stage {stage.stage} {job_type}: chunk_size={stage.chunk_size()}, "
            f"cost_ceiling={stage.cost_ceiling()}"
        )
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; ai, web-search and supersession jobs will fail")

    yield

    logger.info("PartMatch API shutting down...")


app = FastAPI(
    title="PartMatch API",
    description="Multi-stage matching of inventory parts against supplier catalogs",
    version="0.1.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    openapi_url="/openapi.json" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

app.add_middleware(RequestIDMiddleware)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Return field-level details for request validation errors."""
    logger.warning(
        f"Validation error on {request.method} {request.url.path}",
        extra={"errors": exc.errors()}
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """Log database errors, return a generic message."""
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "database_error",
            "message": "A database error occurred. Please try again later.",
        },
    )


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

app.include_router(observability_router)
app.include_router(jobs_router, prefix="/api/v1")
app.include_router(projects_router, prefix="/api/v1")
app.include_router(rules_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root() -> dict[str, Any]:
    """Root endpoint - API information."""
    return {
        "name": "PartMatch API",
        "version": "0.1.0",
        "status": "running",
    }


def create_app() -> FastAPI:
    """Return the configured application (tests and ASGI servers)."""
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
