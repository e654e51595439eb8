"""Matching job and project pipeline API endpoints"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_actor_id, get_job_dispatcher, get_supplier_catalog_cache, JobDispatcher
from domain.ai.cost_ledger import CostLedger
from matching.catalog_cache import SupplierCatalogCache
from matching.exact_matcher import unmatch_project
from models.matching_job import JobStatus
from models.project import Project
from .job_status import JobStateError
from .orchestrator import JobNotFoundError
from .schemas import (
    JobCreateRequest,
    CancelJobRequest,
    JobResponse,
    JobStatusResponse,
    BudgetStatusResponse,
    CostSummaryResponse,
    UnmatchResponse,
)
from .service import (
    ProjectNotFoundError,
    create_job,
    request_cancellation,
    retry_job,
    get_job_status,
    list_jobs,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])
projects_router = APIRouter(prefix="/projects", tags=["projects"])


def _require_project(db: Session, project_id: UUID) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {project_id} not found")
    return project


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_matching_job(
    request: JobCreateRequest,
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id),
    dispatch: JobDispatcher = Depends(get_job_dispatcher)
):
    """Queue a matching job and hand its first chunk to the work queue."""
    try:
        job = create_job(
            db,
            project_id=request.project_id,
            job_type=request.job_type.value,
            user_id=actor_id,
            priority=request.priority,
            config=request.job_config()
        )
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    dispatch(job.id)
    return job


@router.get("", response_model=List[JobResponse])
def list_matching_jobs(
    project_id: Optional[UUID] = Query(None),
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    return list_jobs(db, project_id=project_id, status=job_status, limit=limit)


@router.get("/{job_id}", response_model=JobStatusResponse)
def get_matching_job(job_id: UUID, db: Session = Depends(get_db)):
    """Progress, counters and budget of a job."""
    try:
        return get_job_status(db, job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{job_id}/cancel", response_model=JobResponse)
def cancel_matching_job(
    job_id: UUID,
    request: CancelJobRequest = CancelJobRequest(),
    db: Session = Depends(get_db),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Request cancellation; processing jobs stop at their next checkpoint."""
    try:
        return request_cancellation(db, job_id, request.cancellation_type, cancelled_by=actor_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/{job_id}/retry", response_model=JobResponse)
def retry_matching_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    dispatch: JobDispatcher = Depends(get_job_dispatcher)
):
    """Re-queue a failed or paused job; it resumes from persisted state."""
    try:
        job = retry_job(db, job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    dispatch(job.id)
    return job


@projects_router.get("/{project_id}/budget", response_model=BudgetStatusResponse)
def get_project_budget(project_id: UUID, db: Session = Depends(get_db)):
    _require_project(db, project_id)
    return CostLedger.budget_status(db, project_id)


@projects_router.get("/{project_id}/costs", response_model=CostSummaryResponse)
def get_project_costs(project_id: UUID, db: Session = Depends(get_db)):
    """Estimated spend per paid operation."""
    _require_project(db, project_id)
    return CostLedger.cost_summary(db, project_id)


@projects_router.post("/{project_id}/unmatch", response_model=UnmatchResponse)
def unmatch(project_id: UUID, db: Session = Depends(get_db)):
    """Clear every candidate of a project so the pipeline can start over."""
    _require_project(db, project_id)
    deleted = unmatch_project(db, project_id)
    db.commit()
    return UnmatchResponse(project_id=project_id, deleted=deleted)


@projects_router.post("/{project_id}/catalog-cache/invalidate", status_code=status.HTTP_204_NO_CONTENT)
def invalidate_catalog_cache(
    project_id: UUID,
    db: Session = Depends(get_db),
    cache: SupplierCatalogCache = Depends(get_supplier_catalog_cache)
):
    """Drop the cached supplier catalog after a re-import."""
    _require_project(db, project_id)
    cache.invalidate(project_id)
