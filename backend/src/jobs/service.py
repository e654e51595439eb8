"""Matching job service: creation, cancellation, retry and status."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from domain.ai.cost_ledger import CostLedger
from matching.unmatched import count_unmatched
from models.base import utcnow
from models.matching_job import MatchingJob, JobStatus, CancellationType
from models.project import Project
from .job_status import JobStateError, transition
from .orchestrator import JobNotFoundError
from .stages import get_stage

logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    """Raised when a job is requested for an unknown project"""
    pass


def _get_job(db: Session, job_id: UUID) -> MatchingJob:
    job = db.get(MatchingJob, job_id)
    if job is None:
        raise JobNotFoundError(f"Matching job {job_id} not found")
    return job


def create_job(
    db: Session,
    project_id: UUID,
    job_type: str,
    user_id: Optional[str] = None,
    priority: int = 0,
    config: Optional[dict] = None
) -> MatchingJob:
    """Queue a matching job for one stage of a project.

    total_items is an estimate taken now; the orchestrator recounts on the
    first chunk after master rules have run.

    Raises:
        ValueError: If the job type is unknown
        ProjectNotFoundError: If the project does not exist
    """
    definition = get_stage(job_type)
    if db.get(Project, project_id) is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")

    job_config = dict(config or {})
    job_config["jobType"] = job_type

    job = MatchingJob(
        project_id=project_id,
        user_id=user_id,
        status=JobStatus.QUEUED.value,
        config=job_config,
        priority=priority,
        total_items=count_unmatched(db, project_id, definition.stage),
        queued_at=utcnow(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)

    logger.info(f"Queued {job_type} job {job.id} for project {project_id} ({job.total_items} items)")
    return job


def request_cancellation(
    db: Session,
    job_id: UUID,
    cancellation_type: CancellationType = CancellationType.GRACEFUL,
    cancelled_by: Optional[str] = None
) -> MatchingJob:
    """Cancel a job.

    Queued jobs are cancelled right away. Processing jobs get a request
    that the worker honors at its next checkpoint.

    Raises:
        JobNotFoundError: If the job does not exist
        JobStateError: If the job already finished
    """
    job = _get_job(db, job_id)

    if job.status == JobStatus.QUEUED.value:
        transition(job, JobStatus.CANCELLED)
        job.cancelled_at = utcnow()
    elif job.status != JobStatus.PROCESSING.value:
        raise JobStateError(f"Job {job_id} is {job.status} and cannot be cancelled")

    job.cancellation_requested = True
    job.cancellation_type = cancellation_type.value
    job.cancelled_by = cancelled_by
    db.commit()
    db.refresh(job)

    logger.info(f"Cancellation ({cancellation_type.value}) requested for job {job_id} by {cancelled_by}")
    return job


def retry_job(db: Session, job_id: UUID) -> MatchingJob:
    """Re-queue a failed job; it resumes from persisted state.

    A queued job (e.g. paused on its cost ceiling) is returned unchanged so
    the caller can simply re-enqueue it.

    Raises:
        JobNotFoundError: If the job does not exist
        JobStateError: If the job is neither failed nor queued
    """
    job = _get_job(db, job_id)

    if job.status == JobStatus.QUEUED.value:
        return job

    transition(job, JobStatus.QUEUED)
    job.error_message = None
    job.status_message = None
    job.lock_token = None
    job.locked_at = None
    job.queued_at = utcnow()
    db.commit()
    db.refresh(job)

    logger.info(f"Job {job_id} re-queued after failure ({job.processed_items} items already processed)")
    return job


def get_job_status(db: Session, job_id: UUID) -> dict:
    """Job progress record plus the project's budget status.

    Raises:
        JobNotFoundError: If the job does not exist
    """
    job = _get_job(db, job_id)
    status = job.to_dict()
    status["budget"] = CostLedger.budget_status(db, job.project_id)
    return status


def list_jobs(
    db: Session,
    project_id: Optional[UUID] = None,
    status: Optional[JobStatus] = None,
    limit: int = 50
) -> List[MatchingJob]:
    query = db.query(MatchingJob)
    if project_id is not None:
        query = query.filter(MatchingJob.project_id == project_id)
    if status is not None:
        query = query.filter(MatchingJob.status == status.value)
    return query.order_by(MatchingJob.created_at.desc(), MatchingJob.id).limit(limit).all()
