"""Job admission control.

A queued job may start when:
- fewer than JOB_GLOBAL_MAX jobs are processing
- its user has fewer than JOB_PER_USER_MAX jobs processing
- no other job of the same project is processing the same stage
- for paid stages, the project budget is not exhausted

Queued jobs are considered by priority (highest first), then age.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from config import settings
from domain.ai.cost_ledger import CostLedger
from models.base import utcnow
from models.matching_job import MatchingJob, JobStatus
from .stages import STAGES

logger = logging.getLogger(__name__)


@dataclass
class AdmissionDecision:
    admitted: bool
    reason: Optional[str] = None


def _stage_of(job: MatchingJob) -> Optional[int]:
    definition = STAGES.get(job.job_type)
    return definition.stage if definition else None


def _processing_jobs(db: Session) -> List[MatchingJob]:
    return db.query(MatchingJob).filter(MatchingJob.status == JobStatus.PROCESSING.value).all()


def _check(job: MatchingJob, running: List[MatchingJob], db: Session) -> AdmissionDecision:
    others = [r for r in running if r.id != job.id]

    if len(others) >= settings.JOB_GLOBAL_MAX:
        return AdmissionDecision(False, "global_limit")

    if job.user_id and sum(1 for r in others if r.user_id == job.user_id) >= settings.JOB_PER_USER_MAX:
        return AdmissionDecision(False, "user_limit")

    stage = _stage_of(job)
    if any(r.project_id == job.project_id and _stage_of(r) == stage for r in others):
        return AdmissionDecision(False, "project_stage_busy")

    definition = STAGES.get(job.job_type)
    if definition is not None and definition.paid and CostLedger.is_budget_exhausted(db, job.project_id):
        return AdmissionDecision(False, "budget_exhausted")

    return AdmissionDecision(True)


def check_admission(db: Session, job: MatchingJob) -> AdmissionDecision:
    """Decide whether a queued job may start now."""
    return _check(job, _processing_jobs(db), db)


def admissible_jobs(db: Session, limit: Optional[int] = None) -> List[MatchingJob]:
    """Queued jobs that may start now, in start order.

    Limits are applied cumulatively: admitting one job counts against the
    limits of the jobs after it.
    """
    running = _processing_jobs(db)
    queued = db.query(MatchingJob).filter(
        MatchingJob.status == JobStatus.QUEUED.value
    ).order_by(
        MatchingJob.priority.desc(),
        MatchingJob.queued_at.asc(),
        MatchingJob.id
    ).all()

    admitted = []
    for job in queued:
        if limit is not None and len(admitted) >= limit:
            break
        decision = _check(job, running, db)
        if decision.admitted:
            admitted.append(job)
            running.append(job)
        else:
            logger.debug(f"Job {job.id} not admitted: {decision.reason}")

    return admitted


def stale_jobs(db: Session) -> List[MatchingJob]:
    """Processing jobs nobody is working on (lost continuation or dead worker)."""
    cutoff = utcnow() - timedelta(seconds=settings.JOB_STALE_LOCK_SECONDS)
    return db.query(MatchingJob).filter(
        MatchingJob.status == JobStatus.PROCESSING.value,
        MatchingJob.updated_at < cutoff,
        or_(MatchingJob.lock_token.is_(None), MatchingJob.locked_at < cutoff)
    ).order_by(MatchingJob.updated_at).all()


def pending_work(db: Session) -> Tuple[List[MatchingJob], List[MatchingJob]]:
    """(admissible queued jobs, stale processing jobs) for the sweeper."""
    return admissible_jobs(db), stale_jobs(db)
