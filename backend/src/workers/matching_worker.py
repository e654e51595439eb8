"""Matching worker - Celery tasks that consume matching job chunks.

process_matching_job runs exactly one chunk and, when work remains,
enqueues the next chunk immediately. sweep_matching_jobs is the periodic
safety net: it starts admissible queued jobs and revives processing jobs
whose continuation was lost.
"""

import logging
from typing import Dict, Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal
from domain.ai.ports import LLMProviderPort, WebSearchPort
from infrastructure.ai import OpenAIProvider, TavilySearchProvider
from jobs.admission import pending_work
from jobs.orchestrator import JobOrchestrator, JobNotFoundError, TRANSIENT_ERRORS
from models.matching_job import MatchingJob, JobStatus
from observability.metrics import jobs_processing
from .base import celery_app, MatchingTask

logger = logging.getLogger(__name__)


def _llm_provider() -> Optional[LLMProviderPort]:
    if not settings.OPENAI_API_KEY:
        return None
    return OpenAIProvider(api_key=settings.OPENAI_API_KEY)


def _search_provider() -> Optional[WebSearchPort]:
    if not settings.TAVILY_API_KEY:
        return None
    return TavilySearchProvider(api_key=settings.TAVILY_API_KEY)


def build_orchestrator(session: Session) -> JobOrchestrator:
    """Orchestrator wired with the configured providers.

    Missing API keys leave the provider unset; paid jobs then fail with a
    clear message instead of the worker refusing to start.
    """
    return JobOrchestrator(session, llm=_llm_provider(), search=_search_provider())


@celery_app.task(name="matching.process_job", base=MatchingTask, bind=True)
def process_matching_job(self, job_id: str) -> Dict[str, Any]:
    """Run the next chunk of a matching job (background task).

    Args:
        job_id: UUID string of the job

    Returns:
        Dict with the chunk outcome:
        - job_id, status, has_more, claimed, processed, matches, reason

    Raises:
        Retry: On transient errors (database, provider timeouts and rate limits)
    """
    job_uuid = UUID(job_id)
    session = SessionLocal()

    try:
        outcome = build_orchestrator(session).run_chunk(job_uuid)
    except JobNotFoundError as e:
        logger.warning(str(e))
        return {"job_id": job_id, "status": "not_found"}
    except TRANSIENT_ERRORS as e:
        countdown = self.retry_countdown()
        logger.warning(
            f"Job {job_id} chunk hit transient error, retry {self.request.retries + 1} in {countdown}s: {e}"
        )
        raise self.retry(exc=e, countdown=countdown)
    finally:
        session.close()

    if outcome.has_more:
        process_matching_job.apply_async(args=[job_id])

    return outcome.to_dict()


@celery_app.task(name="matching.sweep_jobs", bind=True)
def sweep_matching_jobs(self) -> Dict[str, Any]:
    """Enqueue admissible queued jobs and stale processing jobs.

    Safe to run at any frequency: claims are exclusive, so a job enqueued
    twice is processed by one worker at a time.

    Returns:
        Dict with counts of enqueued queued and stale jobs
    """
    session = SessionLocal()
    try:
        queued_jobs, stale_jobs = pending_work(session)
        queued = [str(job.id) for job in queued_jobs]
        stale = [str(job.id) for job in stale_jobs]
        processing = session.query(MatchingJob).filter(
            MatchingJob.status == JobStatus.PROCESSING.value
        ).count()
    finally:
        session.close()

    jobs_processing.set(processing)

    for job_id in queued + stale:
        process_matching_job.apply_async(args=[job_id])

    if queued or stale:
        logger.info(f"Sweeper enqueued {len(queued)} queued and {len(stale)} stale jobs")

    return {"queued": len(queued), "stale": len(stale), "processing": processing}
