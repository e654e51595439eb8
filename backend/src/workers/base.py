"""Celery application and base task for matching workers.

Every chunk of a matching job is one task execution. A task that leaves
more work behind enqueues the next chunk itself (continuation); the beat
schedule runs a sweeper that picks up queued jobs and jobs whose
continuation was lost.

Task Signature Pattern:
======================

@celery_app.task(base=MatchingTask, bind=True)
def my_task(self, job_id: str) -> Dict[str, Any]:
    session = SessionLocal()
    try:
        ...
        session.commit()
    finally:
        session.close()

Job ids travel as UUID strings (JSON serializable).
"""

import logging

from celery import Celery, Task
from celery.signals import setup_logging

from config import settings
from observability.logging_config import configure_logging
from observability.request_id import set_job_id

logger = logging.getLogger(__name__)

celery_app = Celery(
    "partmatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["workers.matching_worker"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,  # Chunks are idempotent; redeliver if a worker dies
    worker_prefetch_multiplier=1,
    task_routes={"matching.*": {"queue": "matching"}},
)

celery_app.conf.beat_schedule = {
    "matching-sweep": {
        "task": "matching.sweep_jobs",
        "schedule": 60.0,
        "options": {"expires": 55},
    },
}


class MatchingTask(Task):
    """Base task class for matching chunks.

    Retry policy:
    - Transient errors are retried by the task with exponential countdown
      (JOB_RETRY_COUNTDOWN_SECONDS * 2^n, capped at retry_backoff_max)
    - Everything else is handled inside the orchestrator (job marked failed)
    """
    max_retries = 5
    retry_backoff_max = 600  # 10 minutes max

    def retry_countdown(self) -> int:
        return min(settings.JOB_RETRY_COUNTDOWN_SECONDS * (2 ** self.request.retries), self.retry_backoff_max)

    def before_start(self, task_id, args, kwargs):
        job_id = kwargs.get("job_id") or (args[0] if args else None)
        set_job_id(str(job_id) if job_id else None)

    def after_return(self, status, retval, task_id, args, kwargs, einfo):
        set_job_id(None)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
