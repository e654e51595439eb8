"""Background workers for chunked matching jobs.

All matching work runs through Celery tasks:
1. process_matching_job: one chunk per execution, continuation by re-enqueueing
2. sweep_matching_jobs: periodic pickup of queued and stale jobs
"""

from .base import celery_app, MatchingTask

__all__ = [
    "celery_app",
    "MatchingTask",
]
