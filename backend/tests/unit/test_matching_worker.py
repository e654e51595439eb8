"""Unit tests for the matching Celery tasks.

Tasks are called in-process; the session factory and the queue are
replaced so no broker is needed.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from jobs.orchestrator import JobOrchestrator
from jobs.service import create_job
from models.base import utcnow
from models.matching_job import MatchingJob, JobStatus
from workers import matching_worker


@pytest.fixture
def enqueued(monkeypatch, db_session, catalog_cache):
    """Route the worker to the test session and record continuations."""
    calls = []
    monkeypatch.setattr(matching_worker, "SessionLocal", lambda: db_session)
    monkeypatch.setattr(
        matching_worker,
        "build_orchestrator",
        lambda session: JobOrchestrator(session, catalog_cache=catalog_cache),
    )
    monkeypatch.setattr(
        matching_worker.process_matching_job,
        "apply_async",
        lambda args: calls.append(args[0]),
    )
    return calls


class TestProcessMatchingJob:
    """Test one chunk per task execution"""

    def test_continuation_enqueued(self, db_session, catalog, project, enqueued):
        """Test a chunk that leaves work behind enqueues the next one"""
        for i in range(3):
            catalog.source(project, f"P-{i}00")
        job = create_job(db_session, project.id, "exact", config={"chunkSize": 2})
        job_id = str(job.id)

        result = matching_worker.process_matching_job(job_id)

        assert result["has_more"] is True
        assert result["processed"] == 2
        assert enqueued == [job_id]

    def test_last_chunk_not_continued(self, db_session, catalog, project, enqueued):
        catalog.source(project, "P-100")
        job = create_job(db_session, project.id, "exact")

        result = matching_worker.process_matching_job(str(job.id))

        assert result["status"] == "completed"
        assert enqueued == []

    def test_unknown_job(self, enqueued):
        job_id = str(uuid4())
        assert matching_worker.process_matching_job(job_id) == {"job_id": job_id, "status": "not_found"}


class TestSweepMatchingJobs:
    """Test the periodic pickup of queued and stale jobs"""

    def test_enqueues_queued_and_stale(self, db_session, catalog, enqueued):
        queued = create_job(db_session, catalog.project(name="A").id, "exact")
        stale = create_job(db_session, catalog.project(name="B").id, "fuzzy")
        db_session.query(MatchingJob).filter(MatchingJob.id == stale.id).update({
            MatchingJob.status: JobStatus.PROCESSING.value,
            MatchingJob.updated_at: utcnow() - timedelta(hours=1),
        }, synchronize_session=False)
        db_session.commit()
        expected = [str(queued.id), str(stale.id)]

        result = matching_worker.sweep_matching_jobs()

        assert result == {"queued": 1, "stale": 1, "processing": 1}
        assert enqueued == expected
