"""Unit tests for job admission control"""

from datetime import timedelta

from config import settings
from jobs.admission import admissible_jobs, check_admission, stale_jobs
from jobs.service import create_job
from models.base import utcnow
from models.matching_job import MatchingJob, JobStatus


def _start(db_session, job):
    job.status = JobStatus.PROCESSING.value
    db_session.commit()
    return job


class TestCheckAdmission:
    """Test the start conditions of a queued job"""

    def test_admitted_when_idle(self, db_session, project):
        job = create_job(db_session, project.id, "exact")
        decision = check_admission(db_session, job)
        assert decision.admitted is True
        assert decision.reason is None

    def test_global_limit(self, db_session, catalog, monkeypatch):
        """Test the process-wide concurrency cap"""
        monkeypatch.setattr(settings, "JOB_GLOBAL_MAX", 2)
        for i in range(2):
            _start(db_session, create_job(db_session, catalog.project(name=f"P{i}").id, "exact"))
        job = create_job(db_session, catalog.project(name="Waiting").id, "exact")

        assert check_admission(db_session, job).reason == "global_limit"

    def test_user_limit(self, db_session, catalog, monkeypatch):
        """Test the per-user concurrency cap"""
        monkeypatch.setattr(settings, "JOB_PER_USER_MAX", 1)
        _start(db_session, create_job(db_session, catalog.project(name="A").id, "exact", user_id="u1"))
        mine = create_job(db_session, catalog.project(name="B").id, "exact", user_id="u1")
        theirs = create_job(db_session, catalog.project(name="C").id, "exact", user_id="u2")

        assert check_admission(db_session, mine).reason == "user_limit"
        assert check_admission(db_session, theirs).admitted is True

    def test_project_stage_busy(self, db_session, project):
        """Test one job per project and stage"""
        _start(db_session, create_job(db_session, project.id, "exact"))
        same_stage = create_job(db_session, project.id, "exact")
        other_stage = create_job(db_session, project.id, "fuzzy")

        assert check_admission(db_session, same_stage).reason == "project_stage_busy"
        assert check_admission(db_session, other_stage).admitted is True

    def test_budget_blocks_paid_stages_only(self, db_session, catalog):
        """Test an exhausted budget holds back paid jobs"""
        project = catalog.project(budget_limit_micros=1_000, current_spend_micros=1_000)
        paid = create_job(db_session, project.id, "web-search")
        free = create_job(db_session, project.id, "fuzzy")

        assert check_admission(db_session, paid).reason == "budget_exhausted"
        assert check_admission(db_session, free).admitted is True


class TestAdmissibleJobs:
    """Test queue ordering and cumulative limits"""

    def test_priority_then_age(self, db_session, catalog):
        low = create_job(db_session, catalog.project(name="A").id, "exact", priority=0)
        high = create_job(db_session, catalog.project(name="B").id, "exact", priority=5)
        older = create_job(db_session, catalog.project(name="C").id, "exact", priority=0)
        older.queued_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        assert [j.id for j in admissible_jobs(db_session)] == [high.id, older.id, low.id]

    def test_limits_are_cumulative(self, db_session, project):
        """Test admitting one job counts against the ones behind it"""
        first = create_job(db_session, project.id, "ai", priority=1)
        create_job(db_session, project.id, "supersession")
        fuzzy = create_job(db_session, project.id, "fuzzy")

        assert [j.id for j in admissible_jobs(db_session)] == [first.id, fuzzy.id]

    def test_limit_argument(self, db_session, catalog):
        for i in range(3):
            create_job(db_session, catalog.project(name=f"P{i}").id, "exact")
        assert len(admissible_jobs(db_session, limit=2)) == 2


class TestStaleJobs:
    """Test detection of abandoned processing jobs"""

    def test_old_unlocked_job_is_stale(self, db_session, project):
        job = _start(db_session, create_job(db_session, project.id, "exact"))
        old = utcnow() - timedelta(seconds=settings.JOB_STALE_LOCK_SECONDS + 60)
        db_session.query(MatchingJob).filter(MatchingJob.id == job.id).update(
            {MatchingJob.updated_at: old}, synchronize_session=False
        )
        db_session.commit()

        assert [j.id for j in stale_jobs(db_session)] == [job.id]

    def test_fresh_lock_not_stale(self, db_session, project):
        job = _start(db_session, create_job(db_session, project.id, "exact"))
        old = utcnow() - timedelta(seconds=settings.JOB_STALE_LOCK_SECONDS + 60)
        db_session.query(MatchingJob).filter(MatchingJob.id == job.id).update({
            MatchingJob.updated_at: old,
            MatchingJob.lock_token: "worker-1",
            MatchingJob.locked_at: utcnow(),
        }, synchronize_session=False)
        db_session.commit()

        assert stale_jobs(db_session) == []

    def test_recent_job_not_stale(self, db_session, project):
        _start(db_session, create_job(db_session, project.id, "exact"))
        assert stale_jobs(db_session) == []
