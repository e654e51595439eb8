"""Integration tests for the matching job and project API

Tests the job workflow over HTTP:
- Job creation and dispatch to the work queue
- Status, listing, cancellation and retry
- Project budget, cost summary, unmatch and cache invalidation
"""

from uuid import UUID, uuid4

from fastapi.testclient import TestClient

from domain.ai.cost_ledger import CostLedger
from models.match_candidate import MatchCandidate
from models.matching_job import MatchingJob, JobStatus


class TestCreateJob:
    """Tests for POST /api/v1/jobs"""

    def test_create_job_dispatches(self, client: TestClient, catalog, project, dispatched):
        """Test a created job is queued and handed to the work queue"""
        catalog.source(project, "ABC-100")

        response = client.post(
            "/api/v1/jobs",
            json={"project_id": str(project.id), "job_type": "exact", "priority": 2},
            headers={"X-Actor-Id": "reviewer-7"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "queued"
        assert data["job_type"] == "exact"
        assert data["user_id"] == "reviewer-7"
        assert data["total_items"] == 1
        assert [str(job_id) for job_id in dispatched] == [data["id"]]

    def test_overrides_stored_in_config(self, client: TestClient, db_session, project):
        """Test optional overrides land in the job config"""
        response = client.post(
            "/api/v1/jobs",
            json={"project_id": str(project.id), "job_type": "ai", "max_cost_micros": 500_000},
        )

        job = db_session.get(MatchingJob, UUID(response.json()["id"]))
        assert job.config == {"maxCostMicros": 500_000, "jobType": "ai"}

    def test_unknown_project(self, client: TestClient, dispatched):
        response = client.post("/api/v1/jobs", json={"project_id": str(uuid4()), "job_type": "exact"})
        assert response.status_code == 404
        assert dispatched == []

    def test_unknown_job_type(self, client: TestClient, project):
        response = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "semantic"})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_invalid_tie_break_policy(self, client: TestClient, project):
        response = client.post(
            "/api/v1/jobs",
            json={"project_id": str(project.id), "job_type": "exact", "tie_break_policy": "random"},
        )
        assert response.status_code == 422


class TestJobStatus:
    """Tests for job status and listing"""

    def test_get_job(self, client: TestClient, catalog):
        project = catalog.project(budget_limit_micros=1_000_000)
        job_id = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "ai"}).json()["id"]

        response = client.get(f"/api/v1/jobs/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == job_id
        assert data["budget"] == {
            "limit_micros": 1_000_000,
            "spent_micros": 0,
            "remaining_micros": 1_000_000,
            "exhausted": False,
        }

    def test_get_unknown_job(self, client: TestClient):
        assert client.get(f"/api/v1/jobs/{uuid4()}").status_code == 404

    def test_list_by_status(self, client: TestClient, project):
        queued = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "exact"}).json()
        cancelled = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "fuzzy"}).json()
        client.post(f"/api/v1/jobs/{cancelled['id']}/cancel")

        response = client.get("/api/v1/jobs", params={"project_id": str(project.id), "status": "queued"})

        assert response.status_code == 200
        assert [job["id"] for job in response.json()] == [queued["id"]]


class TestCancelAndRetry:
    """Tests for cancel and retry endpoints"""

    def test_cancel_queued_job(self, client: TestClient, project):
        job_id = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "exact"}).json()["id"]

        response = client.post(
            f"/api/v1/jobs/{job_id}/cancel",
            json={"cancellation_type": "IMMEDIATE"},
            headers={"X-Actor-Id": "ops"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_type"] == "IMMEDIATE"

    def test_cancel_twice_conflicts(self, client: TestClient, project):
        job_id = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "exact"}).json()["id"]
        client.post(f"/api/v1/jobs/{job_id}/cancel")

        response = client.post(f"/api/v1/jobs/{job_id}/cancel")

        assert response.status_code == 409

    def test_retry_failed_job(self, client: TestClient, db_session, project, dispatched):
        job_id = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "exact"}).json()["id"]
        job = db_session.get(MatchingJob, UUID(job_id))
        job.status = JobStatus.FAILED.value
        job.error_message = "OperationalError: connection reset"
        db_session.commit()

        response = client.post(f"/api/v1/jobs/{job_id}/retry")

        assert response.status_code == 200
        assert response.json()["status"] == "queued"
        assert response.json()["error_message"] is None
        assert len(dispatched) == 2

    def test_retry_cancelled_job_conflicts(self, client: TestClient, project):
        job_id = client.post("/api/v1/jobs", json={"project_id": str(project.id), "job_type": "exact"}).json()["id"]
        client.post(f"/api/v1/jobs/{job_id}/cancel")

        assert client.post(f"/api/v1/jobs/{job_id}/retry").status_code == 409


class TestProjectEndpoints:
    """Tests for /api/v1/projects/{id}/..."""

    def test_budget_and_costs(self, client: TestClient, db_session, catalog):
        project = catalog.project(budget_limit_micros=100_000)
        ledger = CostLedger(db_session, project.id)
        ledger.charge("web_search", 16_000)
        ledger.charge("web_search", 16_000)
        db_session.commit()

        budget = client.get(f"/api/v1/projects/{project.id}/budget").json()
        costs = client.get(f"/api/v1/projects/{project.id}/costs").json()

        assert budget["remaining_micros"] == 68_000
        assert costs["total_micros"] == 32_000
        assert costs["by_operation"]["web_search"]["entries"] == 2

    def test_unknown_project(self, client: TestClient):
        assert client.get(f"/api/v1/projects/{uuid4()}/budget").status_code == 404

    def test_unmatch(self, client: TestClient, db_session, catalog, project):
        source = catalog.source(project, "A-1")
        supplier = catalog.supplier(project, "A-1")
        catalog.candidate(project, source, supplier)

        response = client.post(f"/api/v1/projects/{project.id}/unmatch")

        assert response.status_code == 200
        assert response.json() == {"project_id": str(project.id), "deleted": 1}
        assert db_session.query(MatchCandidate).count() == 0

    def test_invalidate_catalog_cache(self, client: TestClient, db_session, catalog, catalog_cache, project):
        catalog.supplier(project, "S-1")
        catalog_cache.get(db_session, project.id)

        response = client.post(f"/api/v1/projects/{project.id}/catalog-cache/invalidate")

        assert response.status_code == 204
        assert catalog_cache.stats()["projects"] == 0
