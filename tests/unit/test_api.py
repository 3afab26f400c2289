"""Unit tests for the HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from mailbox_automation.api import create_app
from mailbox_automation.exceptions import UpstreamTransient

OWNER = {"X-Mailbox-Owner": "owner@example.com"}
OTHER = {"X-Mailbox-Owner": "someone@example.com"}


@pytest.fixture
def client(runtime) -> TestClient:
    return TestClient(create_app(runtime))


def _create_scan(client: TestClient) -> str:
    response = client.post("/api/jobs/scan", headers=OWNER)
    assert response.status_code == 201
    return response.json()["job_id"]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_owner_header_is_401(client):
    response = client.get("/api/jobs")

    assert response.status_code == 401
    assert response.json()["error"] == "not_authenticated"


class TestJobRoutes:
    """Test suite for /api/jobs."""

    def test_scan_job_lifecycle(self, client):
        """Create, start, run a batch, pause, resume and cancel a scan."""
        job_id = _create_scan(client)

        started = client.post(f"/api/jobs/{job_id}/start", headers=OWNER).json()
        assert started["job"]["status"] == "running"
        assert started["enqueued"] is True

        batch = client.post(f"/api/jobs/{job_id}/batch", headers=OWNER).json()
        assert batch["batches"] == 1
        assert batch["job"]["counters"] == {"messages_processed": 2, "addresses_found": 4}
        assert batch["job"]["cursor"] == "page-1"

        paused = client.post(f"/api/jobs/{job_id}/pause", headers=OWNER).json()
        assert paused["status"] == "paused"
        assert paused["message"].startswith("Scan paused")

        resumed = client.post(f"/api/jobs/{job_id}/resume", headers=OWNER).json()
        assert resumed["job"]["status"] == "running"

        cancelled = client.post(f"/api/jobs/{job_id}/cancel", headers=OWNER).json()
        assert cancelled["status"] == "cancelled"
        assert cancelled["counters"]["messages_processed"] == 2

    def test_get_and_list(self, client):
        job_id = _create_scan(client)

        detail = client.get(f"/api/jobs/{job_id}", headers=OWNER)
        listing = client.get("/api/jobs", headers=OWNER)

        assert detail.status_code == 200
        assert detail.json()["status"] == "pending"
        assert [j["job_id"] for j in listing.json()["jobs"]] == [job_id]

    def test_other_owner_gets_404(self, client):
        job_id = _create_scan(client)

        response = client.get(f"/api/jobs/{job_id}", headers=OTHER)

        assert response.status_code == 404
        assert response.json()["error"] == "job_not_found"

    def test_second_active_scan_is_409(self, client):
        _create_scan(client)

        response = client.post("/api/jobs/scan", headers=OWNER)

        assert response.status_code == 409

    def test_create_and_start_in_one_call(self, client, task_queue):
        response = client.post("/api/jobs/scan", params={"start": "true"}, headers=OWNER)

        assert response.status_code == 201
        assert response.json()["status"] == "running"
        assert len(task_queue) == 1

    def test_delete_running_job_is_409(self, client):
        job_id = _create_scan(client)
        client.post(f"/api/jobs/{job_id}/start", headers=OWNER)

        response = client.delete(f"/api/jobs/{job_id}", headers=OWNER)

        assert response.status_code == 409
        assert "Could not delete job" in response.json()["message"]

    def test_delete_pending_job(self, client):
        job_id = _create_scan(client)

        assert client.delete(f"/api/jobs/{job_id}", headers=OWNER).status_code == 204
        assert client.get(f"/api/jobs/{job_id}", headers=OWNER).status_code == 404

    def test_transient_upstream_error_is_503_with_retry_after(self, client, mailbox):
        job_id = _create_scan(client)
        client.post(f"/api/jobs/{job_id}/start", headers=OWNER)
        mailbox.list_errors.append(UpstreamTransient("rate limited", retry_after=12))

        response = client.post(f"/api/jobs/{job_id}/batch", headers=OWNER)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "12"
        assert response.json()["error"] == "upstream_unavailable"


class TestLabelRoutes:
    """Test suite for label job creation."""

    def test_create_label_job(self, client):
        body = {"filterId": "f-1", "ruleCriteria": {"from": "news@example.com"}, "labelIds": ["Receipts"]}

        response = client.post("/api/jobs/label", json=body, headers=OWNER)

        assert response.status_code == 201
        data = response.json()
        assert data["kind"] == "label_application"
        assert data["filter_id"] == "f-1"
        assert data["rule_criteria"]["from"] == "news@example.com"
        assert data["counters"] == {"messages_processed": 0, "messages_matched": 0, "labels_applied": 0}

    def test_missing_labels_is_400(self, client):
        body = {"filterId": "f-1", "ruleCriteria": {"from": "news@example.com"}}

        response = client.post("/api/jobs/label", json=body, headers=OWNER)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_same_filter_twice_is_409(self, client):
        body = {"filterId": "f-1", "ruleCriteria": {"subject": "invoice"}, "labelIds": ["Bills"]}
        client.post("/api/jobs/label", json=body, headers=OWNER)

        response = client.post("/api/jobs/label", json=body, headers=OWNER)

        assert response.status_code == 409


class TestWorkerRoute:
    """Test suite for continuation delivery over HTTP."""

    def test_continuation_runs_job(self, client, task_queue):
        job_id = _create_scan(client)
        client.post(f"/api/jobs/{job_id}/start", headers=OWNER)
        payload = task_queue.pop().payload

        response = client.post(f"/api/workers/jobs/{job_id}", json=payload.model_dump(mode="json", by_alias=True))

        assert response.status_code == 200
        data = response.json()
        assert data["dropped"] is False
        assert data["job"]["status"] == "completed"

    def test_stale_continuation_is_acknowledged_as_dropped(self, client, task_queue):
        job_id = _create_scan(client)
        client.post(f"/api/jobs/{job_id}/start", headers=OWNER)
        payload = task_queue.pop().payload.model_copy(update={"retry_count": 0})

        response = client.post(f"/api/workers/jobs/{job_id}", json=payload.model_dump(mode="json", by_alias=True))

        assert response.status_code == 200
        assert response.json()["dropped"] is True

    def test_path_and_payload_mismatch_is_400(self, client, task_queue):
        job_id = _create_scan(client)
        client.post(f"/api/jobs/{job_id}/start", headers=OWNER)
        payload = task_queue.pop().payload

        response = client.post("/api/workers/jobs/other", json=payload.model_dump(mode="json", by_alias=True))

        assert response.status_code == 400

    def test_worker_token_is_enforced(self, runtime, task_queue):
        runtime.settings = runtime.settings.model_copy(update={"worker_token": "s3cret"})
        client = TestClient(create_app(runtime))
        job_id = _create_scan(client)
        client.post(f"/api/jobs/{job_id}/start", headers=OWNER)
        body = task_queue.pop().payload.model_dump(mode="json", by_alias=True)

        denied = client.post(f"/api/workers/jobs/{job_id}", json=body)
        allowed = client.post(f"/api/workers/jobs/{job_id}", json=body, headers={"X-Worker-Token": "s3cret"})

        assert denied.status_code == 401
        assert allowed.status_code == 200


class TestContactRoutes:
    """Test suite for /api/contacts."""

    def test_empty_snapshot(self, client):
        response = client.get("/api/contacts", headers=OWNER)

        assert response.status_code == 200
        assert response.json()["merged"] == []

    def test_snapshot_after_scan(self, client, task_queue):
        response = client.post("/api/jobs/scan", params={"start": "true"}, headers=OWNER)
        job_id = response.json()["job_id"]
        client.post(f"/api/workers/jobs/{job_id}", json=task_queue.pop().payload.model_dump(mode="json", by_alias=True))

        contacts = client.get("/api/contacts", headers=OWNER).json()
        stats = client.get("/api/contacts/stats", headers=OWNER).json()

        assert "alice@example.com" in contacts["merged"]
        assert stats["senders"] == 3
        assert stats["recipients"] == 3
        assert stats["merged"] == 5
        assert stats["message_sample_count"] == 3
