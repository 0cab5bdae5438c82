"""Tests for the job administration endpoints"""

from fastapi.testclient import TestClient

EMAIL = {"to": "a@acme.test", "subject": "Hello", "html": "<p>Hi</p>"}


def _enqueue(client: TestClient, job_type: str, data: dict, **extra) -> str:
    response = client.post("/v1/jobs", json={"type": job_type, "data": data, **extra})
    assert response.status_code == 200
    return response.json()["data"]["job_id"]


def _dead_letter(client: TestClient) -> str:
    """Drive a job that cannot succeed into the dead-letter store."""
    _enqueue(
        client,
        "PROCESS_ATTACHMENT",
        {"attachment_id": "missing"},
        max_attempts=1,
    )
    client.post("/v1/jobs/process")
    records = client.get("/v1/jobs/failed").json()["data"]["jobs"]
    assert len(records) == 1
    return records[0]["id"]


def test_enqueue_returns_pending_job(client: TestClient):
    response = client.post("/v1/jobs", json={"type": "SEND_EMAIL", "data": EMAIL})

    body = response.json()
    assert body["ok"] is True
    assert body["data"]["type"] == "SEND_EMAIL"
    assert body["data"]["status"] == "PENDING"

    job = client.get(f"/v1/jobs/{body['data']['job_id']}").json()["data"]
    assert job["status"] == "PENDING"
    assert job["attempts"] == 0
    assert job["data"]["subject"] == "Hello"


def test_enqueue_unknown_type_is_rejected(client: TestClient):
    response = client.post("/v1/jobs", json={"type": "MAKE_COFFEE", "data": {}})

    assert response.status_code == 422
    assert response.json()["ok"] is False


def test_enqueue_invalid_payload_is_rejected(client: TestClient):
    response = client.post("/v1/jobs", json={"type": "SEND_EMAIL", "data": {"to": "x"}})

    assert response.status_code == 422
    assert "SEND_EMAIL" in response.json()["error"]["message"]


def test_get_unknown_job(client: TestClient):
    response = client.get("/v1/jobs/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"]["details"] == {"job_id": "does-not-exist"}


def test_stats_cover_every_type(client: TestClient):
    _enqueue(client, "SEND_EMAIL", EMAIL)

    stats = client.get("/v1/jobs/stats/overview").json()["data"]

    assert len(stats) == 7
    assert stats["SEND_EMAIL"]["pending"] == 1
    assert stats["AUDIT_COMPACTION"]["pending"] == 0


def test_process_drains_and_completes(client: TestClient):
    job_id = _enqueue(client, "SEND_EMAIL", EMAIL)

    response = client.post("/v1/jobs/process", params={"max_jobs_per_type": 5})

    data = response.json()["data"]
    assert data["processed"]["SEND_EMAIL"] == 1
    assert data["stats"]["SEND_EMAIL"] == {
        "pending": 0,
        "processing": 0,
        "failed": 0,
        "processed": 1,
    }
    job = client.get(f"/v1/jobs/{job_id}").json()["data"]
    assert job["status"] == "COMPLETED"
    assert job["attempts"] == 1


def test_failed_job_lifecycle(client: TestClient):
    record_id = _dead_letter(client)

    listing = client.get("/v1/jobs/failed", params={"type": "PROCESS_ATTACHMENT"})
    body = listing.json()["data"]
    assert body["total"] == 1
    assert body["jobs"][0]["attempts"] == 1
    assert "not found" in body["jobs"][0]["error"]

    retried = client.post(f"/v1/jobs/failed/{record_id}/retry").json()["data"]
    new_job = client.get(f"/v1/jobs/{retried['job_id']}").json()["data"]
    assert new_job["status"] == "PENDING"
    assert new_job["attempts"] == 0

    record = client.get("/v1/jobs/failed").json()["data"]["jobs"][0]
    assert record["retried_at"] is not None

    assert client.delete(f"/v1/jobs/failed/{record_id}").status_code == 200
    assert client.get("/v1/jobs/failed").json()["data"]["total"] == 0


def test_failed_list_filters_by_type(client: TestClient):
    _dead_letter(client)

    response = client.get("/v1/jobs/failed", params={"type": "SEND_EMAIL"})

    assert response.json()["data"] == {"jobs": [], "total": 0, "limit": 50, "offset": 0}


def test_unknown_failed_job(client: TestClient):
    assert client.post("/v1/jobs/failed/nope/retry").status_code == 404
    assert client.delete("/v1/jobs/failed/nope").status_code == 404


def test_failed_list_accepts_naive_dates(client: TestClient):
    _dead_letter(client)

    since = client.get("/v1/jobs/failed", params={"date_from": "2020-01-01T00:00:00"})
    until = client.get("/v1/jobs/failed", params={"date_to": "2020-01-01T00:00:00"})

    assert since.status_code == 200
    assert since.json()["data"]["total"] == 1
    assert until.json()["data"]["total"] == 0
