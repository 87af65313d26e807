"""API tests: FastAPI TestClient with the database and Redis dependencies overridden."""

import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

from datetime import date

import pytest
from fastapi.testclient import TestClient

from context.engine.time_utils import iter_dates
from src.api_server import app
from src.dependencies import get_db, get_job_manager, get_lock_manager
from src.redis_job_manager import JobStatus, RedisJobManager
from src.redis_worker import process_job
from src.run_lock import RunLockManager

from roster_fixtures import CLINIC, WED, seed_clinic

OPEN_DAYS = [d for d in iter_dates(date(2025, 3, 1), date(2025, 3, 31)) if d.weekday() != 6]
RUN = {"clinicId": CLINIC, "year": 2025, "month": 3}


@pytest.fixture()
def jobs(fake_redis):
    return RedisJobManager(redis_client=fake_redis, key_prefix="test")


@pytest.fixture()
def locks(fake_redis):
    return RunLockManager(redis_client=fake_redis, key_prefix="test")


@pytest.fixture()
def schedule(session_factory):
    session = session_factory()
    try:
        return seed_clinic(session, ["H1", "H2", "H3", "H4"], requirement=2,
                           roster_days=OPEN_DAYS, holidays=[WED])
    finally:
        session.close()


@pytest.fixture()
def client(session_factory, jobs, locks):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_manager] = lambda: jobs
    app.dependency_overrides[get_lock_manager] = lambda: locks
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert "X-Request-ID" in response.headers

    def test_request_id_echoed(self, client):
        response = client.get("/version", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestAssignmentRun:

    def test_run_returns_summary(self, client, schedule):
        response = client.post("/v1/assignments/run", json=RUN)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["successCount"] == 2 * len(OPEN_DAYS)
        assert body["holidayChanges"] == 2
        assert 0 <= body["fairnessScore"] <= 100

    def test_run_in_progress_is_409(self, client, schedule, locks):
        locks.acquire(CLINIC, 2025, 3)
        response = client.post("/v1/assignments/run", json=RUN)
        assert response.status_code == 409
        assert response.json()["errorCode"] == "RUN_IN_PROGRESS"

    def test_missing_schedule_is_404(self, client):
        response = client.post("/v1/assignments/run", json={**RUN, "month": 4})
        assert response.status_code == 404

    def test_invalid_payload_is_422(self, client):
        response = client.post("/v1/assignments/run", json={**RUN, "month": 13})
        assert response.status_code == 422


class TestScheduleEndpoints:

    def test_confirm_twice_is_400(self, client, schedule):
        assert client.post(f"/v1/schedules/{schedule.id}/confirm").json()["status"] == "CONFIRMED"
        response = client.post(f"/v1/schedules/{schedule.id}/confirm")
        assert response.status_code == 400
        assert response.json()["errorCode"] == "INVALID_TRANSITION"

    def test_unknown_schedule_is_404(self, client):
        response = client.post("/v1/schedules/nope/confirm")
        assert response.status_code == 404
        assert response.json()["errorCode"] == "SCHEDULE_NOT_FOUND"

    def test_deploy_inline_then_read_snapshot(self, client, schedule):
        client.post("/v1/assignments/run", json=RUN)
        response = client.post(f"/v1/schedules/{schedule.id}/deploy", params={"background": "false"})
        assert response.status_code == 200
        assert response.json()["status"] == "DEPLOYED"
        assert response.json()["snapshotCount"] == 4

        snapshot = client.get("/v1/fairness/H1/2025/3")
        assert snapshot.status_code == 200
        assert set(snapshot.json()["cumulativeDeviation"]) == {
            "total", "night", "weekend", "holiday", "holidayAdjacent"}

    def test_missing_snapshot_is_404(self, client, schedule):
        assert client.get("/v1/fairness/H1/2025/3").status_code == 404

    def test_deploy_in_background(self, client, schedule, jobs, session_factory):
        response = client.post(f"/v1/schedules/{schedule.id}/deploy")
        job_id = response.json()["jobId"]
        assert job_id

        assert process_job(jobs, job_id, session_factory=session_factory, log_prefix="[TEST]")
        status = client.get(f"/v1/jobs/{job_id}").json()
        assert status["status"] == JobStatus.COMPLETED.value
        assert status["result"]["snapshotCount"] == 4


class TestValidationEndpoint:

    def test_inline_validation(self, client, schedule):
        client.post("/v1/assignments/run", json=RUN)
        response = client.post(f"/v1/schedules/{schedule.id}/validate", json={"autoFix": True})
        assert response.status_code == 200
        body = response.json()
        assert body["scheduleId"] == schedule.id
        assert body["logId"]
        assert body["summary"]["byType"].get("DUPLICATE_ASSIGNMENT", 0) == 0

    def test_background_validation(self, client, schedule, jobs, session_factory):
        response = client.post(f"/v1/schedules/{schedule.id}/validate", params={"background": "true"})
        assert response.status_code == 202
        job_id = response.json()["jobId"]
        assert client.get(f"/v1/jobs/{job_id}").json()["status"] == "queued"

        process_job(jobs, job_id, session_factory=session_factory, log_prefix="[TEST]")
        status = client.get(f"/v1/jobs/{job_id}").json()
        assert status["status"] == "completed"
        assert status["result"]["scheduleId"] == schedule.id

    def test_unknown_job_is_404(self, client):
        assert client.get("/v1/jobs/does-not-exist").status_code == 404


class TestLeaveEndpoints:

    def test_quota_check(self, client, schedule):
        response = client.post("/v1/leave/quota-check", json={"staffId": "H1", "date": "2025-03-03"})
        assert response.status_code == 200
        body = response.json()
        assert body["canApprove"] is True
        assert body["dimensions"][0]["dimension"] == "total"

    def test_apply_and_approve(self, client, schedule):
        response = client.post("/v1/leave/applications",
                               json={"staffId": "H1", "date": "2025-03-03", "leaveType": "ANNUAL"})
        assert response.status_code == 200
        leave = response.json()
        assert leave["status"] == "PENDING"
        assert leave["decision"]["canApprove"] is True

        approved = client.post(f"/v1/leave/applications/{leave['id']}/approve")
        assert approved.json()["status"] == "CONFIRMED"

        rejected = client.post(f"/v1/leave/applications/{leave['id']}/reject", json={"reason": "late"})
        assert rejected.status_code == 400
        assert rejected.json()["errorCode"] == "LEAVE_NOT_OPEN"

    def test_unknown_staff_is_404(self, client, schedule):
        response = client.post("/v1/leave/quota-check", json={"staffId": "ghost", "date": "2025-03-03"})
        assert response.status_code == 404
        assert response.json()["errorCode"] == "STAFF_NOT_FOUND"

    def test_duplicate_leave_is_409(self, client, schedule):
        payload = {"staffId": "H1", "date": "2025-03-03"}
        client.post("/v1/leave/applications", json=payload)
        response = client.post("/v1/leave/applications", json=payload)
        assert response.status_code == 409
