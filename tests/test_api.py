import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api.api_server import create_app
from api.job_manager import JobQueue
from core.history import HistoryCache, utcnow
from core.plans import DEFAULT_PLAN
from core.service import UpscaleService
from core.storage import MemoryStore
from core.uploads import UploadRegistry
from core.validator import ScaleConstraintValidator
from runtime.usage_tracking import LocalUsageTracker

from .conftest import FakeBackend, png_bytes


def build_service(config, backend):
    store = MemoryStore()
    user_plans = {}
    history = HistoryCache(store, config)
    usage = LocalUsageTracker(store, plan_for_user=lambda user_id: user_plans.get(user_id, DEFAULT_PLAN))
    queue = JobQueue(backend, history, usage=usage, config=config)
    return UpscaleService(
        UploadRegistry(config.uploads_dir, config),
        ScaleConstraintValidator(config),
        queue,
        history,
        config,
        user_plans=user_plans,
    )


@pytest.fixture
def backend():
    return FakeBackend(hold=False)


@pytest.fixture
def service(config, backend):
    return build_service(config, backend)


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as client:
        yield client


def upload_png(client, width=64, height=48, name="cat.png"):
    response = client.post("/api/upload", files={"file": (name, png_bytes(width, height), "image/png")})
    assert response.status_code == 200, response.text
    return response.json()


def wait_for_status(client, job_id, statuses=("completed", "failed"), timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/status/{job_id}").json()
        if body["status"] in statuses or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def test_health_and_plans(client):
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert "image/png" in health["accepted_types"]

    plans = client.get("/api/plans").json()
    assert plans["pro"]["scales"]["photo"] == [2, 4, 8, 10]


def test_upload_returns_dimensions_and_preview(client):
    body = upload_png(client, 640, 480)

    assert (body["width"], body["height"]) == (640, 480)
    preview = client.get(f"/api/upload/{body['upload_id']}/preview")
    assert preview.status_code == 200
    assert preview.headers["content-type"] == "image/png"


def test_upload_rejects_non_images(client):
    response = client.post("/api/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400
    assert response.json()["error"] == "upload_rejected"


def test_upload_rejects_oversized_files(config, backend):
    config.max_upload_bytes = 100
    with TestClient(create_app(service=build_service(config, backend))) as client:
        response = client.post("/api/upload", files={"file": ("big.png", png_bytes(200, 200), "image/png")})
    assert response.status_code == 413


def test_validate_reports_pixel_ceiling(client):
    response = client.post("/api/validate", json={
        "plan": "basic", "quality": "photo", "width": 4000, "height": 3000, "scale": 8,
    })

    body = response.json()
    assert body["kind"] == "rejected"
    assert body["reason"] == "exceeds_pixel_ceiling"
    assert body["suggested_scale"] == 3
    assert body["allowed_scales"] == [2, 4, 8]
    assert body["max_allowed_scale"] == 2


def test_validate_reports_segments(client):
    body = client.post("/api/validate", json={
        "plan": "basic", "quality": "photo", "width": 3000, "height": 2000, "scale": 4,
    }).json()

    assert body["kind"] == "segment_required"
    assert body["segments"]["segments"] == 4


def test_process_completes_and_lands_in_history(client):
    upload = upload_png(client)

    response = client.post("/api/process", json={
        "upload_id": upload["upload_id"], "user_id": "alice", "plan": "pro", "quality": "art", "scale": 4,
    })
    assert response.status_code == 200, response.text
    job = wait_for_status(client, response.json()["job_id"])

    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["result_url"] == "https://cdn.test/result.png"

    history = client.get("/api/history", params={"image_type": "art"}).json()
    assert history["total"] == 1
    assert history["items"][0]["id"] == job["job_id"]
    assert history["items"][0]["days_until_expiry"] == 30

    usage = client.get("/api/usage/alice").json()
    assert usage["used_this_month"] == 1
    assert usage["monthly_limit"] == 500


def test_process_rejects_scale_outside_plan(client):
    upload = upload_png(client)

    response = client.post("/api/process", json={
        "upload_id": upload["upload_id"], "plan": "basic", "quality": "photo", "scale": 16,
    })

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["suggested_scale"] == 8


def test_process_requires_current_upload(client):
    response = client.post("/api/process", json={"upload_id": "gone", "scale": 2})
    assert response.status_code == 404
    assert response.json()["error"] == "no_upload"


def test_process_refuses_exhausted_quota(client, service):
    service.queue.usage.set_monthly_limit("alice", 0)
    upload = upload_png(client)

    response = client.post("/api/process", json={"upload_id": upload["upload_id"], "user_id": "alice", "scale": 2})

    assert response.status_code == 402
    assert response.json()["error"] == "quota_exceeded"


def test_cancel_running_job(config):
    backend = FakeBackend(hold=True)
    with TestClient(create_app(service=build_service(config, backend))) as client:
        upload = upload_png(client)
        job = client.post("/api/process", json={"upload_id": upload["upload_id"], "scale": 2}).json()

        current = client.get("/api/jobs/current").json()
        assert current["job_id"] == job["job_id"]

        cancelled = client.post(f"/api/cancel/{job['job_id']}").json()
        assert cancelled["status"] == "failed"
        assert cancelled["cancelled"] is True
        assert cancelled["error"] == "Cancelled by user"

        again = client.post(f"/api/cancel/{job['job_id']}").json()
        assert again == cancelled
        assert client.get("/api/jobs/current").json() is None


def test_unknown_job_is_404(client):
    assert client.get("/api/status/missing").status_code == 404
    response = client.post("/api/cancel/missing")
    assert response.status_code == 404
    assert response.json()["error"] == "job_not_found"


def test_history_delete_clear_and_cleanup(client, service, make_item):
    assert service.history.last_cleanup_at() is not None
    now = utcnow()
    service.history.append(make_item(id="fresh", timestamp=now))
    service.history.append(make_item(id="old", timestamp=now - timedelta(days=45)))
    service.history.append(make_item(id="other", timestamp=now - timedelta(days=1)))

    sorted_ids = [item["id"] for item in client.get("/api/history", params={"sort": "oldest"}).json()["items"]]
    assert sorted_ids == ["old", "other", "fresh"]

    # The startup pass already ran; only a forced pass removes the expired item
    assert client.post("/api/history/cleanup").json()["ran"] is False
    forced = client.post("/api/history/cleanup", params={"force": True}).json()
    assert forced == {"ran": True, "removed": 1, "expired": 1, "overflow": 0, "remaining": 2}

    deleted = client.request("DELETE", "/api/history", json={"ids": ["other", "missing"]}).json()
    assert deleted == {"removed": 1, "remaining": 1}

    cleared = client.delete("/api/history/all").json()
    assert cleared == {"removed": 1, "remaining": 0}
