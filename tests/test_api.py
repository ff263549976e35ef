# tests/test_api.py
from datetime import timedelta

import pytest

from app.features.jobs import service as jobs_service
from app.features.jobs.schemas import JobStatus, utcnow
from app.features.jobs.targets import REQUIRED_APPROVALS, Target

from conftest import TINY_PNG_B64, make_job, make_review_job


@pytest.fixture
def photo_uploads(monkeypatch):
    calls = []

    def fake_upload(data, *, object_name, content_type):
        calls.append((object_name, content_type))
        return {"gs_uri": f"gs://test-bucket/{object_name}"}

    monkeypatch.setattr(jobs_service, "upload_bytes_to_gcs", fake_upload)
    return calls


def _create_payload(**overrides):
    payload = {
        "user_id": "user-1",
        "hero_name": "Mia",
        "comic_title": "Mia and the Glowing Map",
        "story_description": "Mia follows a glowing map.",
        "story_language": "de",
        "character_style": "explorer outfit",
        "illustration_style": "watercolor",
        "photo_base64": "data:image/png;base64," + TINY_PNG_B64,
    }
    payload.update(overrides)
    return payload


def test_create_job_debits_and_schedules(client, services, photo_uploads):
    r = client.post("/api/v1/jobs", json=_create_payload())
    assert r.status_code == 202
    body = r.json()
    job_id = body["job_id"]
    assert body["credits_used"] == 100
    assert body["status_url"] == f"/api/v1/jobs/{job_id}"

    assert services.ledger.debits == [("user-1", 100, "comic_generation", job_id)]
    assert services.scheduler.calls == [(job_id, 0)]
    assert photo_uploads == [(f"jobs/{job_id}/uploads/photo.png", "image/png")]

    status = client.get(f"/api/v1/jobs/{job_id}").json()
    assert status["status"] == "queued"
    assert status["input_data"]["photoStoragePath"] == f"gs://test-bucket/jobs/{job_id}/uploads/photo.png"
    assert status["input_data"]["storyLanguage"] == "de"
    assert status["output_data"]["generatedPages"] == {}


def test_create_job_with_insufficient_credits(client, services, photo_uploads):
    services.ledger.balances["user-1"] = 50
    r = client.post("/api/v1/jobs", json=_create_payload())
    assert r.status_code == 402
    assert r.json()["detail"]["required"] == 100
    assert list(services.store.iter_jobs()) == []
    assert services.scheduler.calls == []


def test_create_job_rejects_bad_photo(client, services, photo_uploads):
    r = client.post("/api/v1/jobs", json=_create_payload(photo_base64="R0lGODlhAQABAAAAACw="))
    assert r.status_code == 400
    assert services.ledger.debits == []


def test_create_job_requires_custom_style_text(client, photo_uploads):
    r = client.post("/api/v1/jobs", json=_create_payload(character_style="custom"))
    assert r.status_code == 400


def test_unknown_job_is_404(client):
    assert client.get("/api/v1/jobs/nope").status_code == 404


def test_worker_step_endpoint(client, services):
    job = make_job(services.store)
    r = client.post(f"/api/v1/tasks/worker/step/{job.id}")
    assert r.status_code == 200
    assert r.json()["action"] == "beats_locked"
    assert services.scheduler.calls == [(job.id, 300)]


def test_worker_step_scheduler_failure_is_500(client, services):
    def broken(job_id, delay_ms):
        raise RuntimeError("queue unavailable")

    services.scheduler.schedule = broken
    job = make_job(services.store)
    local = client.__class__(client.app, raise_server_exceptions=False)
    r = local.post(f"/api/v1/tasks/worker/step/{job.id}")
    assert r.status_code == 500


def test_approve_and_unapprove(client, services):
    job = make_review_job(services.store)
    r = client.post(f"/api/v1/jobs/{job.id}/pages/cover/approve")
    assert r.status_code == 200
    assert r.json()["pageApprovals"]["cover"] is True

    r = client.post(f"/api/v1/jobs/{job.id}/pages/cover/unapprove")
    body = r.json()
    assert body["approved"] is False
    assert body["approvedCount"] == 0
    assert body["totalRequired"] == 11


def test_invalid_page_key(client, services):
    job = make_review_job(services.store)
    r = client.post(f"/api/v1/jobs/{job.id}/pages/storyPage11/approve")
    assert r.status_code == 400
    assert "Invalid pageKey" in r.json()["detail"]


def test_approve_outside_review_is_409(client, services):
    job = make_job(services.store, status=JobStatus.PROCESSING)
    r = client.post(f"/api/v1/jobs/{job.id}/pages/cover/approve")
    assert r.status_code == 409


def test_edit_endpoint(client, services):
    job = make_review_job(services.store, approved=[Target.STORY_PAGE_2])
    r = client.post(
        f"/api/v1/jobs/{job.id}/pages/storyPage2/edit",
        json={"instructions": "Give the dog a red collar", "panel": 2},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["approved"] is False
    assert body["editCount"] == 1
    assert body["assetPath"].endswith("/storyPage2__edit1.png")


def test_edit_endpoint_insufficient_credits(client, services):
    services.ledger.balances["user-1"] = 0
    job = make_review_job(services.store)
    r = client.post(f"/api/v1/jobs/{job.id}/pages/cover/edit", json={"instructions": "Brighter"})
    assert r.status_code == 402
    assert services.generator.calls == []


def test_edit_endpoint_rejects_back_cover(client, services):
    job = make_review_job(services.store)
    r = client.post(f"/api/v1/jobs/{job.id}/pages/backCover/edit", json={"instructions": "Brighter"})
    assert r.status_code == 400


def test_finalize_endpoint_reports_missing_approvals(client, services):
    job = make_review_job(services.store, approved=[t for t in REQUIRED_APPROVALS if t != Target.STORY_PAGE_7])
    r = client.post(f"/api/v1/jobs/{job.id}/finalize")
    assert r.status_code == 400
    assert r.json()["detail"]["missingApprovals"] == ["storyPage7"]
    assert services.store.load(job.id).status == JobStatus.AWAITING_APPROVAL


def test_finalize_endpoint_starts_finalization(client, services):
    job = make_review_job(services.store, approved=REQUIRED_APPROVALS)
    r = client.post(f"/api/v1/jobs/{job.id}/finalize")
    assert r.status_code == 202
    assert r.json() == {"job_id": job.id, "status": "processing", "progress": 85}


def test_resume(client, services):
    job = make_job(services.store, status=JobStatus.PROCESSING)
    assert client.post(f"/api/v1/jobs/{job.id}/resume").status_code == 202
    assert services.scheduler.calls == [(job.id, 0)]

    done = make_job(services.store, status=JobStatus.COMPLETED)
    assert client.post(f"/api/v1/jobs/{done.id}/resume").status_code == 409


def test_admin_sweep_resumes_stalled_jobs(client, services):
    stale = make_job(services.store, status=JobStatus.PROCESSING)
    stale.last_heartbeat_at = utcnow() - timedelta(hours=1)
    services.store.save(stale)
    fresh = make_job(services.store, status=JobStatus.PROCESSING)
    make_review_job(services.store)

    r = client.post("/api/v1/admin/sweep")
    assert r.status_code == 200
    assert r.json()["resumed"] == [stale.id]
    assert services.scheduler.calls == [(stale.id, 0)]
    assert fresh.id not in r.json()["resumed"]
