from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient

from conftest import Harness
from core import Stage
import webapp.runtime
from webapp.app import app
from webapp.runtime import get_runtime


OWNER = {"X-User-Id": "reader_1"}


@pytest.fixture()
def api(tmp_path):
    h = Harness(tmp_path, prompt_interval_s=0, image_interval_s=0)
    app.dependency_overrides[get_runtime] = lambda: h.runtime
    try:
        with TestClient(app) as client:
            yield client, h
    finally:
        app.dependency_overrides.clear()


def _upload(client, title="Harbor Tales", name="harbor.txt", body=b"the lighthouse at dawn", headers=OWNER):
    return client.post(
        "/api/books/start-pipeline",
        data={"title": title},
        files={"book_file": (name, body, "text/plain")},
        headers=headers,
    )


def _wait_for(client, job_id: str, stages=("Completed", "Error"), timeout_s: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout_s
    while True:
        body = client.get(f"/api/books/{job_id}", headers=OWNER).json()
        if body["stage"] in stages and not body["running"]:
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"job {job_id} stuck at {body['stage']}")
        time.sleep(0.02)


def _sse_events(text: str) -> list:
    events = []
    for block in text.split("\n\n"):
        lines = block.strip().splitlines()
        if len(lines) == 2 and lines[0].startswith("event: "):
            events.append((lines[0][len("event: "):], json.loads(lines[1][len("data: "):])))
    return events


def test_health(api) -> None:
    client, _ = api
    assert client.get("/api/health").json() == {"status": "ok"}


def test_start_runs_pipeline_to_completion(api) -> None:
    client, h = api

    response = _upload(client)

    assert response.status_code == 202
    started = response.json()
    assert started["action"] == "create"
    done = _wait_for(client, started["job_id"])
    assert done["stage"] == "Completed"
    assert done["progress"] == 100
    assert done["has_generated_cover"] is True
    assert done["total_units"] == 3

    pages = client.get(f"/api/books/{started['job_id']}/pages", headers=OWNER).json()
    assert pages["count"] == 3
    assert all(page["artifact"] for page in pages["pages"])


def test_completed_book_is_not_processed_again(api, tmp_path) -> None:
    client, h = api
    job_id = _upload(client).json()["job_id"]
    _wait_for(client, job_id)
    image_calls = len(h.images.calls)

    again = _upload(client)

    assert again.status_code == 200
    assert again.json() == {"action": "already_done", "job_id": job_id, "stage": "Completed", "progress": 100}
    assert len(h.images.calls) == image_calls
    assert len(list((tmp_path / "uploads").iterdir())) == 1


def test_duplicate_start_attaches_to_live_job(api) -> None:
    client, h = api
    job_id = h.new_job(title="Harbor Tales", owner="reader_1")

    response = _upload(client)

    assert response.status_code == 200
    assert response.json()["action"] == "attach"
    assert response.json()["job_id"] == job_id
    assert len(h.store.list_jobs("reader_1")) == 1


def test_resume_after_failure(api) -> None:
    client, h = api
    job_id = h.new_job(title="Harbor Tales", owner="reader_1")
    h.store.update_progress(job_id, Stage.SHREDDING, 10)
    h.store.update_progress(job_id, Stage.ERROR, error="quota")

    response = client.post(f"/api/books/{job_id}/resume", headers=OWNER)

    assert response.status_code == 202
    assert response.json()["action"] == "resume"
    assert _wait_for(client, job_id)["stage"] == "Completed"


def test_input_errors(api) -> None:
    client, _ = api

    no_file = client.post("/api/books/start-pipeline", data={"title": "Unknown"}, headers=OWNER)
    assert no_file.status_code == 400
    assert no_file.json()["detail"] == "Book Not Uploaded"

    assert _upload(client, name="book.exe").status_code == 400
    assert _upload(client, body=b"").status_code == 400
    assert _upload(client, title="  ").status_code == 400


def test_identity_is_required(api) -> None:
    client, _ = api

    assert client.get("/api/books/library").status_code == 401
    assert _upload(client, headers={}).status_code == 401


def test_jobs_are_private_to_their_owner(api) -> None:
    client, h = api
    job_id = h.new_job(title="Secret Diary", owner="someone_else")

    assert client.get(f"/api/books/{job_id}", headers=OWNER).status_code == 404
    assert client.get(f"/api/books/{job_id}/pages", headers=OWNER).status_code == 404
    assert client.post(f"/api/books/{job_id}/resume", headers=OWNER).status_code == 404
    assert client.get("/api/books/missing", headers=OWNER).status_code == 404


def test_library_and_active_session(api) -> None:
    client, h = api
    h.new_job(title="Fresh Upload", owner="reader_1")

    library = client.get("/api/books/library", headers=OWNER).json()
    active = client.get("/api/books/active-session", headers=OWNER).json()

    assert library["count"] == 1
    assert library["books"][0]["title"] == "Fresh Upload"
    assert library["books"][0]["cover_artifact"].startswith("https://")
    assert active["active"] is True
    assert active["job"]["title"] == "Fresh Upload"
    assert client.get("/api/books/active-session", headers={"X-User-Id": "nobody"}).json() == {"active": False}


def test_event_stream_of_finished_job(api) -> None:
    client, _ = api
    job_id = _upload(client).json()["job_id"]
    _wait_for(client, job_id)

    response = client.get(f"/api/books/{job_id}/events", headers=OWNER)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text.startswith("retry: 3000")
    events = _sse_events(response.text)
    assert [name for name, _ in events] == ["connected", "stream_end"]
    assert events[0][1]["stage"] == "Completed"
    assert events[1][1] == {"job_id": job_id, "stage": "Completed", "progress": 100, "error": None}


def test_shutdown_closes_shared_runtime(tmp_path, monkeypatch) -> None:
    h = Harness(tmp_path)
    monkeypatch.setattr(webapp.runtime, "_RUNTIME", h.runtime)

    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        assert not h.analyst.closed

    assert h.analyst.closed
    assert h.images.closed
    assert webapp.runtime._RUNTIME is None
