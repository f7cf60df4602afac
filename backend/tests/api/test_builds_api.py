"""Integration tests for the build API.

Tests cover:
- POST /api/build validation, credit gating and job creation
- GET /api/build/{id} polling through to completion or failure
- GET /api/download/{id} archive streaming
- DELETE /api/build/{id} cancellation
- GET /api/build/{id}/logs pagination
- GET /api/builds and GET /api/stats listings
- Ownership (403 for another user's build) and auth requirement
"""

import io
import time
import zipfile

import pytest

from app.core.auth import require_auth
from app.services.accounts import InMemoryAccountService

pytestmark = pytest.mark.integration

VALID_BUILD = {
    "project_name": "Task Pilot",
    "description": "A task manager for small remote teams with weekly planning",
    "features": ["Shared boards", "Weekly planning"],
}


def _submit(client, **overrides) -> dict:
    response = client.post("/api/build", json={**VALID_BUILD, **overrides})
    assert response.status_code == 200, response.text
    return response.json()


def _wait_for_terminal(client, build_id: str, timeout: float = 10.0) -> dict:
    """Poll until the build leaves `building`."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/build/{build_id}").json()
        if data["status"] != "building":
            return data
        time.sleep(0.02)
    raise AssertionError(f"Build {build_id} still building after {timeout}s")


def test_submit_returns_build_urls(make_client, user_a):
    """POST /api/build returns build id, project id and follow-up URLs."""
    client, runtime = make_client(user=user_a)

    data = _submit(client)

    assert data["success"] is True
    assert data["build_id"].startswith("build_")
    assert data["project_id"]
    assert data["progress_url"] == f"/api/build/{data['build_id']}"
    assert data["live_preview_url"] == f"/api/preview/{data['build_id']}"
    assert data["build_id"] in runtime.registry


def test_short_description_rejected_without_side_effects(make_client, user_a):
    """A 19-character description is rejected before any job or debit."""
    accounts = InMemoryAccountService(default_credits=3)
    client, runtime = make_client(user=user_a, accounts=accounts)

    response = client.post("/api/build", json={**VALID_BUILD, "description": "x" * 19})

    assert response.status_code == 400
    assert "debug_id" in response.json()
    assert len(runtime.registry) == 0
    assert accounts.balances.get("user_a", 3) == 3


def test_description_length_counts_stripped_text(make_client, user_a):
    """Surrounding whitespace does not count towards the minimum length."""
    client, runtime = make_client(user=user_a)

    response = client.post("/api/build", json={**VALID_BUILD, "description": "   " + "x" * 19 + "   "})

    assert response.status_code == 400
    assert len(runtime.registry) == 0


def test_blank_project_name_rejected(make_client, user_a):
    client, runtime = make_client(user=user_a)

    response = client.post("/api/build", json={**VALID_BUILD, "project_name": "   "})

    assert response.status_code == 400
    assert len(runtime.registry) == 0


def test_no_credits_returns_403(make_client, user_a):
    """Users with zero credits cannot start a build."""
    accounts = InMemoryAccountService(default_credits=3)
    accounts.set_credits("user_a", 0)
    client, runtime = make_client(user=user_a, accounts=accounts)

    response = client.post("/api/build", json=VALID_BUILD)

    assert response.status_code == 403
    assert len(runtime.registry) == 0


def test_submit_debits_one_credit(make_client, user_a):
    accounts = InMemoryAccountService(default_credits=3)
    client, _ = make_client(user=user_a, accounts=accounts)

    _submit(client)

    assert accounts.balances["user_a"] == 2


def test_submit_with_existing_project_id(make_client, user_a):
    """A supplied project_id is reused instead of creating a new project."""
    client, runtime = make_client(user=user_a)

    data = _submit(client, project_id="proj-123")

    assert data["project_id"] == "proj-123"
    assert runtime.registry.get(data["build_id"]).project_id == "proj-123"


def test_poll_until_completed_then_download(make_client, user_a):
    """Happy path: build completes, poll exposes results, archive downloads."""
    client, runtime = make_client(user=user_a)
    build_id = _submit(client)["build_id"]

    data = _wait_for_terminal(client, build_id)

    assert data["status"] == "completed"
    assert data["phase"] == "done"
    assert data["progress"] == 100
    assert data["display_progress"] == 100
    assert data["download_url"] == f"/api/download/{build_id}"
    assert data["results"]["qa_score"] == 86
    assert data["package"]["files_written"] > 0
    assert data["file_count"] == len(data["files"]) > 0
    assert len(data["logs"]) <= runtime.settings.poll_log_window

    response = client.get(f"/api/download/{build_id}")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="task_pilot.zip"' in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert "README.md" in zf.namelist()


def test_download_records_project_download(make_client, user_a):
    client, runtime = make_client(user=user_a)
    submitted = _submit(client)
    _wait_for_terminal(client, submitted["build_id"])

    client.get(f"/api/download/{submitted['build_id']}")

    project = runtime.projects.projects[submitted["project_id"]]
    assert project["download_count"] == 1
    assert project["status"] == "completed"


def test_download_missing_archive_returns_404(make_client, user_a, tmp_path):
    client, runtime = make_client(user=user_a)
    build_id = _submit(client)["build_id"]
    _wait_for_terminal(client, build_id)
    runtime.registry.get(build_id).zip_path = str(tmp_path / "vanished.zip")

    response = client.get(f"/api/download/{build_id}")

    assert response.status_code == 404


def test_research_failure_is_retryable(make_client, user_a):
    """Failed builds report the error, a retry hint and (outside production) a trace."""
    client, _ = make_client(scenario="research_failure", user=user_a)
    build_id = _submit(client)["build_id"]

    data = _wait_for_terminal(client, build_id)

    assert data["status"] == "failed"
    assert data["phase"] == "error"
    assert data["error"] == "rate limited"
    assert data["can_retry"] is True
    assert data["retry_hint"]
    assert "RuntimeError" in data["trace"]
    assert "download_url" not in data

    download = client.get(f"/api/download/{build_id}")
    assert download.status_code == 404


def test_unknown_build_returns_404(make_client, user_a):
    client, _ = make_client(user=user_a)

    response = client.get("/api/build/build_0_missing")

    assert response.status_code == 404
    assert response.json()["detail"] == "Build not found or expired"


def test_other_users_build_is_forbidden(make_client, user_a, user_b):
    """User B cannot poll, cancel or download user A's build."""
    client, runtime = make_client(scenario="slow", user=user_a)
    build_id = _submit(client)["build_id"]

    client.app.dependency_overrides[require_auth] = lambda: user_b

    assert client.get(f"/api/build/{build_id}").status_code == 403
    assert client.get(f"/api/build/{build_id}/logs").status_code == 403
    assert client.delete(f"/api/build/{build_id}").status_code == 403
    assert client.get(f"/api/download/{build_id}").status_code == 403
    assert build_id in runtime.registry


def test_cancel_running_build(make_client, user_a):
    """DELETE stops the task and evicts the job."""
    client, runtime = make_client(scenario="slow", user=user_a)
    submitted = _submit(client)
    build_id = submitted["build_id"]

    response = client.delete(f"/api/build/{build_id}")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert build_id not in runtime.registry
    assert client.get(f"/api/build/{build_id}").status_code == 404
    project = runtime.projects.projects[submitted["project_id"]]
    assert project["status"] != "failed"


def test_cancel_completed_build_rejected(make_client, user_a):
    client, runtime = make_client(user=user_a)
    build_id = _submit(client)["build_id"]
    _wait_for_terminal(client, build_id)

    response = client.delete(f"/api/build/{build_id}")

    assert response.status_code == 400
    assert build_id in runtime.registry


def test_logs_are_paginated(make_client, user_a):
    client, _ = make_client(user=user_a)
    build_id = _submit(client)["build_id"]
    _wait_for_terminal(client, build_id)

    page = client.get(f"/api/build/{build_id}/logs", params={"limit": 3, "offset": 1}).json()

    assert len(page["logs"]) == 3
    assert page["total"] > 3
    assert page["logs"][0]["phase"] in {"initializing", "research"}
    assert set(page["logs"][0]) == {"timestamp", "phase", "progress", "message"}


def test_list_builds_only_shows_own(make_client, user_a, user_b):
    client, runtime = make_client(scenario="slow", user=user_a)
    _submit(client)
    runtime.registry.create("build_other", "user_b")

    data = client.get("/api/builds").json()

    assert data["total"] == 1
    assert data["builds"][0]["project_name"] == "Task Pilot"


def test_stats_counts_by_status(make_client, user_a):
    """GET /api/stats needs no auth and counts every status."""
    client, runtime = make_client(scenario="slow", user=user_a)
    _submit(client)
    client.app.dependency_overrides.clear()

    data = client.get("/api/stats").json()

    assert data["total"] == 1
    assert data["active"] == 1
    assert data["by_status"] == {"building": 1, "completed": 0, "failed": 0, "cancelled": 0}


def test_health_reports_runtime(make_client):
    client, _ = make_client()

    data = client.get("/api/health").json()

    assert data["status"] == "healthy"
    assert data["active_builds"] == 0
    assert data["sweeper_running"] is False


def test_build_routes_require_auth(make_client):
    """Without a bearer token the protected routes return 401."""
    client, _ = make_client()

    assert client.post("/api/build", json=VALID_BUILD).status_code == 401
    assert client.get("/api/build/build_1").status_code == 401
    assert client.get("/api/builds").status_code == 401

