"""End-to-end tests through the HTTP surface."""

import json
import time

import pytest
from fastapi.testclient import TestClient

from pushpipe.config import Settings
from pushpipe.main import create_app
from pushpipe.services.receiver import sign

from helpers import (
    FakeCheckout,
    RecordingNotifier,
    checkout_stage,
    command_stage,
    deploy_stage,
    local_target,
    make_job,
)

SECRET = "topsecret"

@pytest.fixture
def html_dir(tmp_path):
    return tmp_path / "var" / "www" / "html"

@pytest.fixture
def notifier():
    return RecordingNotifier()

@pytest.fixture
def client(tmp_path, source_tree, html_dir, notifier):
    jobs_file = tmp_path / "jobs.yml"
    jobs_file.write_text(
        "name: docs\nrepository_url: https://git.example.com/docs.git\n"
        "repository_id: docs\nstages:\n  - name: test\n    commands: ['true']\n"
    )
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'pushpipe.db'}",
        webhook_secret=SECRET,
        jobs_path=jobs_file,
        logs_dir=tmp_path / "logs",
        workspace_root=tmp_path,
        stage_timeout=30,
    )
    job = make_job(
        "site",
        stages=[checkout_stage(), command_stage("test", "test -f dist/index.html"), deploy_stage("dist/**")],
        targets=[local_target(html_dir, path_prefix="dist")],
    )
    app = create_app(
        settings=settings,
        jobs=[job],
        checkout=FakeCheckout(source_tree),
        notifier=notifier,
    )
    with TestClient(app) as client:
        yield client

def push(client, payload, secret=SECRET, path="/api/webhooks/push", headers=None):
    body = json.dumps(payload).encode()
    all_headers = {"Content-Type": "application/json", "X-Hub-Signature-256": sign(secret, body)}
    all_headers.update(headers or {})
    return client.post(path, content=body, headers=all_headers)

def wait_for_build(client, build_id, timeout=15.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        response = client.get(f"/api/builds/{build_id}")
        if response.status_code == 200 and response.json()["state"] not in ("queued", "running"):
            return response.json()
        time.sleep(0.05)
    raise AssertionError(f"build {build_id} did not finish")

def test_push_builds_and_deploys(client, html_dir, notifier):
    response = push(client, {"repo": "site", "ref": "main", "sha": "abc123"})
    assert response.status_code == 202
    assert response.json()["status"] == "accepted"

    build = wait_for_build(client, 1)
    assert build["state"] == "succeeded"
    assert [r["status"] for r in build["stage_results"]] == ["passed", "passed", "passed"]
    assert (html_dir / "index.html").exists()

    deadline = time.monotonic() + 5
    while not notifier.builds and time.monotonic() < deadline:
        time.sleep(0.05)
    assert len(notifier.builds) == 1
    assert notifier.builds[0].state.value == "succeeded"

    logs = client.get("/api/builds/1/logs").json()
    assert [s["stage_name"] for s in logs["stages"]] == ["checkout", "test", "deploy"]

def test_redelivery_does_not_start_second_build(client):
    payload = {"repo": "site", "ref": "main", "sha": "abc123"}
    first = push(client, payload)
    second = push(client, payload)
    assert first.json()["duplicate"] is False
    assert second.json()["duplicate"] is True

    wait_for_build(client, 1)
    time.sleep(0.2)
    builds = client.get("/api/builds").json()
    assert [b["build_id"] for b in builds] == [1]

def test_github_push_event(client):
    payload = {
        "ref": "refs/heads/main",
        "after": "abc123",
        "repository": {"name": "site", "full_name": "site", "clone_url": "https://git.example.com/site.git"},
        "head_commit": {"id": "abc123"},
        "pusher": {"name": "dev"},
    }
    response = push(client, payload, path="/api/webhooks/github", headers={"X-GitHub-Event": "push"})
    assert response.status_code == 202
    assert wait_for_build(client, 1)["state"] == "succeeded"

def test_github_ping_and_other_events(client):
    ping = client.post("/api/webhooks/github", json={"zen": "hi"}, headers={"X-GitHub-Event": "ping"})
    assert ping.json()["status"] == "pong"

    issue = client.post("/api/webhooks/github", json={}, headers={"X-GitHub-Event": "issues"})
    assert issue.status_code == 202
    assert issue.json()["status"] == "ignored"

def test_bad_signature_rejected(client):
    response = push(client, {"repo": "site", "ref": "main", "sha": "abc123"}, secret="wrong")
    assert response.status_code == 401
    assert client.get("/api/builds").json() == []

def test_token_header_accepted(client):
    response = client.post(
        "/api/webhooks/push",
        json={"repo": "site", "ref": "main", "sha": "abc123"},
        headers={"X-Pushpipe-Token": SECRET},
    )
    assert response.status_code == 202

def test_malformed_payload_rejected(client):
    response = push(client, {"repo": "site", "ref": "main"})
    assert response.status_code == 400
    assert "commit_sha" in response.json()["detail"]

def test_unknown_build_is_404(client):
    assert client.get("/api/builds/999").status_code == 404

def test_reload_jobs(client):
    assert [j["name"] for j in client.get("/api/jobs").json()] == ["site"]
    response = client.post("/api/jobs/reload")
    assert response.json() == {"status": "reloaded", "jobs": ["docs"]}
    assert [j["name"] for j in client.get("/api/jobs").json()] == ["docs"]

def test_health_endpoints(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/health/db").json()["database"] == "connected"
    assert client.get("/health/redis").json()["redis"] == "not configured"
    assert client.get("/health/scheduler").json()["jobs"] == 1

def test_reload_rejects_invalid_jobs(client, tmp_path):
    (tmp_path / "jobs.yml").write_text(
        "name: docs\nrepository_url: https://git.example.com/docs.git\n"
        "repository_id: 123\nstages:\n  - name: test\n    commands: ['true']\n"
    )
    response = client.post("/api/jobs/reload")
    assert response.status_code == 400
    assert "repository_id" in response.json()["detail"]
    assert [j["name"] for j in client.get("/api/jobs").json()] == ["site"]
