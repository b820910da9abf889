import inspect
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from preview_operator.store import InMemoryObjectStore

from intent_api.main import app
from intent_api.routers import previews as previews_router
from intent_api.services.previews import build_api_registry, get_store

PAYLOAD = {
    "repoName": "homecare",
    "prNumber": 42,
    "branch": "feature/login",
    "commitSha": "abcdef1234567890",
    "githubUsername": "alice",
    "imageTag": "registry.example.com/homecare:abcdef1",
}


@pytest.fixture
def api_store(clock):
    return InMemoryObjectStore(build_api_registry(), clock=clock)


@pytest.fixture
def api(api_store):
    app.dependency_overrides[get_store] = lambda: api_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(api):
    body = api.get("/health").json()
    assert body["status"] == "healthy"
    assert body["redis"] == "disabled"


def test_create_then_idempotent_upsert(api, api_store):
    first = api.post("/api/previews", json=PAYLOAD)
    assert first.status_code == 201
    assert first.json()["name"] == "homecare-pr42"
    assert first.json()["phase"] == "Pending"

    again = api.post("/api/previews", json=PAYLOAD)
    assert again.status_code == 200
    assert api_store.count("update", "PreviewEnvironment") == 0


def test_new_commit_rolls_record_forward(api, api_store):
    api.post("/api/previews", json=PAYLOAD)
    pushed = dict(PAYLOAD, commitSha="0123456789abcdef", imageTag="registry.example.com/homecare:0123456")

    resp = api.post("/api/previews", json=pushed)
    assert resp.status_code == 200
    assert resp.json()["commitSha"] == "0123456789abcdef"
    stored = api_store.get("PreviewEnvironment", None, "homecare-pr42")
    assert stored["spec"]["imageTag"] == "registry.example.com/homecare:0123456"


def test_ttl_is_passed_through(api, api_store):
    api.post("/api/previews", json=dict(PAYLOAD, ttl=72))
    assert api_store.get("PreviewEnvironment", None, "homecare-pr42")["spec"]["ttl"] == 72


@pytest.mark.parametrize("field,value", [
    ("commitSha", "XYZ"),
    ("repoName", "Home_Care"),
    ("prNumber", 0),
    ("ttl", 169),
])
def test_invalid_payload_rejected(api, field, value):
    assert api.post("/api/previews", json=dict(PAYLOAD, **{field: value})).status_code == 422


def test_list_filters(api):
    api.post("/api/previews", json=PAYLOAD)
    api.post("/api/previews", json=dict(PAYLOAD, repoName="billing", githubUsername="bob"))

    assert api.get("/api/previews").json()["total"] == 2
    by_repo = api.get("/api/previews", params={"repo": "billing"}).json()
    assert [p["name"] for p in by_repo["previews"]] == ["billing-pr42"]
    by_user = api.get("/api/previews", params={"user": "alice"}).json()
    assert [p["name"] for p in by_user["previews"]] == ["homecare-pr42"]


def test_get_missing_is_404(api):
    assert api.get("/api/previews/nope").status_code == 404


def test_delete(api, api_store):
    api.post("/api/previews", json=PAYLOAD)
    resp = api.delete("/api/previews/homecare-pr42")
    assert resp.status_code == 202
    assert not api_store.contains("PreviewEnvironment", None, "homecare-pr42")
    assert api.delete("/api/previews/homecare-pr42").status_code == 404


def test_same_author_and_pr_in_another_repo_conflicts(api, api_store):
    assert api.post("/api/previews", json=PAYLOAD).status_code == 201

    resp = api.post("/api/previews", json=dict(PAYLOAD, repoName="homecare-web"))
    assert resp.status_code == 409
    assert "previewalice-pr42" in resp.json()["detail"]
    assert not api_store.contains("PreviewEnvironment", None, "homecare-web-pr42")
    assert api.post("/api/previews", json=PAYLOAD).status_code == 200


def test_namespace_from_status_counts_as_taken(api, api_store):
    api.post("/api/previews", json=dict(PAYLOAD, githubUsername="bob"))
    current = api_store.get("PreviewEnvironment", None, "homecare-pr42")
    current["status"] = {"phase": "Ready", "namespace": "previewalice-pr7"}
    api_store.update_status(current)

    resp = api.post("/api/previews", json=dict(PAYLOAD, repoName="billing", prNumber=7))
    assert resp.status_code == 409


def test_upsert_while_deleting_conflicts(api, api_store):
    api.post("/api/previews", json=PAYLOAD)
    current = api_store.get("PreviewEnvironment", None, "homecare-pr42")
    current["metadata"]["finalizers"] = ["preview.homecareapp.xyz/finalizer"]
    api_store.update(current)
    api.delete("/api/previews/homecare-pr42")

    assert api.get("/api/previews/homecare-pr42").json()["deleting"] is True
    pushed = dict(PAYLOAD, commitSha="0123456789abcdef")
    assert api.post("/api/previews", json=pushed).status_code == 409


def test_events_without_redis_are_empty(api):
    api.post("/api/previews", json=PAYLOAD)
    resp = api.get("/api/previews/homecare-pr42/events")
    assert resp.status_code == 200
    assert resp.json() == []


def test_events_read_from_stream(api, monkeypatch):
    fake = MagicMock()
    fake.xrange.return_value = [
        ("1-0", {"timestamp": "2026-03-01T12:00:00Z", "type": "ENVIRONMENT_READY",
                 "message": "Ready", "phase": "Ready"}),
    ]
    monkeypatch.setattr(previews_router, "get_redis", lambda: fake)
    api.post("/api/previews", json=PAYLOAD)

    events = api.get("/api/previews/homecare-pr42/events").json()
    assert events == [{"timestamp": "2026-03-01T12:00:00Z", "type": "ENVIRONMENT_READY",
                       "message": "Ready", "phase": "Ready"}]
    fake.xrange.assert_called_once_with("preview:events:homecare-pr42", count=50)


def test_metrics(api):
    api.post("/api/previews", json=PAYLOAD)
    resp = api.get("/metrics")
    assert resp.status_code == 200
    assert 'preview_api_previews_total{phase="Pending"} 1.0' in resp.text


def test_store_backed_endpoints_run_in_threadpool():
    blocking = [r for r in app.routes if getattr(r, "path", "").startswith(("/api/previews", "/metrics", "/health"))]
    assert blocking
    for route in blocking:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path
