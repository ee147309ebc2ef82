"""
Unit tests for API endpoints.
"""

import time

import pytest
from fastapi.testclient import TestClient

from diary_memory.api import memory as memory_api
from diary_memory.api.main import app
from diary_memory.config.settings import Settings
from diary_memory.memory.integrate import create_memory_integration
from diary_memory.persist.sqlite_store import SQLiteStore


OWNER = "U123"


@pytest.fixture
def integration(clock):
    """Memory integration over an in-memory database."""
    return create_memory_integration(Settings(), db=SQLiteStore(":memory:"), clock=clock)


@pytest.fixture
def client(integration, monkeypatch):
    """Test client wired to the in-memory integration."""
    monkeypatch.setattr(memory_api, "_integration", integration)
    app.dependency_overrides[memory_api.get_memory_integration] = lambda: integration

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def _create(client, content="Drinks coffee every morning", **extra):
    body = {"memory_type": "preference", "content": content, "category": "personal"}
    body.update(extra)
    response = client.post(f"/api/memory/owners/{OWNER}/memories", json=body)
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["components"]["jobs"] is True


def test_create_and_list(client):
    created = _create(client)

    response = client.get(f"/api/memory/owners/{OWNER}/memories")

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["memories"][0]["id"] == created["id"]
    assert data["memories"][0]["mention_count"] == 1


def test_list_filters_by_type(client):
    _create(client)
    _create(client, content="Run a marathon", memory_type="goal", category="health")

    response = client.get(f"/api/memory/owners/{OWNER}/memories", params={"memory_type": "goal"})

    assert [m["content"] for m in response.json()["memories"]] == ["Run a marathon"]


def test_create_rejects_unknown_type(client):
    response = client.post(
        f"/api/memory/owners/{OWNER}/memories",
        json={"memory_type": "opinion", "content": "Something"},
    )
    assert response.status_code == 422


def test_context_cached_and_invalidated_by_writes(client):
    _create(client)

    first = client.get(f"/api/memory/owners/{OWNER}/context").json()
    second = client.get(f"/api/memory/owners/{OWNER}/context").json()

    assert first["cache_hit"] is False
    assert second["cache_hit"] is True
    assert "- Drinks coffee every morning" in first["summary"]

    _create(client, content="Plays guitar on weekends", category="hobby")
    third = client.get(f"/api/memory/owners/{OWNER}/context").json()

    assert third["cache_hit"] is False
    assert "### Hobbies" in third["summary"]


def test_context_for_unknown_owner_is_empty(client):
    response = client.get("/api/memory/owners/nobody/context")

    assert response.status_code == 200
    assert response.json()["summary"] == ""


def test_update_confirm_and_user_confirm(client):
    created = _create(client)
    memory_id = created["id"]

    updated = client.patch(f"/api/memory/memories/{memory_id}", json={"content": "Drinks tea now"})
    confirmed = client.post(f"/api/memory/memories/{memory_id}/confirm")
    user_confirmed = client.post(f"/api/memory/memories/{memory_id}/user-confirm")

    assert updated.json()["content"] == "Drinks tea now"
    assert confirmed.json()["mention_count"] == 2
    assert user_confirmed.json()["user_confirmed"] is True


def test_update_errors(client):
    created = _create(client)

    missing = client.patch("/api/memory/memories/mem_missing", json={"content": "x"})
    blank = client.patch(f"/api/memory/memories/{created['id']}", json={"content": "  "})
    empty = client.patch(f"/api/memory/memories/{created['id']}", json={})

    assert missing.status_code == 404
    assert blank.status_code == 422
    assert blank.json()["detail"] == ["memory content must not be empty"]
    assert empty.status_code == 422


def test_delete_and_wipe(client, integration):
    first = _create(client)
    _create(client, content="Plays guitar")

    deleted = client.delete(f"/api/memory/memories/{first['id']}")
    assert deleted.json()["deleted"] is True
    assert integration.store.count_active(OWNER) == 1

    wiped = client.delete(f"/api/memory/owners/{OWNER}")
    assert wiped.json() == {"owner": OWNER, "removed": 2}
    assert client.get(f"/api/memory/memories/{first['id']}").status_code == 404


def test_search_and_stats(client):
    _create(client)
    _create(client, content="Run a marathon", memory_type="goal", category="health")

    search = client.get(f"/api/memory/owners/{OWNER}/search", params={"q": "marathon"}).json()
    stats = client.get(f"/api/memory/owners/{OWNER}/stats").json()

    assert [m["content"] for m in search["memories"]] == ["Run a marathon"]
    assert stats["total_count"] == 2
    assert stats["by_type"] == {"preference": 1, "goal": 1}


def test_dispatch_extraction_and_poll_job(client):
    body = {
        "entry_id": "entry_01",
        "entry": {
            "id": "entry_01",
            "owner": OWNER,
            "entry_date": "2025-01-09",
            "detail": "My sister called me about the holidays.",
        },
    }

    response = client.post(f"/api/memory/owners/{OWNER}/extract", json=body)

    assert response.status_code == 202
    job_id = response.json()["job_id"]
    assert job_id is not None

    status = None
    for _ in range(100):
        status = client.get(f"/api/memory/jobs/{job_id}").json()["status"]
        if status in ("completed", "failed"):
            break
        time.sleep(0.01)

    assert status == "completed"
    memories = client.get(f"/api/memory/owners/{OWNER}/memories").json()["memories"]
    assert [m["memory_type"] for m in memories] == ["relationship"]


def test_dispatch_rejects_mismatched_entry(client):
    body = {
        "entry_id": "entry_01",
        "entry": {"id": "entry_02", "owner": OWNER, "entry_date": "2025-01-09", "detail": "text"},
    }

    response = client.post(f"/api/memory/owners/{OWNER}/extract", json=body)

    assert response.status_code == 422


def test_unknown_job_is_404(client):
    assert client.get("/api/memory/jobs/job_missing").status_code == 404


def test_consolidate_below_threshold_is_skipped(client):
    _create(client)

    response = client.post(f"/api/memory/owners/{OWNER}/consolidate")

    assert response.status_code == 200
    assert response.json()["skipped"] is True
