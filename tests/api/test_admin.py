from __future__ import annotations

from fastapi.testclient import TestClient

from cert_service.services.coordinator import coordinator
from tests.conftest import auth, seed_completed_course, seed_learner

STATUS = "/v1/admin/generation/status"
CLEANUP = "/v1/admin/generation/cleanup"


def test_status_requires_admin_role(client: TestClient, token: str) -> None:
    assert client.get(STATUS).status_code == 401

    resp = client.get(STATUS, headers=auth(token))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Insufficient permissions"


def test_status_is_empty_initially(client: TestClient, admin_token: str) -> None:
    resp = client.get(STATUS, headers=auth(admin_token))

    assert resp.status_code == 200
    assert resp.json() == {"totalEntries": 0, "activeGenerations": 0, "entries": []}


def test_status_lists_cached_generation(
    client: TestClient, token: str, admin_token: str
) -> None:
    seed_learner()
    seed_completed_course()
    client.post(
        "/v1/certificates/generate",
        json={"achievementRef": "course-1"},
        headers=auth(token),
    )

    body = client.get(STATUS, headers=auth(admin_token)).json()

    assert body["totalEntries"] == 1
    assert body["activeGenerations"] == 0
    [entry] = body["entries"]
    assert entry["key"] == "learner-1:course-1"
    assert entry["isGenerating"] is False
    assert entry["age"] >= 0


def test_cleanup_keeps_fresh_entries(
    client: TestClient, token: str, admin_token: str
) -> None:
    seed_learner()
    seed_completed_course()
    client.post(
        "/v1/certificates/generate",
        json={"achievementRef": "course-1"},
        headers=auth(token),
    )

    resp = client.post(CLEANUP, headers=auth(admin_token))

    assert resp.status_code == 200
    assert resp.json() == {"evicted": 0, "remaining": 1}
    assert coordinator.status().total_entries == 1


def test_cleanup_requires_admin_role(client: TestClient, token: str) -> None:
    assert client.post(CLEANUP, headers=auth(token)).status_code == 403
