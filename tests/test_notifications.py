from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine

from taskhub import main as app_main
from taskhub.infra import db


@pytest.fixture()
def notification_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "notification_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, email: str, password: str) -> str:
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def _setup(client: TestClient) -> dict[str, Any]:
    registered = client.post(
        "/api/auth/register",
        json={
            "company_name": "Stark Field Ops",
            "company_email": "office@stark.example.com",
            "department_name": "Field",
            "first_name": "Root",
            "last_name": "Owner",
            "email": "owner@stark.example.com",
            "password": "owner-pass",
        },
    )
    assert registered.status_code == 201
    ids = registered.json()
    owner = _login(client, "owner@stark.example.com", "owner-pass")
    ctx: dict[str, Any] = {"owner": owner, "owner_id": ids["user_id"], "department_id": ids["department_id"]}
    for key, role in (("manager", "Manager"), ("worker", "User"), ("other", "User")):
        email = f"{key}@stark.example.com"
        created = client.post(
            "/api/users",
            json={
                "first_name": key.title(),
                "last_name": "Field",
                "email": email,
                "password": "member-pass",
                "role": role,
                "department_id": ids["department_id"],
            },
            headers=_auth_header(owner),
        )
        assert created.status_code == 201
        ctx[f"{key}_id"] = created.json()["id"]
        ctx[key] = _login(client, email, "member-pass")
    return ctx


def _assign(client: TestClient, ctx: dict[str, Any], title: str, assignees: list[str]) -> str:
    response = client.post(
        "/api/assigned-tasks",
        json={
            "title": title,
            "description": "Routine inspection round",
            "location": "Site 7",
            "due_date": "2026-10-25",
            "department_id": ctx["department_id"],
            "assigned_to": assignees,
        },
        headers=_auth_header(ctx["manager"]),
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_assignment_creates_private_notifications(notification_client: TestClient) -> None:
    ctx = _setup(notification_client)
    task_id = _assign(notification_client, ctx, "Inspect pylons", [ctx["worker_id"]])

    inbox = notification_client.get("/api/notifications", headers=_auth_header(ctx["worker"]))
    assert inbox.status_code == 200
    items = inbox.json()
    assert len(items) == 1
    note = items[0]
    assert note["type"] == "TaskAssignment"
    assert note["task_id"] == task_id
    assert note["user_id"] == ctx["worker_id"]
    assert note["message"] == "You have been assigned a new task: Inspect pylons"
    assert note["is_read"] is False

    count = notification_client.get("/api/notifications/unread-count", headers=_auth_header(ctx["worker"]))
    assert count.json() == {"unread": 1}

    for intruder in ("other", "manager"):
        denied = notification_client.get(f"/api/notifications/{note['id']}", headers=_auth_header(ctx[intruder]))
        assert denied.status_code == 403
        assert denied.json()["detail"]["code"] == "NOTIFICATION_ACCESS_DENIED"
        assert notification_client.get("/api/notifications", headers=_auth_header(ctx[intruder])).json() == []

    company_view = notification_client.get("/api/notifications", headers=_auth_header(ctx["owner"]))
    assert [item["id"] for item in company_view.json()] == [note["id"]]
    owner_count = notification_client.get("/api/notifications/unread-count", headers=_auth_header(ctx["owner"]))
    assert owner_count.json() == {"unread": 0}


def test_read_state_transitions(notification_client: TestClient) -> None:
    ctx = _setup(notification_client)
    _assign(notification_client, ctx, "Inspect pylons", [ctx["worker_id"]])
    _assign(notification_client, ctx, "Check transformers", [ctx["worker_id"], ctx["other_id"]])

    inbox = notification_client.get("/api/notifications", headers=_auth_header(ctx["worker"])).json()
    assert len(inbox) == 2
    first_id = inbox[0]["id"]

    read = notification_client.post(f"/api/notifications/{first_id}/read", headers=_auth_header(ctx["worker"]))
    assert read.status_code == 200
    assert read.json()["is_read"] is True

    unread_only = notification_client.get(
        "/api/notifications",
        params={"is_read": False},
        headers=_auth_header(ctx["worker"]),
    )
    assert len(unread_only.json()) == 1

    unread = notification_client.post(f"/api/notifications/{first_id}/unread", headers=_auth_header(ctx["worker"]))
    assert unread.json()["is_read"] is False

    other_marks = notification_client.post(f"/api/notifications/{first_id}/read", headers=_auth_header(ctx["other"]))
    assert other_marks.status_code == 403

    marked = notification_client.post("/api/notifications/mark-all-read", headers=_auth_header(ctx["worker"]))
    assert marked.json() == {"updated": 2}
    count = notification_client.get("/api/notifications/unread-count", headers=_auth_header(ctx["worker"]))
    assert count.json() == {"unread": 0}
    other_count = notification_client.get("/api/notifications/unread-count", headers=_auth_header(ctx["other"]))
    assert other_count.json() == {"unread": 1}

    other_delete = notification_client.delete(f"/api/notifications/{first_id}", headers=_auth_header(ctx["other"]))
    assert other_delete.status_code == 403
    deleted = notification_client.delete(f"/api/notifications/{first_id}", headers=_auth_header(ctx["worker"]))
    assert deleted.status_code == 204
    missing = notification_client.get(f"/api/notifications/{first_id}", headers=_auth_header(ctx["worker"]))
    assert missing.status_code == 404


def test_notifications_cannot_be_created_through_the_api(notification_client: TestClient) -> None:
    ctx = _setup(notification_client)
    response = notification_client.post(
        "/api/notifications",
        json={"user_id": ctx["worker_id"], "type": "TaskUpdate", "message": "spoofed"},
        headers=_auth_header(ctx["owner"]),
    )
    assert response.status_code == 405


def test_inbox_stats_type_filter_and_clear_all(notification_client: TestClient) -> None:
    ctx = _setup(notification_client)
    _assign(notification_client, ctx, "Inspect pylons", [ctx["worker_id"]])
    _assign(notification_client, ctx, "Check transformers", [ctx["worker_id"], ctx["other_id"]])

    inbox = notification_client.get("/api/notifications", headers=_auth_header(ctx["worker"])).json()
    notification_client.post(f"/api/notifications/{inbox[0]['id']}/read", headers=_auth_header(ctx["worker"]))

    worker_stats = notification_client.get("/api/notifications/stats", headers=_auth_header(ctx["worker"]))
    assert worker_stats.status_code == 200
    assert worker_stats.json() == {"total": 2, "unread": 1, "by_type": {"TaskAssignment": 2}}
    manager_stats = notification_client.get("/api/notifications/stats", headers=_auth_header(ctx["manager"]))
    assert manager_stats.json() == {"total": 0, "unread": 0, "by_type": {}}
    owner_stats = notification_client.get("/api/notifications/stats", headers=_auth_header(ctx["owner"]))
    assert owner_stats.json()["total"] == 3

    assignments = notification_client.get(
        "/api/notifications/by-type/TaskAssignment",
        headers=_auth_header(ctx["worker"]),
    )
    assert assignments.status_code == 200
    assert len(assignments.json()) == 2
    changes = notification_client.get("/api/notifications/by-type/StatusChange", headers=_auth_header(ctx["worker"]))
    assert changes.json() == []
    unknown = notification_client.get("/api/notifications/by-type/Gossip", headers=_auth_header(ctx["worker"]))
    assert unknown.status_code == 422

    other_clear = notification_client.delete("/api/notifications", headers=_auth_header(ctx["other"]))
    assert other_clear.status_code == 200
    assert other_clear.json() == {"deleted": 1}
    still_there = notification_client.get("/api/notifications", headers=_auth_header(ctx["worker"]))
    assert len(still_there.json()) == 2

    owner_clear = notification_client.delete("/api/notifications", headers=_auth_header(ctx["owner"]))
    assert owner_clear.json() == {"deleted": 2}
    assert notification_client.get("/api/notifications", headers=_auth_header(ctx["worker"])).json() == []
