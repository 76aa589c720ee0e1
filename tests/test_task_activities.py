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
def activity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "activity_test.db"
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
            "company_name": "Umbrella Maintenance",
            "company_email": "office@umbrella.example.com",
            "department_name": "Electrical",
            "first_name": "Root",
            "last_name": "Owner",
            "email": "owner@umbrella.example.com",
            "password": "owner-pass",
        },
    )
    assert registered.status_code == 201
    ids = registered.json()
    owner = _login(client, "owner@umbrella.example.com", "owner-pass")
    plumbing = client.post("/api/departments", json={"name": "Plumbing"}, headers=_auth_header(owner))
    assert plumbing.status_code == 201

    ctx: dict[str, Any] = {"owner": owner, "department_id": ids["department_id"]}
    members = {
        "manager": ("Manager", ids["department_id"], "Maya", "Stone"),
        "tech": ("User", ids["department_id"], "Theo", "Wire"),
        "helper": ("User", ids["department_id"], "Hana", "Bolt"),
        "plumber": ("Manager", plumbing.json()["id"], "Pablo", "Pipe"),
    }
    for key, (role, department_id, first_name, last_name) in members.items():
        email = f"{key}@umbrella.example.com"
        created = client.post(
            "/api/users",
            json={
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
                "password": "member-pass",
                "role": role,
                "department_id": department_id,
            },
            headers=_auth_header(owner),
        )
        assert created.status_code == 201
        ctx[f"{key}_id"] = created.json()["id"]
        ctx[key] = _login(client, email, "member-pass")

    task = client.post(
        "/api/assigned-tasks",
        json={
            "title": "Rewire panel 4",
            "description": "Breaker trips under load",
            "location": "Plant B",
            "due_date": "2026-10-30",
            "department_id": ids["department_id"],
            "assigned_to": [ctx["tech_id"]],
        },
        headers=_auth_header(ctx["manager"]),
    )
    assert task.status_code == 201
    ctx["task_id"] = task.json()["id"]
    return ctx


def test_assignee_logs_activity_and_notifies_creator(activity_client: TestClient) -> None:
    ctx = _setup(activity_client)

    created = activity_client.post(
        "/api/task-activities",
        json={"task_id": ctx["task_id"], "description": "Isolated the faulty breaker"},
        headers=_auth_header(ctx["tech"]),
    )
    assert created.status_code == 201
    activity = created.json()
    assert activity["performed_by"] == ctx["tech_id"]

    task = activity_client.get(f"/api/assigned-tasks/{ctx['task_id']}", headers=_auth_header(ctx["manager"]))
    assert task.json()["status"] == "In Progress"

    inbox = activity_client.get("/api/notifications", headers=_auth_header(ctx["manager"]))
    assert inbox.status_code == 200
    updates = [item for item in inbox.json() if item["type"] == "TaskUpdate"]
    assert len(updates) == 1
    assert updates[0]["message"] == "Theo Wire added activity to task: Rewire panel 4"
    assert updates[0]["task_id"] == ctx["task_id"]

    helper_create = activity_client.post(
        "/api/task-activities",
        json={"task_id": ctx["task_id"], "description": "Drive-by comment"},
        headers=_auth_header(ctx["helper"]),
    )
    assert helper_create.status_code == 403
    assert helper_create.json()["detail"]["code"] == "TASK_ACTIVITY_ACCESS_DENIED"

    plumber_read = activity_client.get(f"/api/task-activities/{activity['id']}", headers=_auth_header(ctx["plumber"]))
    assert plumber_read.status_code == 403
    assert plumber_read.json()["detail"]["code"] == "TASK_ACTIVITY_ACCESS_DENIED"

    helper_list = activity_client.get("/api/task-activities", headers=_auth_header(ctx["helper"]))
    assert helper_list.status_code == 200
    assert helper_list.json() == []

    helper_filtered = activity_client.get(
        "/api/task-activities",
        params={"task_id": ctx["task_id"]},
        headers=_auth_header(ctx["helper"]),
    )
    assert helper_filtered.status_code == 403

    tech_list = activity_client.get(
        "/api/task-activities",
        params={"task_id": ctx["task_id"]},
        headers=_auth_header(ctx["tech"]),
    )
    assert [item["id"] for item in tech_list.json()] == [activity["id"]]


def test_activity_edits_need_authorship_for_users(activity_client: TestClient) -> None:
    ctx = _setup(activity_client)
    by_manager = activity_client.post(
        "/api/task-activities",
        json={"task_id": ctx["task_id"], "description": "Ordered replacement parts", "status_change": "Pending"},
        headers=_auth_header(ctx["manager"]),
    )
    assert by_manager.status_code == 201
    assert by_manager.json()["status_change"] == "Pending"
    by_tech = activity_client.post(
        "/api/task-activities",
        json={"task_id": ctx["task_id"], "description": "Waiting on parts"},
        headers=_auth_header(ctx["tech"]),
    )
    assert by_tech.status_code == 201

    task = activity_client.get(f"/api/assigned-tasks/{ctx['task_id']}", headers=_auth_header(ctx["tech"]))
    assert task.json()["status"] == "Pending"

    status_notes = activity_client.get(
        "/api/notifications",
        params={"is_read": False},
        headers=_auth_header(ctx["tech"]),
    )
    assert {item["type"] for item in status_notes.json()} == {"TaskAssignment", "StatusChange"}

    tech_edits_manager_note = activity_client.patch(
        f"/api/task-activities/{by_manager.json()['id']}",
        json={"description": "Rewritten by tech"},
        headers=_auth_header(ctx["tech"]),
    )
    assert tech_edits_manager_note.status_code == 403
    assert tech_edits_manager_note.json()["detail"]["code"] == "TASK_ACTIVITY_ACCESS_DENIED"

    tech_edits_own = activity_client.patch(
        f"/api/task-activities/{by_tech.json()['id']}",
        json={"description": "Parts arrive Friday"},
        headers=_auth_header(ctx["tech"]),
    )
    assert tech_edits_own.status_code == 200
    assert tech_edits_own.json()["description"] == "Parts arrive Friday"

    manager_edits_tech = activity_client.patch(
        f"/api/task-activities/{by_tech.json()['id']}",
        json={"description": "Parts arrive Monday"},
        headers=_auth_header(ctx["manager"]),
    )
    assert manager_edits_tech.status_code == 200

    plumber_delete = activity_client.delete(
        f"/api/task-activities/{by_tech.json()['id']}",
        headers=_auth_header(ctx["plumber"]),
    )
    assert plumber_delete.status_code == 403

    tech_delete = activity_client.delete(
        f"/api/task-activities/{by_tech.json()['id']}",
        headers=_auth_header(ctx["tech"]),
    )
    assert tech_delete.status_code == 204
    missing = activity_client.get(f"/api/task-activities/{by_tech.json()['id']}", headers=_auth_header(ctx["owner"]))
    assert missing.status_code == 404


def test_activity_stats_cover_only_visible_activities(activity_client: TestClient) -> None:
    ctx = _setup(activity_client)
    for token, body in (
        (ctx["manager"], {"description": "Ordered replacement parts", "status_change": "Pending"}),
        (ctx["tech"], {"description": "Waiting on parts"}),
    ):
        response = activity_client.post(
            "/api/task-activities",
            json={"task_id": ctx["task_id"], **body},
            headers=_auth_header(token),
        )
        assert response.status_code == 201

    manager_stats = activity_client.get("/api/task-activities/stats", headers=_auth_header(ctx["manager"]))
    assert manager_stats.status_code == 200
    assert manager_stats.json() == {
        "total": 2,
        "by_status_change": {"Pending": 1},
        "by_user": {ctx["manager_id"]: 1, ctx["tech_id"]: 1},
    }

    helper_stats = activity_client.get("/api/task-activities/stats", headers=_auth_header(ctx["helper"]))
    assert helper_stats.json() == {"total": 0, "by_status_change": {}, "by_user": {}}

    plumber_stats = activity_client.get("/api/task-activities/stats", headers=_auth_header(ctx["plumber"]))
    assert plumber_stats.json()["total"] == 0
