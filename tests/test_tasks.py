from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from taskhub import main as app_main
from taskhub.domain.models import EventRecord, TaskActivity
from taskhub.infra import db


@pytest.fixture()
def task_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "task_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

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


def _bootstrap_company(client: TestClient, slug: str) -> dict[str, Any]:
    registered = client.post(
        "/api/auth/register",
        json={
            "company_name": f"{slug} Services",
            "company_email": f"office@{slug}.example.com",
            "department_name": "Installations",
            "first_name": "Root",
            "last_name": "Owner",
            "email": f"owner@{slug}.example.com",
            "password": "owner-pass",
        },
    )
    assert registered.status_code == 201
    ids = registered.json()
    owner = _login(client, f"owner@{slug}.example.com", "owner-pass")

    other_department = client.post("/api/departments", json={"name": "Repairs"}, headers=_auth_header(owner))
    assert other_department.status_code == 201

    people: dict[str, Any] = {
        "company_id": ids["company_id"],
        "department_id": ids["department_id"],
        "other_department_id": other_department.json()["id"],
        "owner": owner,
    }
    members = {
        "manager": ("Manager", ids["department_id"]),
        "user": ("User", ids["department_id"]),
        "peer": ("User", ids["department_id"]),
        "other_manager": ("Manager", people["other_department_id"]),
    }
    for key, (role, department_id) in members.items():
        email = f"{key}@{slug}.example.com"
        created = client.post(
            "/api/users",
            json={
                "first_name": key.title().replace("_", ""),
                "last_name": "Member",
                "email": email,
                "password": "member-pass",
                "role": role,
                "department_id": department_id,
            },
            headers=_auth_header(owner),
        )
        assert created.status_code == 201
        people[f"{key}_id"] = created.json()["id"]
        people[key] = _login(client, email, "member-pass")
    return people


def _assigned_task_payload(department_id: str, assigned_to: list[str], **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Replace boiler valve",
        "description": "Valve on level 2 is leaking",
        "location": "Building A",
        "due_date": "2026-11-01",
        "priority": "High",
        "department_id": department_id,
        "assigned_to": assigned_to,
    }
    payload.update(extra)
    return payload


def test_assigned_task_department_and_assignment_scope(task_client: TestClient) -> None:
    acme = _bootstrap_company(task_client, "acme")

    created = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["user_id"]]),
        headers=_auth_header(acme["manager"]),
    )
    assert created.status_code == 201
    task = created.json()
    assert task["task_type"] == "AssignedTask"
    assert task["status"] == "To Do"
    assert task["assigned_to"] == [acme["user_id"]]
    assert task["created_by"] == acme["manager_id"]

    assignee_view = task_client.get(f"/api/assigned-tasks/{task['id']}", headers=_auth_header(acme["user"]))
    assert assignee_view.status_code == 200

    peer_view = task_client.get(f"/api/assigned-tasks/{task['id']}", headers=_auth_header(acme["peer"]))
    assert peer_view.status_code == 403
    assert peer_view.json()["detail"]["code"] == "TASK_ACCESS_DENIED"

    other_manager_view = task_client.get(
        f"/api/assigned-tasks/{task['id']}",
        headers=_auth_header(acme["other_manager"]),
    )
    assert other_manager_view.status_code == 403
    assert other_manager_view.json()["detail"]["code"] == "TASK_ACCESS_DENIED"

    peer_list = task_client.get("/api/assigned-tasks", headers=_auth_header(acme["peer"]))
    assert peer_list.status_code == 200
    assert peer_list.json() == []

    other_manager_list = task_client.get("/api/assigned-tasks", headers=_auth_header(acme["other_manager"]))
    assert other_manager_list.json() == []

    manager_list = task_client.get(
        "/api/assigned-tasks",
        params={"status": "To Do", "priority": "High"},
        headers=_auth_header(acme["manager"]),
    )
    assert [item["id"] for item in manager_list.json()] == [task["id"]]

    my_tasks = task_client.get("/api/assigned-tasks/my-tasks", headers=_auth_header(acme["user"]))
    assert [item["id"] for item in my_tasks.json()] == [task["id"]]

    user_update = task_client.patch(
        f"/api/assigned-tasks/{task['id']}",
        json={"status": "Completed"},
        headers=_auth_header(acme["user"]),
    )
    assert user_update.status_code == 403
    assert user_update.json()["detail"]["code"] == "TASK_ACCESS_DENIED"

    cross_department = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["other_department_id"], [acme["other_manager_id"]]),
        headers=_auth_header(acme["manager"]),
    )
    assert cross_department.status_code == 403
    assert cross_department.json()["detail"]["code"] == "TASK_ACCESS_DENIED"

    user_create = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["user_id"]]),
        headers=_auth_header(acme["user"]),
    )
    assert user_create.status_code == 403


def test_assignees_must_belong_to_task_department(task_client: TestClient) -> None:
    acme = _bootstrap_company(task_client, "acme")
    response = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["user_id"], acme["other_manager_id"]]),
        headers=_auth_header(acme["manager"]),
    )
    assert response.status_code == 400

    missing_department = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload("no-such-department", [acme["user_id"]]),
        headers=_auth_header(acme["manager"]),
    )
    assert missing_department.status_code == 404


def test_tasks_are_invisible_across_companies(task_client: TestClient) -> None:
    acme = _bootstrap_company(task_client, "acme")
    globex = _bootstrap_company(task_client, "globex")
    created = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["user_id"]]),
        headers=_auth_header(acme["owner"]),
    )
    assert created.status_code == 201
    task_id = created.json()["id"]

    foreign_get = task_client.get(f"/api/assigned-tasks/{task_id}", headers=_auth_header(globex["owner"]))
    assert foreign_get.status_code == 404
    foreign_delete = task_client.delete(f"/api/assigned-tasks/{task_id}", headers=_auth_header(globex["owner"]))
    assert foreign_delete.status_code == 404
    assert task_client.get("/api/assigned-tasks", headers=_auth_header(globex["owner"])).json() == []

    foreign_assignee = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(globex["department_id"], [acme["user_id"]]),
        headers=_auth_header(globex["owner"]),
    )
    assert foreign_assignee.status_code == 400


def test_reassignment_and_completion(task_client: TestClient) -> None:
    acme = _bootstrap_company(task_client, "acme")
    created = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["user_id"]]),
        headers=_auth_header(acme["manager"]),
    )
    task_id = created.json()["id"]

    reassigned = task_client.patch(
        f"/api/assigned-tasks/{task_id}",
        json={"assigned_to": [acme["user_id"], acme["peer_id"]], "priority": "Low"},
        headers=_auth_header(acme["manager"]),
    )
    assert reassigned.status_code == 200
    assert reassigned.json()["assigned_to"] == sorted([acme["user_id"], acme["peer_id"]])
    assert reassigned.json()["priority"] == "Low"

    first = task_client.post(f"/api/assigned-tasks/{task_id}/complete", headers=_auth_header(acme["user"]))
    assert first.status_code == 200
    assert first.json()["completed_by"] == [acme["user_id"]]
    assert first.json()["status"] == "In Progress"

    outsider = task_client.post(
        f"/api/assigned-tasks/{task_id}/complete",
        headers=_auth_header(acme["other_manager"]),
    )
    assert outsider.status_code == 403
    assert outsider.json()["detail"]["code"] == "TASK_ACTIVITY_ACCESS_DENIED"

    second = task_client.post(f"/api/assigned-tasks/{task_id}/complete", headers=_auth_header(acme["peer"]))
    assert second.json()["status"] == "Completed"

    reopened = task_client.post(f"/api/assigned-tasks/{task_id}/uncomplete", headers=_auth_header(acme["peer"]))
    assert reopened.json()["status"] == "In Progress"
    assert reopened.json()["completed_by"] == [acme["user_id"]]

    with Session(db.get_engine()) as session:
        activities = session.exec(select(TaskActivity).where(TaskActivity.task_id == task_id)).all()
        event_types = [row.event_type for row in session.exec(select(EventRecord)).all()]
    assert len(activities) == 3
    assert event_types.count("task.assigned") == 2
    assert "task.status_changed" in event_types

    deleted = task_client.delete(f"/api/assigned-tasks/{task_id}", headers=_auth_header(acme["manager"]))
    assert deleted.status_code == 204
    assert task_client.get(f"/api/assigned-tasks/{task_id}", headers=_auth_header(acme["manager"])).status_code == 404


def test_project_tasks_are_closed_to_users(task_client: TestClient) -> None:
    acme = _bootstrap_company(task_client, "acme")
    created = task_client.post(
        "/api/project-tasks",
        json={
            "title": "Fit-out for retail unit",
            "description": "Full electrical fit-out",
            "location": "Mall East",
            "due_date": "2026-12-15",
            "department_id": acme["department_id"],
            "client_name": "Northwind",
        },
        headers=_auth_header(acme["manager"]),
    )
    assert created.status_code == 201
    task = created.json()
    assert task["task_type"] == "ProjectTask"
    assert task["client_name"] == "Northwind"

    user_get = task_client.get(f"/api/project-tasks/{task['id']}", headers=_auth_header(acme["user"]))
    assert user_get.status_code == 403
    assert user_get.json()["detail"]["code"] == "TASK_ACCESS_DENIED"

    user_list = task_client.get("/api/project-tasks", headers=_auth_header(acme["user"]))
    assert user_list.status_code == 403
    assert user_list.json()["detail"]["code"] == "TASK_ACCESS_DENIED"

    as_assigned = task_client.get(f"/api/assigned-tasks/{task['id']}", headers=_auth_header(acme["manager"]))
    assert as_assigned.status_code == 404

    updated = task_client.patch(
        f"/api/project-tasks/{task['id']}",
        json={"status": "Pending", "client_name": None},
        headers=_auth_header(acme["manager"]),
    )
    assert updated.status_code == 200
    assert updated.json()["status"] == "Pending"
    assert updated.json()["client_name"] is None

    other_manager_delete = task_client.delete(
        f"/api/project-tasks/{task['id']}",
        headers=_auth_header(acme["other_manager"]),
    )
    assert other_manager_delete.status_code == 403

    owner_list = task_client.get("/api/project-tasks", headers=_auth_header(acme["owner"]))
    assert [item["id"] for item in owner_list.json()] == [task["id"]]

    deleted = task_client.delete(f"/api/project-tasks/{task['id']}", headers=_auth_header(acme["owner"]))
    assert deleted.status_code == 204


def test_task_stats_and_client_breakdown_follow_list_scope(task_client: TestClient) -> None:
    acme = _bootstrap_company(task_client, "acme")
    first = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["user_id"]]),
        headers=_auth_header(acme["manager"]),
    )
    second = task_client.post(
        "/api/assigned-tasks",
        json=_assigned_task_payload(acme["department_id"], [acme["peer_id"]], priority="Low"),
        headers=_auth_header(acme["manager"]),
    )
    assert first.status_code == second.status_code == 201
    completed = task_client.patch(
        f"/api/assigned-tasks/{first.json()['id']}",
        json={"status": "Completed"},
        headers=_auth_header(acme["manager"]),
    )
    assert completed.status_code == 200

    manager_stats = task_client.get("/api/assigned-tasks/stats", headers=_auth_header(acme["manager"])).json()
    assert manager_stats["total"] == 2
    assert manager_stats["completed"] == 1
    assert manager_stats["by_status"] == {"Completed": 1, "To Do": 1}
    assert manager_stats["by_priority"] == {"High": 1, "Low": 1}
    assert sum(manager_stats["monthly"].values()) == 2

    user_stats = task_client.get("/api/assigned-tasks/stats", headers=_auth_header(acme["user"])).json()
    assert user_stats["total"] == 1
    assert user_stats["by_status"] == {"Completed": 1}
    other_stats = task_client.get("/api/assigned-tasks/stats", headers=_auth_header(acme["other_manager"])).json()
    assert other_stats["total"] == 0

    for client_name in ("Northwind", "Northwind", "Contoso", None):
        created = task_client.post(
            "/api/project-tasks",
            json={
                "title": "Fit-out for retail unit",
                "description": "Full electrical fit-out",
                "location": "Mall East",
                "due_date": "2026-12-15",
                "department_id": acme["department_id"],
                "client_name": client_name,
            },
            headers=_auth_header(acme["manager"]),
        )
        assert created.status_code == 201

    by_client = task_client.get("/api/project-tasks/by-client", headers=_auth_header(acme["manager"]))
    assert by_client.status_code == 200
    assert [(item["client_name"], item["total_tasks"]) for item in by_client.json()] == [
        ("Northwind", 2),
        (None, 1),
        ("Contoso", 1),
    ]
    assert all(item["pending_tasks"] == item["total_tasks"] for item in by_client.json())

    project_stats = task_client.get("/api/project-tasks/stats", headers=_auth_header(acme["owner"])).json()
    assert project_stats["total"] == 4
    other_project_stats = task_client.get(
        "/api/project-tasks/stats",
        headers=_auth_header(acme["other_manager"]),
    ).json()
    assert other_project_stats["total"] == 0

    for path in ("/api/project-tasks/stats", "/api/project-tasks/by-client"):
        denied = task_client.get(path, headers=_auth_header(acme["user"]))
        assert denied.status_code == 403
        assert denied.json()["detail"]["code"] == "TASK_ACCESS_DENIED"
