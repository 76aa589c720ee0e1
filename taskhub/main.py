from __future__ import annotations

from fastapi import FastAPI, HTTPException

from taskhub.api.routers import (
    assigned_tasks,
    auth,
    companies,
    departments,
    notifications,
    project_tasks,
    routine_tasks,
    task_activities,
    users,
)
from taskhub.infra.audit import AuditMiddleware
from taskhub.infra.db import check_db_ready
from taskhub.infra.events import event_bus
from taskhub.infra.log import configure_logging
from taskhub.services.notification_service import register_notification_handlers

configure_logging()
register_notification_handlers(event_bus)

app = FastAPI(
    title="taskhub",
    description="Multi-tenant task management with a table-driven access policy.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(companies.router, prefix="/api/companies", tags=["companies"])
app.include_router(departments.router, prefix="/api/departments", tags=["departments"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(assigned_tasks.router, prefix="/api/assigned-tasks", tags=["assigned-tasks"])
app.include_router(project_tasks.router, prefix="/api/project-tasks", tags=["project-tasks"])
app.include_router(routine_tasks.router, prefix="/api/routine-tasks", tags=["routine-tasks"])
app.include_router(task_activities.router, prefix="/api/task-activities", tags=["task-activities"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
