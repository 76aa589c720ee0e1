from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Any

from loguru import logger
from sqlmodel import Session, col, select

from taskhub.domain.models import (
    Department,
    PerformedTaskItem,
    RoutineTask,
    RoutineTaskCreate,
    RoutineTaskStatsRead,
    RoutineTaskUpdate,
    now_utc,
)
from taskhub.domain.policy import Actor, Operation, ResourceScope, ResourceType
from taskhub.infra.db import get_engine
from taskhub.services.access import authorize, scope_conditions


class RoutineTaskError(Exception):
    pass


class NotFoundError(RoutineTaskError):
    pass


def routine_task_scope(task: RoutineTask) -> ResourceScope:
    return ResourceScope.build(
        company_id=task.company_id,
        department_id=task.department_id,
        owner_id=task.performed_by,
    )


def compute_progress(items: list[dict[str, Any]]) -> int:
    if not items:
        return 0
    completed = sum(1 for item in items if item.get("is_completed"))
    return round(completed / len(items) * 100)


def _dump_items(items: list[PerformedTaskItem]) -> list[dict[str, Any]]:
    return [item.model_dump() for item in items]


class RoutineTaskService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_task(self, session: Session, company_id: str, task_id: str) -> RoutineTask | None:
        return session.exec(
            select(RoutineTask).where(RoutineTask.company_id == company_id).where(RoutineTask.id == task_id)
        ).first()

    def _load(self, session: Session, actor: Actor, task_id: str, operation: Operation) -> RoutineTask:
        task = self._get_scoped_task(session, actor.company_id, task_id)
        if task is None:
            raise NotFoundError("routine task not found")
        authorize(actor, operation, ResourceType.ROUTINE_TASK, routine_task_scope(task))
        return task

    def list_tasks(
        self,
        actor: Actor,
        *,
        performed_by: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[RoutineTask]:
        conditions = scope_conditions(
            actor,
            Operation.READ,
            ResourceType.ROUTINE_TASK,
            company_column=RoutineTask.company_id,
            department_column=RoutineTask.department_id,
            owner_column=RoutineTask.performed_by,
        )
        with self._session() as session:
            statement = select(RoutineTask).where(*conditions)
            if performed_by is not None:
                statement = statement.where(RoutineTask.performed_by == performed_by)
            if start is not None:
                statement = statement.where(RoutineTask.performed_on >= start)
            if end is not None:
                statement = statement.where(RoutineTask.performed_on <= end)
            statement = statement.order_by(col(RoutineTask.performed_on).desc())
            return list(session.exec(statement).all())

    def list_my_tasks(self, actor: Actor) -> list[RoutineTask]:
        return self.list_tasks(actor, performed_by=actor.user_id)

    def task_stats(self, actor: Actor, *, start: date | None = None, end: date | None = None) -> RoutineTaskStatsRead:
        rows = self.list_tasks(actor, start=start, end=end)
        total = len(rows)
        return RoutineTaskStatsRead(
            total=total,
            completed=sum(1 for row in rows if row.progress == 100),
            avg_progress=round(sum(row.progress for row in rows) / total) if total else 0,
            by_day=dict(Counter(row.performed_on.isoformat() for row in rows)),
            by_user=dict(Counter(row.performed_by for row in rows)),
        )

    def get_task(self, actor: Actor, task_id: str) -> RoutineTask:
        with self._session() as session:
            return self._load(session, actor, task_id, Operation.READ)

    def create_task(self, actor: Actor, payload: RoutineTaskCreate) -> RoutineTask:
        department_id = payload.department_id or actor.department_id
        with self._session() as session:
            department = session.exec(
                select(Department)
                .where(Department.company_id == actor.company_id)
                .where(Department.id == department_id)
            ).first()
            if department is None:
                raise NotFoundError("department not found")
            authorize(
                actor,
                Operation.CREATE,
                ResourceType.ROUTINE_TASK,
                ResourceScope.build(
                    company_id=actor.company_id,
                    department_id=department.id,
                    owner_id=actor.user_id,
                ),
            )
            items = _dump_items(payload.performed_tasks)
            task = RoutineTask(
                company_id=actor.company_id,
                department_id=department.id,
                performed_by=actor.user_id,
                performed_on=payload.performed_on,
                performed_tasks=items,
                progress=compute_progress(items),
            )
            session.add(task)
            session.commit()
            session.refresh(task)
        logger.info("Routine task {} logged by {}", task.id, actor.user_id)
        return task

    def update_task(self, actor: Actor, task_id: str, payload: RoutineTaskUpdate) -> RoutineTask:
        with self._session() as session:
            task = self._load(session, actor, task_id, Operation.UPDATE)
            if payload.performed_on is not None:
                task.performed_on = payload.performed_on
            if payload.performed_tasks is not None:
                items = _dump_items(payload.performed_tasks)
                task.performed_tasks = items
                task.progress = compute_progress(items)
            task.updated_at = now_utc()
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    def delete_task(self, actor: Actor, task_id: str) -> None:
        with self._session() as session:
            task = self._load(session, actor, task_id, Operation.DELETE)
            session.delete(task)
            session.commit()
        logger.info("Routine task {} deleted by {}", task_id, actor.user_id)
