from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from loguru import logger
from sqlmodel import Session, col, select

from taskhub.domain.models import (
    AssignedTaskCreate,
    AssignedTaskUpdate,
    ClientTaskSummaryRead,
    Department,
    ProjectTaskCreate,
    ProjectTaskUpdate,
    Task,
    TaskActivity,
    TaskAssignment,
    TaskPriority,
    TaskRead,
    TaskStatsRead,
    TaskStatus,
    TaskType,
    User,
    now_utc,
)
from taskhub.domain.policy import Actor, Operation, ResourceScope, ResourceType
from taskhub.infra.db import get_engine
from taskhub.infra.events import EVENT_TASK_ASSIGNED, EVENT_TASK_STATUS_CHANGED, event_bus
from taskhub.services.access import authorize, scope_conditions

RESOURCE_BY_TASK_TYPE: dict[TaskType, ResourceType] = {
    TaskType.ASSIGNED: ResourceType.ASSIGNED_TASK,
    TaskType.PROJECT: ResourceType.PROJECT_TASK,
}


class TaskError(Exception):
    pass


class NotFoundError(TaskError):
    pass


class ValidationError(TaskError):
    pass


def task_scope(task: Task, assignee_ids: Iterable[str]) -> ResourceScope:
    return ResourceScope.build(
        company_id=task.company_id,
        department_id=task.department_id,
        owner_id=task.created_by,
        assigned_user_ids=assignee_ids,
    )


def assigned_to_user(user_id: str):
    return col(Task.id).in_(select(TaskAssignment.task_id).where(TaskAssignment.user_id == user_id))


class TaskService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_task(self, session: Session, company_id: str, task_type: TaskType, task_id: str) -> Task | None:
        return session.exec(
            select(Task)
            .where(Task.company_id == company_id)
            .where(Task.task_type == task_type)
            .where(Task.id == task_id)
        ).first()

    def _assignments(self, session: Session, task: Task) -> list[TaskAssignment]:
        return list(
            session.exec(
                select(TaskAssignment)
                .where(TaskAssignment.company_id == task.company_id)
                .where(TaskAssignment.task_id == task.id)
            ).all()
        )

    def _to_read(self, session: Session, task: Task) -> TaskRead:
        assignments = self._assignments(session, task)
        read = TaskRead.model_validate(task)
        read.assigned_to = sorted(item.user_id for item in assignments)
        read.completed_by = sorted(item.user_id for item in assignments if item.completed_at is not None)
        return read

    def _load_task(
        self,
        session: Session,
        actor: Actor,
        task_type: TaskType,
        task_id: str,
        operation: Operation,
    ) -> tuple[Task, list[TaskAssignment]]:
        task = self._get_scoped_task(session, actor.company_id, task_type, task_id)
        if task is None:
            raise NotFoundError("task not found")
        assignments = self._assignments(session, task)
        authorize(
            actor,
            operation,
            RESOURCE_BY_TASK_TYPE[task_type],
            task_scope(task, [item.user_id for item in assignments]),
        )
        return task, assignments

    def _ensure_department(self, session: Session, company_id: str, department_id: str) -> Department:
        department = session.exec(
            select(Department).where(Department.company_id == company_id).where(Department.id == department_id)
        ).first()
        if department is None:
            raise NotFoundError("department not found")
        return department

    def _validate_assignees(self, session: Session, company_id: str, department_id: str, user_ids: list[str]) -> list[str]:
        unique_ids = list(dict.fromkeys(user_ids))
        found = set(
            session.exec(
                select(User.id)
                .where(User.company_id == company_id)
                .where(User.department_id == department_id)
                .where(User.is_active == True)  # noqa: E712
                .where(col(User.id).in_(unique_ids))
            ).all()
        )
        if len(found) != len(unique_ids):
            raise ValidationError("one or more assigned users are invalid or not in the task department")
        return unique_ids

    def list_tasks(
        self,
        actor: Actor,
        task_type: TaskType,
        *,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        department_id: str | None = None,
    ) -> list[TaskRead]:
        conditions = scope_conditions(
            actor,
            Operation.READ,
            RESOURCE_BY_TASK_TYPE[task_type],
            company_column=Task.company_id,
            department_column=Task.department_id,
            owner_column=Task.created_by,
            assigned_clause=assigned_to_user,
        )
        with self._session() as session:
            statement = select(Task).where(*conditions).where(Task.task_type == task_type)
            if status is not None:
                statement = statement.where(Task.status == status)
            if priority is not None:
                statement = statement.where(Task.priority == priority)
            if department_id is not None:
                statement = statement.where(Task.department_id == department_id)
            rows = session.exec(statement.order_by(col(Task.created_at).desc())).all()
            return [self._to_read(session, item) for item in rows]

    def task_stats(self, actor: Actor, task_type: TaskType) -> TaskStatsRead:
        rows = self.list_tasks(actor, task_type)
        return TaskStatsRead(
            total=len(rows),
            completed=sum(1 for row in rows if row.status == TaskStatus.COMPLETED),
            by_status=dict(Counter(row.status.value for row in rows)),
            by_priority=dict(Counter(row.priority.value for row in rows)),
            monthly=dict(Counter(row.created_at.strftime("%Y-%m") for row in rows)),
        )

    def project_tasks_by_client(self, actor: Actor) -> list[ClientTaskSummaryRead]:
        groups: dict[str | None, list[TaskRead]] = {}
        for row in self.list_tasks(actor, TaskType.PROJECT):
            groups.setdefault(row.client_name, []).append(row)
        summaries = [
            ClientTaskSummaryRead(
                client_name=client_name,
                total_tasks=len(rows),
                completed_tasks=sum(1 for row in rows if row.status == TaskStatus.COMPLETED),
                pending_tasks=sum(1 for row in rows if row.status != TaskStatus.COMPLETED),
                last_task_at=max(row.created_at for row in rows),
            )
            for client_name, rows in groups.items()
        ]
        summaries.sort(key=lambda item: (-item.total_tasks, item.client_name or ""))
        return summaries

    def list_my_assigned_tasks(self, actor: Actor) -> list[TaskRead]:
        with self._session() as session:
            rows = session.exec(
                select(Task)
                .where(Task.company_id == actor.company_id)
                .where(Task.task_type == TaskType.ASSIGNED)
                .where(assigned_to_user(actor.user_id))
                .order_by(col(Task.due_date))
            ).all()
            return [self._to_read(session, item) for item in rows]

    def get_task(self, actor: Actor, task_type: TaskType, task_id: str) -> TaskRead:
        with self._session() as session:
            task, _ = self._load_task(session, actor, task_type, task_id, Operation.READ)
            return self._to_read(session, task)

    def create_assigned_task(self, actor: Actor, payload: AssignedTaskCreate) -> TaskRead:
        with self._session() as session:
            department = self._ensure_department(session, actor.company_id, payload.department_id)
            authorize(
                actor,
                Operation.CREATE,
                ResourceType.ASSIGNED_TASK,
                ResourceScope.build(
                    company_id=actor.company_id,
                    department_id=department.id,
                    owner_id=actor.user_id,
                    assigned_user_ids=payload.assigned_to,
                ),
            )
            assignee_ids = self._validate_assignees(session, actor.company_id, department.id, payload.assigned_to)
            task = Task(
                company_id=actor.company_id,
                department_id=department.id,
                task_type=TaskType.ASSIGNED,
                title=payload.title.strip(),
                description=payload.description.strip(),
                location=payload.location.strip(),
                due_date=payload.due_date,
                priority=payload.priority,
                created_by=actor.user_id,
            )
            session.add(task)
            session.flush()
            for user_id in assignee_ids:
                session.add(TaskAssignment(company_id=actor.company_id, task_id=task.id, user_id=user_id))
            event_bus.publish_dict(
                EVENT_TASK_ASSIGNED,
                actor.company_id,
                {
                    "task_id": task.id,
                    "title": task.title,
                    "department_id": task.department_id,
                    "user_ids": assignee_ids,
                },
                actor_id=actor.user_id,
                session=session,
            )
            session.commit()
            session.refresh(task)
            logger.info("Assigned task {} created by {} for {} user(s)", task.id, actor.user_id, len(assignee_ids))
            return self._to_read(session, task)

    def create_project_task(self, actor: Actor, payload: ProjectTaskCreate) -> TaskRead:
        with self._session() as session:
            department = self._ensure_department(session, actor.company_id, payload.department_id)
            authorize(
                actor,
                Operation.CREATE,
                ResourceType.PROJECT_TASK,
                ResourceScope.build(
                    company_id=actor.company_id,
                    department_id=department.id,
                    owner_id=actor.user_id,
                ),
            )
            task = Task(
                company_id=actor.company_id,
                department_id=department.id,
                task_type=TaskType.PROJECT,
                title=payload.title.strip(),
                description=payload.description.strip(),
                location=payload.location.strip(),
                due_date=payload.due_date,
                priority=payload.priority,
                client_name=payload.client_name,
                created_by=actor.user_id,
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            logger.info("Project task {} created by {}", task.id, actor.user_id)
            return self._to_read(session, task)

    def update_assigned_task(self, actor: Actor, task_id: str, payload: AssignedTaskUpdate) -> TaskRead:
        with self._session() as session:
            task, assignments = self._load_task(session, actor, TaskType.ASSIGNED, task_id, Operation.UPDATE)
            updates = payload.model_dump(exclude_unset=True, exclude={"assigned_to"})
            previous_status = task.status
            for key, value in updates.items():
                if value is not None:
                    setattr(task, key, value)
            task.updated_at = now_utc()
            session.add(task)

            current_ids = [item.user_id for item in assignments]
            if payload.assigned_to is not None:
                new_ids = self._validate_assignees(session, task.company_id, task.department_id, payload.assigned_to)
                # Reassignment resets completion tracking.
                for item in assignments:
                    session.delete(item)
                session.flush()
                for user_id in new_ids:
                    session.add(TaskAssignment(company_id=task.company_id, task_id=task.id, user_id=user_id))
                added = [user_id for user_id in new_ids if user_id not in current_ids]
                if added:
                    event_bus.publish_dict(
                        EVENT_TASK_ASSIGNED,
                        task.company_id,
                        {
                            "task_id": task.id,
                            "title": task.title,
                            "department_id": task.department_id,
                            "user_ids": added,
                        },
                        actor_id=actor.user_id,
                        session=session,
                    )
                current_ids = new_ids

            if task.status != previous_status and current_ids:
                event_bus.publish_dict(
                    EVENT_TASK_STATUS_CHANGED,
                    task.company_id,
                    {
                        "task_id": task.id,
                        "title": task.title,
                        "status": task.status.value,
                        "department_id": task.department_id,
                        "user_ids": current_ids,
                    },
                    actor_id=actor.user_id,
                    session=session,
                )
            session.commit()
            session.refresh(task)
            return self._to_read(session, task)

    def update_project_task(self, actor: Actor, task_id: str, payload: ProjectTaskUpdate) -> TaskRead:
        with self._session() as session:
            task, _ = self._load_task(session, actor, TaskType.PROJECT, task_id, Operation.UPDATE)
            for key, value in payload.model_dump(exclude_unset=True).items():
                if value is not None or key == "client_name":
                    setattr(task, key, value)
            task.updated_at = now_utc()
            session.add(task)
            session.commit()
            session.refresh(task)
            return self._to_read(session, task)

    def delete_task(self, actor: Actor, task_type: TaskType, task_id: str) -> None:
        with self._session() as session:
            task, assignments = self._load_task(session, actor, task_type, task_id, Operation.DELETE)
            for item in assignments:
                session.delete(item)
            activities = session.exec(
                select(TaskActivity)
                .where(TaskActivity.company_id == task.company_id)
                .where(TaskActivity.task_id == task.id)
            ).all()
            for activity in activities:
                session.delete(activity)
            session.flush()
            session.delete(task)
            session.commit()
        logger.info("{} {} deleted by {}", task_type.value, task_id, actor.user_id)

    def set_completion(self, actor: Actor, task_id: str, completed: bool) -> TaskRead:
        """Mark an assigned task (un)completed for the acting assignee.

        Completion is recorded as a task activity, so it is authorized as
        creating an activity on the task rather than updating the task.
        A non-assignee (department manager or SuperAdmin) toggles every
        assignment at once.
        """
        with self._session() as session:
            task = self._get_scoped_task(session, actor.company_id, TaskType.ASSIGNED, task_id)
            if task is None:
                raise NotFoundError("task not found")
            assignments = self._assignments(session, task)
            assignee_ids = [item.user_id for item in assignments]
            authorize(actor, Operation.CREATE, ResourceType.TASK_ACTIVITY, task_scope(task, assignee_ids))

            targets = [item for item in assignments if item.user_id == actor.user_id] or assignments
            stamp = now_utc() if completed else None
            for item in targets:
                item.completed_at = stamp
                session.add(item)

            previous_status = task.status
            if completed and all(item.completed_at is not None for item in assignments):
                task.status = TaskStatus.COMPLETED
            elif not completed and task.status == TaskStatus.COMPLETED:
                task.status = TaskStatus.IN_PROGRESS
            elif completed and task.status == TaskStatus.TODO:
                task.status = TaskStatus.IN_PROGRESS
            task.updated_at = now_utc()
            session.add(task)
            session.add(
                TaskActivity(
                    company_id=task.company_id,
                    task_id=task.id,
                    performed_by=actor.user_id,
                    description="Marked task as completed" if completed else "Marked task as not completed",
                    status_change=task.status if task.status != previous_status else None,
                )
            )
            if task.status != previous_status:
                event_bus.publish_dict(
                    EVENT_TASK_STATUS_CHANGED,
                    task.company_id,
                    {
                        "task_id": task.id,
                        "title": task.title,
                        "status": task.status.value,
                        "department_id": task.department_id,
                        "user_ids": [user_id for user_id in assignee_ids if user_id != actor.user_id],
                    },
                    actor_id=actor.user_id,
                    session=session,
                )
            session.commit()
            session.refresh(task)
            return self._to_read(session, task)
