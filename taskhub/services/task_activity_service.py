from __future__ import annotations

from collections import Counter

from loguru import logger
from sqlmodel import Session, col, select

from taskhub.domain.models import (
    Task,
    TaskActivity,
    TaskActivityCreate,
    TaskActivityStatsRead,
    TaskActivityUpdate,
    TaskAssignment,
    TaskStatus,
    User,
    now_utc,
)
from taskhub.domain.policy import Actor, Operation, ResourceScope, ResourceType
from taskhub.infra.db import get_engine
from taskhub.infra.events import EVENT_TASK_ACTIVITY_ADDED, EVENT_TASK_STATUS_CHANGED, event_bus
from taskhub.services.access import authorize, scope_conditions


class TaskActivityError(Exception):
    pass


class NotFoundError(TaskActivityError):
    pass


def activity_scope(task: Task, assignee_ids: list[str], performed_by: str | None) -> ResourceScope:
    return ResourceScope.build(
        company_id=task.company_id,
        department_id=task.department_id,
        owner_id=performed_by,
        assigned_user_ids=assignee_ids,
    )


def _task_department():
    return select(Task.department_id).where(Task.id == TaskActivity.task_id).scalar_subquery()


def _activity_on_task_assigned_to(user_id: str):
    return col(TaskActivity.task_id).in_(select(TaskAssignment.task_id).where(TaskAssignment.user_id == user_id))


class TaskActivityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_task(self, session: Session, company_id: str, task_id: str) -> Task | None:
        return session.exec(select(Task).where(Task.company_id == company_id).where(Task.id == task_id)).first()

    def _assignee_ids(self, session: Session, task: Task) -> list[str]:
        return list(
            session.exec(
                select(TaskAssignment.user_id)
                .where(TaskAssignment.company_id == task.company_id)
                .where(TaskAssignment.task_id == task.id)
            ).all()
        )

    def _load(
        self,
        session: Session,
        actor: Actor,
        activity_id: str,
        operation: Operation,
    ) -> tuple[TaskActivity, Task]:
        activity = session.exec(
            select(TaskActivity)
            .where(TaskActivity.company_id == actor.company_id)
            .where(TaskActivity.id == activity_id)
        ).first()
        if activity is None:
            raise NotFoundError("task activity not found")
        task = self._get_scoped_task(session, actor.company_id, activity.task_id)
        if task is None:
            raise NotFoundError("task not found")
        scope = activity_scope(task, self._assignee_ids(session, task), activity.performed_by)
        authorize(actor, operation, ResourceType.TASK_ACTIVITY, scope)
        return activity, task

    def list_activities(self, actor: Actor, *, task_id: str | None = None) -> list[TaskActivity]:
        conditions = scope_conditions(
            actor,
            Operation.READ,
            ResourceType.TASK_ACTIVITY,
            company_column=TaskActivity.company_id,
            department_column=_task_department(),
            owner_column=TaskActivity.performed_by,
            assigned_clause=_activity_on_task_assigned_to,
        )
        with self._session() as session:
            statement = select(TaskActivity).where(*conditions)
            if task_id is not None:
                task = self._get_scoped_task(session, actor.company_id, task_id)
                if task is None:
                    raise NotFoundError("task not found")
                authorize(
                    actor,
                    Operation.READ,
                    ResourceType.TASK_ACTIVITY,
                    activity_scope(task, self._assignee_ids(session, task), None),
                )
                statement = statement.where(TaskActivity.task_id == task_id)
            statement = statement.order_by(col(TaskActivity.created_at).desc())
            return list(session.exec(statement).all())

    def activity_stats(self, actor: Actor) -> TaskActivityStatsRead:
        rows = self.list_activities(actor)
        changes = Counter(row.status_change.value for row in rows if row.status_change is not None)
        return TaskActivityStatsRead(
            total=len(rows),
            by_status_change=dict(changes),
            by_user=dict(Counter(row.performed_by for row in rows)),
        )

    def get_activity(self, actor: Actor, activity_id: str) -> TaskActivity:
        with self._session() as session:
            activity, _ = self._load(session, actor, activity_id, Operation.READ)
            return activity

    def create_activity(self, actor: Actor, payload: TaskActivityCreate) -> TaskActivity:
        with self._session() as session:
            task = self._get_scoped_task(session, actor.company_id, payload.task_id)
            if task is None:
                raise NotFoundError("task not found")
            assignee_ids = self._assignee_ids(session, task)
            authorize(
                actor,
                Operation.CREATE,
                ResourceType.TASK_ACTIVITY,
                activity_scope(task, assignee_ids, actor.user_id),
            )

            previous_status = task.status
            if payload.status_change is not None:
                task.status = payload.status_change
            elif task.status == TaskStatus.TODO:
                task.status = TaskStatus.IN_PROGRESS
            if task.status != previous_status:
                task.updated_at = now_utc()
                session.add(task)

            activity = TaskActivity(
                company_id=task.company_id,
                task_id=task.id,
                performed_by=actor.user_id,
                description=payload.description.strip(),
                status_change=payload.status_change,
            )
            session.add(activity)
            session.flush()

            performer = session.get(User, actor.user_id)
            actor_name = actor.user_id if performer is None else f"{performer.first_name} {performer.last_name}"
            event_bus.publish_dict(
                EVENT_TASK_ACTIVITY_ADDED,
                task.company_id,
                {
                    "task_id": task.id,
                    "title": task.title,
                    "activity_id": activity.id,
                    "department_id": task.department_id,
                    "notify_user_id": task.created_by,
                    "actor_name": actor_name,
                },
                actor_id=actor.user_id,
                session=session,
            )
            if task.status != previous_status:
                recipients = [user_id for user_id in assignee_ids if user_id != actor.user_id]
                if recipients:
                    event_bus.publish_dict(
                        EVENT_TASK_STATUS_CHANGED,
                        task.company_id,
                        {
                            "task_id": task.id,
                            "title": task.title,
                            "status": task.status.value,
                            "department_id": task.department_id,
                            "user_ids": recipients,
                        },
                        actor_id=actor.user_id,
                        session=session,
                    )
            session.commit()
            session.refresh(activity)
        logger.info("Activity {} added to task {} by {}", activity.id, activity.task_id, actor.user_id)
        return activity

    def update_activity(self, actor: Actor, activity_id: str, payload: TaskActivityUpdate) -> TaskActivity:
        with self._session() as session:
            activity, _ = self._load(session, actor, activity_id, Operation.UPDATE)
            if payload.description is not None:
                activity.description = payload.description.strip()
            activity.updated_at = now_utc()
            session.add(activity)
            session.commit()
            session.refresh(activity)
            return activity

    def delete_activity(self, actor: Actor, activity_id: str) -> None:
        with self._session() as session:
            activity, _ = self._load(session, actor, activity_id, Operation.DELETE)
            session.delete(activity)
            session.commit()
        logger.info("Activity {} deleted by {}", activity_id, actor.user_id)
