from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from loguru import logger
from sqlalchemy import func
from sqlmodel import Session, col, select

from taskhub.domain.models import EventEnvelope, Notification, NotificationStatsRead, NotificationType
from taskhub.domain.policy import (
    SYSTEM_PRINCIPAL,
    Actor,
    DenyReason,
    Operation,
    PolicyDecision,
    ResourceScope,
    ResourceType,
    SystemPrincipal,
)
from taskhub.infra.db import get_engine
from taskhub.infra.events import (
    EVENT_TASK_ACTIVITY_ADDED,
    EVENT_TASK_ASSIGNED,
    EVENT_TASK_STATUS_CHANGED,
    EventBus,
)
from taskhub.services.access import AccessDeniedError, authorize, scope_conditions


class NotificationError(Exception):
    pass


class NotFoundError(NotificationError):
    pass


def notification_scope(notification: Notification) -> ResourceScope:
    return ResourceScope.build(
        company_id=notification.company_id,
        department_id=notification.department_id,
        owner_id=notification.user_id,
    )


class NotificationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_notification(self, session: Session, company_id: str, notification_id: str) -> Notification | None:
        return session.exec(
            select(Notification)
            .where(Notification.company_id == company_id)
            .where(Notification.id == notification_id)
        ).first()

    def _scoped_statement_conditions(self, actor: Actor, operation: Operation) -> list:
        return scope_conditions(
            actor,
            operation,
            ResourceType.NOTIFICATION,
            company_column=Notification.company_id,
            department_column=Notification.department_id,
            owner_column=Notification.user_id,
        )

    def dispatch(
        self,
        principal: SystemPrincipal,
        session: Session,
        *,
        company_id: str,
        user_ids: Iterable[str],
        type: NotificationType,
        message: str,
        task_id: str | None = None,
        department_id: str | None = None,
    ) -> list[Notification]:
        """Create notifications on behalf of the system.

        End users never reach this path; the public policy table forbids
        notification creation for every role.
        """
        if not isinstance(principal, SystemPrincipal):
            raise AccessDeniedError(
                PolicyDecision.deny(DenyReason.NOTIFICATION_ACCESS_DENIED),
                operation=Operation.CREATE,
                resource_type=ResourceType.NOTIFICATION,
                message="Notifications are created by the system only",
            )
        rows = [
            Notification(
                company_id=company_id,
                user_id=user_id,
                department_id=department_id,
                task_id=task_id,
                type=type,
                message=message,
            )
            for user_id in dict.fromkeys(user_ids)
        ]
        for row in rows:
            session.add(row)
        logger.info("System {} queued {} {} notification(s) in company {}", principal.name, len(rows), type, company_id)
        return rows

    def list_notifications(
        self,
        actor: Actor,
        *,
        is_read: bool | None = None,
        type: NotificationType | None = None,
    ) -> list[Notification]:
        conditions = self._scoped_statement_conditions(actor, Operation.READ)
        with self._session() as session:
            statement = select(Notification).where(*conditions)
            if is_read is not None:
                statement = statement.where(Notification.is_read == is_read)
            if type is not None:
                statement = statement.where(Notification.type == type)
            statement = statement.order_by(col(Notification.created_at).desc())
            return list(session.exec(statement).all())

    def unread_count(self, actor: Actor) -> int:
        # Always the actor's own inbox, whatever their role.
        with self._session() as session:
            return session.exec(
                select(func.count())
                .select_from(Notification)
                .where(Notification.company_id == actor.company_id)
                .where(Notification.user_id == actor.user_id)
                .where(Notification.is_read == False)  # noqa: E712
            ).one()

    def notification_stats(self, actor: Actor) -> NotificationStatsRead:
        rows = self.list_notifications(actor)
        return NotificationStatsRead(
            total=len(rows),
            unread=sum(1 for row in rows if not row.is_read),
            by_type=dict(Counter(row.type.value for row in rows)),
        )

    def get_notification(self, actor: Actor, notification_id: str) -> Notification:
        with self._session() as session:
            notification = self._get_scoped_notification(session, actor.company_id, notification_id)
            if notification is None:
                raise NotFoundError("notification not found")
            authorize(actor, Operation.READ, ResourceType.NOTIFICATION, notification_scope(notification))
            return notification

    def set_read(self, actor: Actor, notification_id: str, is_read: bool) -> Notification:
        with self._session() as session:
            notification = self._get_scoped_notification(session, actor.company_id, notification_id)
            if notification is None:
                raise NotFoundError("notification not found")
            authorize(actor, Operation.UPDATE, ResourceType.NOTIFICATION, notification_scope(notification))
            notification.is_read = is_read
            session.add(notification)
            session.commit()
            session.refresh(notification)
            return notification

    def mark_all_read(self, actor: Actor) -> int:
        conditions = self._scoped_statement_conditions(actor, Operation.UPDATE)
        with self._session() as session:
            rows = list(
                session.exec(
                    select(Notification).where(*conditions).where(Notification.is_read == False)  # noqa: E712
                ).all()
            )
            for row in rows:
                row.is_read = True
                session.add(row)
            session.commit()
            return len(rows)

    def delete_notification(self, actor: Actor, notification_id: str) -> None:
        with self._session() as session:
            notification = self._get_scoped_notification(session, actor.company_id, notification_id)
            if notification is None:
                raise NotFoundError("notification not found")
            authorize(actor, Operation.DELETE, ResourceType.NOTIFICATION, notification_scope(notification))
            session.delete(notification)
            session.commit()

    def delete_all(self, actor: Actor) -> int:
        conditions = self._scoped_statement_conditions(actor, Operation.DELETE)
        with self._session() as session:
            rows = list(session.exec(select(Notification).where(*conditions)).all())
            for row in rows:
                session.delete(row)
            session.commit()
        logger.info("User {} cleared {} notification(s) in company {}", actor.user_id, len(rows), actor.company_id)
        return len(rows)


def _on_task_assigned(event: EventEnvelope, session: Session) -> None:
    payload = event.payload
    NotificationService().dispatch(
        SYSTEM_PRINCIPAL,
        session,
        company_id=event.company_id,
        user_ids=payload.get("user_ids", []),
        type=NotificationType.TASK_ASSIGNMENT,
        message=f"You have been assigned a new task: {payload.get('title')}",
        task_id=payload.get("task_id"),
        department_id=payload.get("department_id"),
    )


def _on_task_status_changed(event: EventEnvelope, session: Session) -> None:
    payload = event.payload
    NotificationService().dispatch(
        SYSTEM_PRINCIPAL,
        session,
        company_id=event.company_id,
        user_ids=payload.get("user_ids", []),
        type=NotificationType.STATUS_CHANGE,
        message=f'Task "{payload.get("title")}" status changed to {payload.get("status")}',
        task_id=payload.get("task_id"),
        department_id=payload.get("department_id"),
    )


def _on_task_activity_added(event: EventEnvelope, session: Session) -> None:
    payload = event.payload
    recipient = payload.get("notify_user_id")
    if not recipient or recipient == event.actor_id:
        return
    NotificationService().dispatch(
        SYSTEM_PRINCIPAL,
        session,
        company_id=event.company_id,
        user_ids=[recipient],
        type=NotificationType.TASK_UPDATE,
        message=f"{payload.get('actor_name')} added activity to task: {payload.get('title')}",
        task_id=payload.get("task_id"),
        department_id=payload.get("department_id"),
    )


def register_notification_handlers(bus: EventBus) -> None:
    bus.subscribe(EVENT_TASK_ASSIGNED, _on_task_assigned)
    bus.subscribe(EVENT_TASK_STATUS_CHANGED, _on_task_status_changed)
    bus.subscribe(EVENT_TASK_ACTIVITY_ADDED, _on_task_activity_added)
