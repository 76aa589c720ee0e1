from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from loguru import logger
from sqlmodel import Session

from taskhub.domain.models import EventEnvelope, EventRecord
from taskhub.infra import db

EVENT_TASK_ASSIGNED = "task.assigned"
EVENT_TASK_STATUS_CHANGED = "task.status_changed"
EVENT_TASK_ACTIVITY_ADDED = "task.activity_added"

EventHandler = Callable[[EventEnvelope, Session], None]


class EventBus:
    """Persists domain events and fans them out to in-process subscribers.

    Handlers receive the publishing session so that anything they write
    commits or rolls back together with the change that raised the event.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        should_commit = session is None
        if session is None:
            session = Session(db.engine)
        try:
            session.add(
                EventRecord(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    company_id=event.company_id,
                    ts=event.ts,
                    actor_id=event.actor_id,
                    payload=event.payload,
                )
            )
            handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
            for handler in handlers:
                handler(event, session)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()
        logger.debug("Published {} for company {} to {} handler(s)", event.event_type, event.company_id, len(handlers))

    def publish_dict(
        self,
        event_type: str,
        company_id: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        session: Session | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            company_id=company_id,
            actor_id=actor_id,
            payload=payload,
        )
        self.publish(event, session=session)
        return event


event_bus = EventBus()
