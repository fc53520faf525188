"""In-process event bus for task lifecycle events.

Every published event is stored as an ``EventRecord`` row. When the caller
passes its own session the record joins that transaction; otherwise the bus
commits it on a short-lived session. Subscribers run after the record is
added, in registration order, with ``"*"`` subscribers last.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from loguru import logger
from sqlmodel import Session

from app.domain.models import EventEnvelope, EventRecord
from app.infra.db import engine

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(handler)

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        return [*self._subscribers.get(event_type, []), *self._subscribers.get("*", [])]

    @staticmethod
    def _record(event: EventEnvelope) -> EventRecord:
        return EventRecord(
            event_id=event.event_id,
            event_type=event.event_type,
            ts=event.ts,
            actor_id=event.actor_id,
            correlation_id=event.correlation_id,
            payload=event.payload,
        )

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        if session is not None:
            session.add(self._record(event))
        else:
            with Session(engine) as own_session:
                own_session.add(self._record(event))
                own_session.commit()
        logger.bind(event_type=event.event_type, event_id=event.event_id).debug("event published")

        for handler in self.handlers_for(event.event_type):
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        session: Session | None = None,
        actor_id: str | None = None,
        correlation_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            payload=payload,
            actor_id=actor_id,
            correlation_id=correlation_id,
        )
        self.publish(event, session=session)
        return event


event_bus = EventBus()
