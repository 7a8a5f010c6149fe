"""Change notifications published by a ContextManager."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from ctxinject.utils.datetime import serialize_datetime, utc_now

from .models import SourceType

logger = structlog.get_logger(__name__)


class EventKind(str, Enum):
    """Kinds of events a manager publishes."""

    SOURCE_ADDED = "source:added"
    SOURCE_REMOVED = "source:removed"
    SOURCE_UPDATED = "source:updated"
    CONTEXT_UPDATE = "context:update"


class ChangeType(str, Enum):
    """What happened to the source."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass
class ContextEvent:
    """Payload delivered to subscribers."""

    kind: EventKind
    source_id: str
    source_type: SourceType
    change: ChangeType
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for transport to other processes."""
        return {
            "kind": self.kind.value,
            "source_id": self.source_id,
            "source_type": self.source_type.value,
            "type": self.change.value,
            "timestamp": serialize_datetime(self.timestamp),
        }


EventCallback = Callable[[ContextEvent], None]


class EventBus:
    """Synchronous publish/subscribe channel for context events.

    Callbacks run in publication order on the publishing thread. A failing
    callback is logged and does not affect other subscribers or the
    publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventKind, list[EventCallback]] = {
            kind: [] for kind in EventKind
        }

    def subscribe(self, kind: EventKind, callback: EventCallback) -> Callable[[], None]:
        """
        Register a callback for one event kind.

        Returns:
            A function that removes the subscription
        """
        self._subscribers[kind].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[kind]:
                self._subscribers[kind].remove(callback)

        return unsubscribe

    def publish(self, event: ContextEvent) -> None:
        """Deliver an event to every subscriber of its kind."""
        for callback in list(self._subscribers[event.kind]):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    kind=event.kind.value,
                    source_id=event.source_id,
                )

    def clear(self) -> None:
        """Drop all subscriptions."""
        for callbacks in self._subscribers.values():
            callbacks.clear()
