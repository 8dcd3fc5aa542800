"""In-process event bus for queue observers."""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class EventKind(str, Enum):
    """Signals emitted by the queue core."""

    QUEUE_UPDATED = "queue.updated"
    PAUSED_BY_CAP = "queue.paused_by_cap"
    PAUSED_BY_QUOTA = "queue.paused_by_quota"
    COOLDOWN_TICK = "quota.cooldown_tick"
    COOLDOWN_ENDED = "quota.cooldown_ended"
    NOTIFICATION = "notification"


@dataclass
class Event:
    """A single emitted signal and its payload."""

    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)


Observer = Callable[[Event], None]


class EventBus:
    """Best-effort, at-most-once push to subscribed observers."""

    def __init__(self) -> None:
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def emit(self, kind: EventKind, **payload: Any) -> None:
        """Deliver an event to every observer; observer errors are logged."""
        event = Event(kind=kind, payload=payload)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Event observer failed", kind=kind.value)

    def notify(self, title: str, body: str) -> None:
        """Emit a user-facing notification."""
        self.emit(EventKind.NOTIFICATION, title=title, body=body)
