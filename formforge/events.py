"""Event system for FormForge.

Every lifecycle transition, field edit and submission outcome is recorded as
a typed ``FormEvent``. Events are immutable audit records; the runtime keeps
them in an append-only stream and dispatches them through an ``EventEmitter``
so that applications can hook in notifications or persistence.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from typing import Any, Callable, Dict, List, Optional
import uuid

from .types import Actor, EventType, FormStatus

logger = logging.getLogger(__name__)


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class FormEvent:
    """A single event in a form's history.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_5f0c...")
        type: Event type from EventType enum
        form_id: Id of the form version this event relates to
        ts: UTC timestamp when the event occurred
        actor: Actor who triggered this event
        status: Form status after this event
        payload: Optional event-specific data (field keys, transition, reason)

    Examples:
        >>> from formforge.types import ActorKind
        >>> event = FormEvent(
        ...     event_id="evt_001",
        ...     type=EventType.FORM_CREATED,
        ...     form_id="frm_001",
        ...     ts=datetime.now(timezone.utc),
        ...     actor=Actor(kind=ActorKind.OPERATOR, id="user_1"),
        ...     status=FormStatus.DRAFT,
        ... )
    """
    event_id: str
    type: EventType
    form_id: str
    ts: datetime
    actor: Actor
    status: FormStatus
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))
        if isinstance(self.status, str) and not isinstance(self.status, FormStatus):
            object.__setattr__(self, "status", FormStatus(self.status))

    @classmethod
    def create(
        cls,
        type: EventType,
        form_id: str,
        actor: Actor,
        status: FormStatus,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "FormEvent":
        """Build an event stamped with a fresh id and the current time."""
        return cls(
            event_id=new_event_id(),
            type=type,
            form_id=form_id,
            ts=datetime.now(timezone.utc),
            actor=actor,
            status=status,
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Timestamp is formatted as an ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "formId": self.form_id,
            "ts": self.ts.isoformat(),
            "actor": self.actor.to_dict(),
            "status": self.status.value,
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Convert event to a single-line JSON string."""
        return json.dumps(self.to_dict(), separators=(',', ':'), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormEvent":
        """Create FormEvent from dictionary (camelCase keys)."""
        ts = datetime.fromisoformat(data["ts"].replace('Z', '+00:00'))
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            form_id=data["formId"],
            ts=ts,
            actor=Actor.from_dict(data["actor"]),
            status=FormStatus(data["status"]),
            payload=data.get("payload"),
        )


EventListener = Callable[[FormEvent], None]
"""Listener callback. Called synchronously; exceptions are logged and isolated."""


class EventEmitter:
    """Dispatches events to type-specific and wildcard listeners.

    Listeners are called in registration order: type-specific first, then
    wildcard. A failing listener is logged and never affects the caller or
    the other listeners.

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.FORM_PUBLISHED, seen.append)
        >>> emitter.listener_count(EventType.FORM_PUBLISHED)
        1
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type. Unknown listeners are ignored."""
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Unsubscribe a wildcard listener. Unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: FormEvent) -> None:
        """Dispatch an event to all registered listeners."""
        for listener in list(self._listeners.get(event.type, [])) + list(self._any_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Event listener failed for %s (%s)", event.type.value, event.event_id
                )

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count listeners for one type, or all listeners when no type is given."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(l) for l in self._listeners.values())


__all__ = [
    "FormEvent",
    "EventListener",
    "EventEmitter",
    "new_event_id",
]
