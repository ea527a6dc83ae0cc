from typing import Callable, Dict, List, Any, Optional, Union
import structlog

from .schema import ContextEvent, EventType

logger = structlog.get_logger(__name__)

Listener = Callable[[ContextEvent], None]


class EventBus:
    """In-process publish/subscribe keyed by event type.

    Subscribers are kept in subscription order and removed by identity. A
    listener that raises is logged and skipped; delivery to the remaining
    listeners continues and the emitter never sees the error.
    """

    def __init__(self, source: str):
        self.source = source
        self._listeners: Dict[EventType, List[Listener]] = {}

    def subscribe(self, event_type: Union[EventType, str], listener: Listener) -> None:
        """Register a listener for one event type"""
        self._listeners.setdefault(EventType(event_type), []).append(listener)

    def unsubscribe(self, event_type: Union[EventType, str], listener: Listener) -> bool:
        """Remove the first registration of this exact listener"""

        listeners = self._listeners.get(EventType(event_type), [])
        for index, registered in enumerate(listeners):
            if registered is listener:
                del listeners[index]
                return True
        return False

    def listener_count(self, event_type: Optional[Union[EventType, str]] = None) -> int:
        if event_type is None:
            return sum(len(listeners) for listeners in self._listeners.values())
        return len(self._listeners.get(EventType(event_type), []))

    def emit(self, event_type: Union[EventType, str], payload: Optional[Dict[str, Any]] = None) -> ContextEvent:
        """Build an event from this bus's source and deliver it"""
        event = ContextEvent(type=EventType(event_type), payload=payload or {}, source=self.source)
        self.publish(event)
        return event

    def publish(self, event: ContextEvent) -> None:
        """Deliver an already-built event to the listeners of its type"""

        # Snapshot so listeners may unsubscribe while being notified
        for listener in list(self._listeners.get(event.type, [])):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "Event listener failed",
                    event_type=event.type.value,
                    source=event.source,
                    error=str(e),
                )

    def clear(self) -> None:
        """Drop every subscription"""
        self._listeners.clear()
