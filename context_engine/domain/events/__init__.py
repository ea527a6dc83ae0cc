from .schema import ContextEvent, EventType
from .event_bus import EventBus
