from typing import Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from context_engine.domain.models.context_state import utc_now


class EventType(str, Enum):
    """Context event types published on the bus"""
    CONTEXT_CREATED = "context_created"
    CONTEXT_UPDATED = "context_updated"
    CONTEXT_CACHED = "context_cached"
    CONTEXT_RETRIEVED = "context_retrieved"
    CONTEXT_EXPIRED = "context_expired"
    MEMORY_UPDATED = "memory_updated"
    PERSONALITY_ADJUSTED = "personality_adjusted"
    ERROR_OCCURRED = "error_occurred"


class ContextEvent(BaseModel):
    """Event envelope delivered to subscribers"""
    model_config = {"frozen": True}

    type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    source: str = Field(description="Component that emitted the event")

    def forwarded(self, source: str) -> "ContextEvent":
        """Copy of this event re-published by another component"""
        return ContextEvent(type=self.type, payload=self.payload, timestamp=self.timestamp, source=source)
