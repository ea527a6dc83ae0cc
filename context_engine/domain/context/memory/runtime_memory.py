from typing import Dict, List, Any, Optional
import structlog

from context_engine.domain.models.context_state import ChatMessage, Context
from .eviction import BoundedStore, FifoEviction

logger = structlog.get_logger(__name__)

# Context snapshots are heavier than messages, so keep fewer of them
_SNAPSHOT_CAPACITY = 10


class ShortTermMemory:
    """Manages recent conversation messages for the active session"""

    def __init__(self, capacity: int = 50):
        self.messages: BoundedStore[ChatMessage] = BoundedStore(capacity, FifoEviction())
        self.contexts: BoundedStore[Context] = BoundedStore(min(capacity, _SNAPSHOT_CAPACITY), FifoEviction())

    @property
    def capacity(self) -> int:
        return self.messages.capacity

    def add_message(self, message: ChatMessage) -> List[ChatMessage]:
        """Add a message to conversation history, dropping the oldest on overflow"""

        dropped = self.messages.add(message)
        if dropped:
            logger.debug("Short-term memory trimmed", dropped=len(dropped), capacity=self.capacity)
        return dropped

    def get_recent_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        """Get the last `limit` messages in chronological order"""

        messages = self.messages.items()
        if limit is None:
            return messages
        if limit <= 0:
            return []
        return messages[-limit:]

    def add_context(self, context: Context) -> None:
        self.contexts.add(context)

    def get_recent_contexts(self) -> List[Context]:
        return self.contexts.items()

    def clear(self) -> None:
        self.messages.clear()
        self.contexts.clear()

    def get_stats(self) -> Dict[str, Any]:
        messages = self.messages.items()
        return {
            "message_count": len(messages),
            "context_count": len(self.contexts),
            "capacity": self.capacity,
            "oldest_message": messages[0].timestamp.isoformat() if messages else None,
            "newest_message": messages[-1].timestamp.isoformat() if messages else None,
        }
