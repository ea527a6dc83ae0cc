from typing import Dict, List, Any, Optional, Protocol, runtime_checkable
from collections import Counter
from datetime import datetime
from pydantic import BaseModel, Field
import json
import uuid

from context_engine.domain.models.context_state import ChatMessage, Context, utc_now
from .memory.memory_system import SIGNIFICANCE_KEYWORDS, extract_topics


class CompressionResult(BaseModel):
    original_size: int
    compressed_size: int
    compression_ratio: float = Field(description="compressed / original, 1.0 when nothing was dropped")
    summary: str = ""
    key_points: List[str] = Field(default_factory=list)
    retained_messages: List[ChatMessage] = Field(default_factory=list)
    topics_retained: List[str] = Field(default_factory=list)
    emotional_tone: str = "neutral"
    method: str = "extractive"


class ConversationSummary(BaseModel):
    id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    participant_count: int = 0
    message_count: int = 0
    summary: str = ""
    key_topics: List[str] = Field(default_factory=list)


class FeedbackRecord(BaseModel):
    id: str
    rating: int = Field(description="1-5")
    category: str
    text: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


@runtime_checkable
class ContextCompressor(Protocol):
    """Reduces a context's message history to what the next reply needs"""

    def compress(self, messages: List[ChatMessage], context: Context) -> CompressionResult: ...

    def summarize(self, messages: List[ChatMessage]) -> ConversationSummary: ...

    def clear_cache(self) -> None: ...


@runtime_checkable
class FeedbackCollector(Protocol):
    """Receives user ratings and reports aggregate analytics"""

    def collect(self, rating: int, category: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> FeedbackRecord: ...

    def analytics(self) -> Dict[str, Any]: ...


def _messages_size(messages: List[ChatMessage]) -> int:
    return len(json.dumps([m.model_dump(mode="json") for m in messages]))


class RecentWindowCompressor:
    """Keeps the last `window` messages plus earlier ones the user flagged as important"""

    def __init__(self, window: int = 10):
        self.window = max(1, window)
        self._summaries: Dict[str, ConversationSummary] = {}

    def compress(self, messages: List[ChatMessage], context: Context) -> CompressionResult:
        window = min(self.window, context.system.conversation_guidelines.max_context_window or self.window)
        recent_ids = {m.id for m in messages[-window:]}

        retained = [
            m for m in messages
            if m.id in recent_ids or any(keyword in m.content.lower() for keyword in SIGNIFICANCE_KEYWORDS)
        ]

        original_size = _messages_size(messages)
        compressed_size = _messages_size(retained)
        topics = extract_topics(" ".join(m.content for m in retained))

        return CompressionResult(
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=compressed_size / original_size if original_size else 1.0,
            summary=self.summarize(messages).summary,
            key_points=[m.content[:100] for m in retained if m.id not in recent_ids],
            retained_messages=retained,
            topics_retained=topics,
            emotional_tone=context.immediate.current_user_emotion.value,
        )

    def summarize(self, messages: List[ChatMessage]) -> ConversationSummary:
        key = "|".join(m.id for m in messages)
        cached = self._summaries.get(key)
        if cached is not None:
            return cached

        topics = extract_topics(" ".join(m.content for m in messages))
        summary = ConversationSummary(
            id=f"summary_{uuid.uuid4().hex[:12]}",
            start=messages[0].timestamp if messages else None,
            end=messages[-1].timestamp if messages else None,
            participant_count=len({m.sender for m in messages}),
            message_count=len(messages),
            summary=(
                f"{len(messages)} messages about {', '.join(topics[:3])}" if topics
                else f"{len(messages)} messages"
            ),
            key_topics=topics,
        )
        self._summaries[key] = summary
        return summary

    def clear_cache(self) -> None:
        self._summaries.clear()


class InMemoryFeedbackCollector:
    """Keeps feedback in process memory"""

    def __init__(self):
        self.records: List[FeedbackRecord] = []

    def collect(self, rating: int, category: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> FeedbackRecord:
        record = FeedbackRecord(
            id=f"feedback_{uuid.uuid4().hex[:12]}",
            rating=max(1, min(5, int(rating))),
            category=category,
            text=text,
            metadata=metadata or {},
        )
        self.records.append(record)
        return record

    def analytics(self) -> Dict[str, Any]:
        total = len(self.records)
        ratings = [r.rating for r in self.records]
        categories = Counter(r.category for r in self.records)

        return {
            "total_feedback": total,
            "average_rating": sum(ratings) / total if total else 0.0,
            "satisfaction_rate": sum(1 for r in ratings if r >= 4) / total if total else 0.0,
            "top_categories": [{"category": c, "count": n} for c, n in categories.most_common(5)],
            "rating_distribution": {str(score): ratings.count(score) for score in range(1, 6)},
        }
