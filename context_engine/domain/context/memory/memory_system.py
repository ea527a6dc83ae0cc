from typing import Dict, List, Any, Optional
import re
import structlog

from context_engine.domain.events import EventBus, EventType
from context_engine.domain.models.config import MemoryConfig
from context_engine.domain.models.context_state import ChatMessage, Context, EmotionState
from context_engine.domain.models.memory_state import (
    SignificantInteraction,
    LearnedPreference,
    RelationshipProgress,
    RelevantMemoryResult,
)
from .runtime_memory import ShortTermMemory
from .long_term_memory import LongTermMemory
from .working_memory import WorkingMemory

logger = structlog.get_logger(__name__)

EMOTIONAL_RESONANCE = {
    EmotionState.HAPPY: 0.8,
    EmotionState.EXCITED: 0.9,
    EmotionState.SAD: 0.7,
    EmotionState.FRUSTRATED: 0.6,
    EmotionState.CONFUSED: 0.4,
    EmotionState.CALM: 0.5,
    EmotionState.CURIOUS: 0.7,
    EmotionState.NEUTRAL: 0.3,
}

SIGNIFICANCE_KEYWORDS = ("remember", "important")

_PUNCTUATION = re.compile(r"[^\w\s]")


def extract_topics(text: str, limit: int = 5) -> List[str]:
    """Unique lowercased words longer than three characters, in order of appearance"""

    topics: List[str] = []
    for word in _PUNCTUATION.sub(" ", text.lower()).split():
        if len(word) > 3 and word not in topics:
            topics.append(word)
            if len(topics) >= limit:
                break
    return topics


class TieredMemorySystem:
    """Facade over short-term, long-term and working memory"""

    def __init__(self, config: Optional[MemoryConfig] = None, event_bus: Optional[EventBus] = None):
        self.config = config or MemoryConfig()
        self.events = event_bus or EventBus(source="MemorySystem")
        self.short_term = ShortTermMemory(self.config.short_term_capacity)
        self.long_term = LongTermMemory(self.config.long_term_capacity)
        self.working = WorkingMemory(self.config.working_memory_capacity)

    def process_message(self, message: ChatMessage, context: Context) -> List[str]:
        """Route a message into every tier it affects; returns the touched tiers"""

        updated = ["short_term", "working"]
        self.short_term.add_message(message)
        self.short_term.add_context(context)
        self.working.update_context(context)

        emotion = context.immediate.current_user_emotion

        if self._is_significant(message, emotion):
            interaction = self._create_significant_interaction(message, emotion)
            self.long_term.store_significant_interaction(interaction)
            updated.append("long_term")

        if message.sender == "user":
            preferences = self._extract_preferences(message, emotion)
            for preference in preferences:
                self.long_term.update_preference(preference)
            if preferences and "long_term" not in updated:
                updated.append("long_term")

        self.events.emit(EventType.MEMORY_UPDATED, {
            "message_id": message.id,
            "memory_types": updated,
        })
        return updated

    def get_relevant_memories(self, query: str, limit: int = 10) -> RelevantMemoryResult:
        """Blend recent messages, long-term hits and preferences for a query"""

        recent = self.short_term.get_recent_messages(limit)
        interactions = self.long_term.search_significant_interactions(query, limit)
        preferences = self.long_term.get_relevant_preferences(query)

        return RelevantMemoryResult(
            recent_messages=recent,
            significant_interactions=interactions,
            learned_preferences=preferences,
            relevance_score=self._calculate_relevance(query, recent, interactions),
            query=query,
        )

    def update_relationship_progress(self, updates: Dict[str, Any]) -> RelationshipProgress:
        relationship = self.long_term.update_relationship_progress(updates)
        self.events.emit(EventType.MEMORY_UPDATED, {"memory_types": ["long_term"], "relationship": True})
        return relationship

    def get_memory_stats(self) -> Dict[str, Any]:
        return {
            "short_term": self.short_term.get_stats(),
            "long_term": self.long_term.get_stats(),
            "working": self.working.get_stats(),
        }

    def clear_memories(self, preserve_long_term: bool = True) -> None:
        """Clear short-term and working memory, and long-term unless preserved"""

        self.short_term.clear()
        self.working.clear()
        if not preserve_long_term:
            self.long_term.clear()

        logger.info("Memories cleared", preserve_long_term=preserve_long_term)

    def _is_significant(self, message: ChatMessage, emotion: EmotionState) -> bool:
        content = message.content.lower()
        signals = [
            len(message.content) > 100,
            emotion != EmotionState.NEUTRAL,
            SIGNIFICANCE_KEYWORDS[0] in content,
            SIGNIFICANCE_KEYWORDS[1] in content,
        ]
        return sum(signals) >= 2

    def _create_significant_interaction(self, message: ChatMessage, emotion: EmotionState) -> SignificantInteraction:
        topics = extract_topics(message.content)
        summary = f'{emotion.value} discussion about {", ".join(topics[:2]) or "general"}: "{message.content[:100]}..."'

        impact = 0.5
        if emotion != EmotionState.NEUTRAL:
            impact += 0.2
        if len(message.content) > 200:
            impact += 0.1

        return SignificantInteraction(
            id=f"interaction_{message.id}",
            timestamp=message.timestamp,
            summary=summary,
            impact=min(impact, 1.0),
            emotional_resonance=EMOTIONAL_RESONANCE.get(emotion, 0.3),
            topics=topics,
        )

    def _extract_preferences(self, message: ChatMessage, emotion: EmotionState) -> List[LearnedPreference]:
        preferences = []

        if len(message.content) < 50:
            preferences.append(LearnedPreference(
                category="communication_style",
                preference="prefers_brief_responses",
                confidence=0.3,
                evidence=[message.content],
            ))

        if emotion != EmotionState.NEUTRAL:
            preferences.append(LearnedPreference(
                category="emotional_response",
                preference=f"responds_well_to_{emotion.value}_tone",
                confidence=0.4,
                evidence=[f"User showed {emotion.value} emotion"],
            ))

        return preferences

    def _calculate_relevance(
        self,
        query: str,
        recent: List[ChatMessage],
        interactions: List[SignificantInteraction],
    ) -> float:
        needle = query.lower()

        short_hits = sum(1 for message in recent if needle in message.content.lower())
        short_ratio = short_hits / max(len(recent), 1)

        long_hits = sum(
            1 for item in interactions
            if any(needle in topic.lower() for topic in item.topics)
        )
        long_ratio = long_hits / max(len(interactions), 1)

        return min(0.4 * short_ratio + 0.6 * long_ratio, 1.0)
