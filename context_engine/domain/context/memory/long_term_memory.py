from typing import Dict, List, Any, Optional
import structlog

from context_engine.domain.models.context_state import UserProfile, utc_now
from context_engine.domain.models.memory_state import (
    SignificantInteraction,
    LearnedPreference,
    RelationshipProgress,
)
from .eviction import BoundedStore, LowestImpactEviction

logger = structlog.get_logger(__name__)


class LongTermMemory:
    """Significant interactions, learned preferences and relationship state.

    The interaction store is bounded; on overflow the single lowest-impact
    interaction is dropped, whatever its age. Preferences are keyed by
    (category, preference) and merged on repeat observations.
    """

    def __init__(self, capacity: int = 1000):
        self.interactions: BoundedStore[SignificantInteraction] = BoundedStore(
            capacity, LowestImpactEviction(score=lambda item: item.impact)
        )
        self.preferences: Dict[str, LearnedPreference] = {}
        self.relationship = RelationshipProgress()
        self.user_profile: Optional[UserProfile] = None

    @property
    def capacity(self) -> int:
        return self.interactions.capacity

    def store_significant_interaction(self, interaction: SignificantInteraction) -> None:
        """Store an interaction, evicting the lowest-impact one on overflow"""

        evicted = self.interactions.add(interaction)
        for item in evicted:
            logger.debug("Evicted long-term interaction", interaction_id=item.id, impact=item.impact)

    def search_significant_interactions(self, query: str, limit: int = 10) -> List[SignificantInteraction]:
        """Keyword search over summaries and topics, highest impact first"""

        needle = query.lower()
        matches = [
            item for item in self.interactions
            if needle in item.summary.lower()
            or any(needle in topic.lower() for topic in item.topics)
        ]
        matches.sort(key=lambda item: item.impact, reverse=True)
        return matches[:max(0, limit)]

    def update_preference(self, preference: LearnedPreference) -> LearnedPreference:
        """Insert a preference or merge it into the existing one with the same key"""

        key = f"{preference.category}:{preference.preference}"
        existing = self.preferences.get(key)

        if existing is None:
            stored = preference.model_copy(deep=True)
        else:
            stored = existing.model_copy(update={
                "confidence": min(1.0, (existing.confidence + preference.confidence) / 2),
                "evidence": existing.evidence + preference.evidence,
                "last_updated": utc_now(),
            })

        self.preferences[key] = stored
        return stored

    def get_preference(self, category: str, preference: str) -> Optional[LearnedPreference]:
        return self.preferences.get(f"{category}:{preference}")

    def get_relevant_preferences(self, query: str) -> List[LearnedPreference]:
        """Preferences whose category or text mentions the query, most confident first"""

        needle = query.lower()
        matches = [
            pref for pref in self.preferences.values()
            if needle in pref.category.lower() or needle in pref.preference.lower()
        ]
        matches.sort(key=lambda pref: pref.confidence, reverse=True)
        return matches

    def update_relationship_progress(self, updates: Dict[str, Any]) -> RelationshipProgress:
        """Shallow merge of the given fields into relationship progress"""

        known = {k: v for k, v in updates.items() if k in RelationshipProgress.model_fields}
        ignored = set(updates) - set(known)
        if ignored:
            logger.warning("Ignoring unknown relationship fields", fields=sorted(ignored))

        merged = {**self.relationship.model_dump(), **known}
        self.relationship = RelationshipProgress.model_validate(merged)
        return self.relationship

    def update_user_profile(self, updates: Dict[str, Any]) -> UserProfile:
        """Shallow merge into the stored profile, creating one if absent"""

        current = self.user_profile or UserProfile()
        merged = {**current.model_dump(), **updates}
        self.user_profile = UserProfile.model_validate(merged)
        return self.user_profile

    def clear(self) -> None:
        self.interactions.clear()
        self.preferences.clear()
        self.relationship = RelationshipProgress()
        self.user_profile = None

    def get_stats(self) -> Dict[str, Any]:
        interactions = self.interactions.items()
        return {
            "interaction_count": len(interactions),
            "capacity": self.capacity,
            "preference_count": len(self.preferences),
            "average_impact": (
                sum(item.impact for item in interactions) / len(interactions) if interactions else 0.0
            ),
            "trust_level": self.relationship.trust_level,
            "intimacy_level": self.relationship.intimacy_level,
            "has_user_profile": self.user_profile is not None,
        }
