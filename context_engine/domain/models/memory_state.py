from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum

from .context_state import ChatMessage, utc_now


class ProcessType(str, Enum):
    """Kinds of work tracked in working memory"""
    CONTEXT_ANALYSIS = "context_analysis"
    RESPONSE_GENERATION = "response_generation"
    EMOTION_DETECTION = "emotion_detection"


class ProcessStatus(str, Enum):
    """Process execution status"""
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"


class CacheEntry(BaseModel):
    """A cached context snapshot"""
    key: str
    payload: Any = None
    created_at: datetime = Field(default_factory=utc_now)
    ttl_seconds: float = Field(default=1800, description="Seconds; 0 means already expired")
    access_count: int = 1
    last_accessed_at: datetime = Field(default_factory=utc_now)
    compressed: bool = False


class SignificantInteraction(BaseModel):
    """A memory record judged important enough for long-term retention"""
    id: str
    timestamp: datetime = Field(default_factory=utc_now)
    summary: str
    impact: float = Field(default=0.5, description="0-1")
    emotional_resonance: float = Field(default=0.3, description="0-1")
    topics: List[str] = Field(default_factory=list)


class LearnedPreference(BaseModel):
    """Preference inferred from user behaviour"""
    category: str
    preference: str
    confidence: float = Field(default=0.5, description="0-1")
    evidence: List[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)


class CommunicationEvolution(BaseModel):
    phase: str
    characteristics: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class RelationshipProgress(BaseModel):
    """How the relationship with the user has developed"""
    trust_level: float = 0.5
    intimacy_level: float = 0.1
    shared_experiences: List[str] = Field(default_factory=list)
    evolution_log: List[CommunicationEvolution] = Field(default_factory=list)


class ActiveProcess(BaseModel):
    """In-flight work tracked by working memory"""
    id: str
    type: ProcessType = ProcessType.CONTEXT_ANALYSIS
    status: ProcessStatus = ProcessStatus.RUNNING
    progress: float = Field(default=0.0, description="0-1")
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("progress")
    @classmethod
    def _clamp_progress(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)


class RelevantMemoryResult(BaseModel):
    """Blend of all memory tiers for a query"""
    recent_messages: List[ChatMessage] = Field(default_factory=list)
    significant_interactions: List[SignificantInteraction] = Field(default_factory=list)
    learned_preferences: List[LearnedPreference] = Field(default_factory=list)
    relevance_score: float = 0.0
    query: Optional[str] = None
