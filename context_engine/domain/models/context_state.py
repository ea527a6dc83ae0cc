from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    """Timezone-aware current time used for every timestamp in the engine"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware values"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EmotionState(str, Enum):
    """Emotion labels a context can carry"""
    HAPPY = "happy"
    SAD = "sad"
    EXCITED = "excited"
    CALM = "calm"
    FRUSTRATED = "frustrated"
    CONFUSED = "confused"
    CURIOUS = "curious"
    NEUTRAL = "neutral"


class ConversationPhase(str, Enum):
    """Coarse phase of the conversation"""
    GREETING = "greeting"
    EXPLORATION = "exploration"
    DEEP_DISCUSSION = "deep_discussion"
    PROBLEM_SOLVING = "problem_solving"
    CONCLUSION = "conclusion"
    FAREWELL = "farewell"


class EmotionTrend(str, Enum):
    """Direction of the user's mood compared with the previous turn"""
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class ChatMessage(BaseModel):
    """A single conversation message supplied by the message producer"""
    id: str = Field(description="Unique message identifier")
    content: str = Field(description="Message text")
    sender: str = Field(default="user", description="'user' or 'assistant'")
    timestamp: datetime = Field(default_factory=utc_now)
    is_typing: bool = False
    error: bool = False


# System layer

class PersonalityTraits(BaseModel):
    empathy: float = Field(default=0.5, description="0-1")
    curiosity: float = Field(default=0.5, description="0-1")
    patience: float = Field(default=0.5, description="0-1")
    humor: str = Field(default="gentle", description="none, gentle, witty or playful")
    supportiveness: float = Field(default=0.5, description="0-1")
    formality: float = Field(default=0.5, description="0-1")
    enthusiasm: float = Field(default=0.5, description="0-1")


class CommunicationStyle(BaseModel):
    tone: str = "neutral"
    approach: str = "standard"
    examples: List[str] = Field(default_factory=list)


class CommunicationPatterns(BaseModel):
    greeting: CommunicationStyle = Field(default_factory=CommunicationStyle)
    questioning: CommunicationStyle = Field(default_factory=CommunicationStyle)
    explaining: CommunicationStyle = Field(default_factory=CommunicationStyle)
    encouraging: CommunicationStyle = Field(default_factory=CommunicationStyle)
    farewells: CommunicationStyle = Field(default_factory=CommunicationStyle)


class PersonalityBoundaries(BaseModel):
    prohibited_topics: List[str] = Field(default_factory=list)
    max_message_length: int = 1000
    response_guidelines: List[str] = Field(default_factory=list)


class ResponsePattern(BaseModel):
    structure: str
    vocabulary: str
    examples: List[str] = Field(default_factory=list)


class ResponseStyles(BaseModel):
    casual: ResponsePattern = Field(default_factory=lambda: ResponsePattern(structure="casual", vocabulary="casual"))
    professional: ResponsePattern = Field(default_factory=lambda: ResponsePattern(structure="professional", vocabulary="professional"))
    supportive: ResponsePattern = Field(default_factory=lambda: ResponsePattern(structure="supportive", vocabulary="supportive"))
    educational: ResponsePattern = Field(default_factory=lambda: ResponsePattern(structure="educational", vocabulary="educational"))


class AvatarPersonality(BaseModel):
    """Personality definition injected through the static policy"""
    traits: PersonalityTraits = Field(default_factory=PersonalityTraits)
    communication_patterns: CommunicationPatterns = Field(default_factory=CommunicationPatterns)
    boundaries: PersonalityBoundaries = Field(default_factory=PersonalityBoundaries)
    response_styles: ResponseStyles = Field(default_factory=ResponseStyles)


class ContextPriority(BaseModel):
    immediate: float = 1.0
    recent: float = 0.8
    session: float = 0.6
    historical: float = 0.3


class ResponseRule(BaseModel):
    condition: str
    action: str
    priority: int = 0


class EscalationRule(BaseModel):
    trigger: str
    response: str
    severity: str = Field(default="low", description="low, medium or high")


class ConversationGuidelines(BaseModel):
    max_context_window: int = 10
    context_priority: ContextPriority = Field(default_factory=ContextPriority)
    response_rules: List[ResponseRule] = Field(default_factory=list)
    escalation_rules: List[EscalationRule] = Field(default_factory=list)


class MemoryLimits(BaseModel):
    short_term: int = 50
    long_term: int = 1000
    working_memory: int = 20


class TechnicalCapabilities(BaseModel):
    supported_languages: List[str] = Field(default_factory=lambda: ["en"])
    max_tokens: int = 2000
    processing_timeout: int = Field(default=30000, description="Advisory only, milliseconds")
    cache_size: int = 100
    memory_limits: MemoryLimits = Field(default_factory=MemoryLimits)


class SystemContext(BaseModel):
    """Static policy and capabilities, persistent across sessions"""
    avatar_personality: AvatarPersonality = Field(default_factory=AvatarPersonality)
    conversation_guidelines: ConversationGuidelines = Field(default_factory=ConversationGuidelines)
    technical_capabilities: TechnicalCapabilities = Field(default_factory=TechnicalCapabilities)


# Session layer

class UserPreferences(BaseModel):
    preferred_response_length: str = "medium"
    formality_level: float = 0.5
    topic_depth: str = "moderate"
    explanation_style: str = "simple"


class UserCommunicationStyle(BaseModel):
    directness: float = 0.5
    emotional_expressiveness: float = 0.5
    questioning_style: str = "exploratory"


class TopicInterest(BaseModel):
    topic: str
    interest: float = 0.5
    expertise: float = 0.5
    last_discussed: datetime = Field(default_factory=utc_now)


class InteractionSummary(BaseModel):
    date: datetime = Field(default_factory=utc_now)
    message_count: int = 0
    primary_topics: List[str] = Field(default_factory=list)
    satisfaction: float = 0.5
    duration: float = Field(default=0.0, description="Minutes")


class UserProfile(BaseModel):
    user_id: str = "anonymous"
    interaction_history: List[InteractionSummary] = Field(default_factory=list)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    communication_style: UserCommunicationStyle = Field(default_factory=UserCommunicationStyle)
    topic_interests: List[TopicInterest] = Field(default_factory=list)


class ConversationTheme(BaseModel):
    theme: str
    frequency: int = 1
    recency: float = 0.8
    user_engagement: float = 0.7
    related_topics: List[str] = Field(default_factory=list)


class SessionContext(BaseModel):
    """Per-conversation state"""
    session_id: str
    user_profile: UserProfile = Field(default_factory=UserProfile)
    session_objectives: List[str] = Field(default_factory=list)
    conversation_themes: List[ConversationTheme] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utc_now)
    message_count: int = 0


# Immediate layer

class FlowState(BaseModel):
    momentum: float = 0.5
    depth: float = 0.5
    engagement: float = 0.5
    clarity: float = 0.5


class TransitionTrigger(BaseModel):
    from_phase: ConversationPhase
    to_phase: ConversationPhase
    condition: str
    probability: float = 0.5


class ConversationFlow(BaseModel):
    current_phase: ConversationPhase = ConversationPhase.GREETING
    flow_state: FlowState = Field(default_factory=FlowState)
    transition_triggers: List[TransitionTrigger] = Field(default_factory=list)


class EnvironmentData(BaseModel):
    """Snapshot returned by the environment probe"""
    time_of_day: str = "morning"
    user_timezone: str = "UTC"
    session_duration: float = Field(default=0.0, description="Minutes")
    active_features: List[str] = Field(default_factory=list)
    device_type: str = "desktop"
    network_quality: str = "good"


class EmotionAnalysis(BaseModel):
    """Result of the emotion analyzer for one piece of text"""
    primary: str = EmotionState.NEUTRAL.value
    secondary: Optional[str] = None
    intensity: float = 0.0
    confidence: float = 0.3
    indicators: List[str] = Field(default_factory=list)
    trend: EmotionTrend = EmotionTrend.STABLE


class ImmediateContext(BaseModel):
    """Per-turn state"""
    recent_messages: List[ChatMessage] = Field(default_factory=list)
    current_user_emotion: EmotionState = EmotionState.NEUTRAL
    conversation_flow: ConversationFlow = Field(default_factory=ConversationFlow)
    active_topics: List[str] = Field(default_factory=list)
    environment_data: EnvironmentData = Field(default_factory=EnvironmentData)
    emotion_analysis: Optional[EmotionAnalysis] = None


class Context(BaseModel):
    """Layered snapshot consumed before each reply"""
    system: SystemContext = Field(default_factory=SystemContext)
    session: SessionContext
    immediate: ImmediateContext = Field(default_factory=ImmediateContext)
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Set by compression and other post-processing")


class StaticPolicy(BaseModel):
    """Personality/policy configuration handed to the manager at construction

    Frozen at the top level only; the manager keeps a private deep copy.
    """
    model_config = {"frozen": True}

    personality: AvatarPersonality = Field(default_factory=AvatarPersonality)
    guidelines: ConversationGuidelines = Field(default_factory=ConversationGuidelines)
    supported_languages: List[str] = Field(default_factory=lambda: ["en"])
    max_tokens: int = 2000
    processing_timeout: int = 30000
    active_features: List[str] = Field(default_factory=lambda: ["chat", "voice", "3d_avatar"])


# Analysis reports produced by the manager

class TopicClassification(BaseModel):
    topic: str
    confidence: float = 0.7
    category: str = "general"
    relevance: float = 0.8


class UserIntentAnalysis(BaseModel):
    primary_intent: str
    secondary_intents: List[str] = Field(default_factory=list)
    confidence: float = 0.5
    action_required: bool = False
    urgency: str = "low"


class ResponseRecommendation(BaseModel):
    type: str = Field(description="clarification, information, support or action")
    priority: float
    suggestion: str
    reasoning: str


class ContextAnalysis(BaseModel):
    relevance_score: float
    emotional_tone: EmotionAnalysis
    topic_classification: List[TopicClassification] = Field(default_factory=list)
    user_intent_analysis: UserIntentAnalysis
    response_recommendations: List[ResponseRecommendation] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
