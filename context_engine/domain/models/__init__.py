from .context_state import (
    ChatMessage,
    Context,
    ConversationFlow,
    ConversationPhase,
    EmotionAnalysis,
    EmotionState,
    EmotionTrend,
    EnvironmentData,
    FlowState,
    ImmediateContext,
    SessionContext,
    StaticPolicy,
    SystemContext,
    UserProfile,
    utc_now,
)
from .memory_state import (
    ActiveProcess,
    CacheEntry,
    LearnedPreference,
    ProcessStatus,
    ProcessType,
    RelationshipProgress,
    RelevantMemoryResult,
    SignificantInteraction,
)
from .config import ContextEngineConfig
