from typing import Dict, Any, Callable, List, Optional
from collections import Counter
from datetime import datetime

from context_engine.domain.models.config import ContextEngineConfig
from context_engine.domain.models.context_state import (
    ChatMessage,
    Context,
    ConversationFlow,
    ConversationPhase,
    ConversationTheme,
    EmotionAnalysis,
    EmotionState,
    EnvironmentData,
    FlowState,
    ImmediateContext,
    MemoryLimits,
    PersonalityTraits,
    SessionContext,
    StaticPolicy,
    SystemContext,
    TechnicalCapabilities,
    UserProfile,
)
from .context_ranker import ContextRanker
from .memory.memory_system import TieredMemorySystem
from .state.state_manager import SessionState

EnvironmentProbe = Callable[[], EnvironmentData]


def time_of_day(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 22:
        return "evening"
    return "night"


def local_environment_probe() -> EnvironmentData:
    """Environment snapshot from the local clock and timezone"""

    local_now = datetime.now().astimezone()
    return EnvironmentData(
        time_of_day=time_of_day(local_now.hour),
        user_timezone=local_now.tzname() or "UTC",
    )


class ContextRetriever:
    """Assembles the three context layers from policy, session state and memory"""

    def __init__(
        self,
        memory: TieredMemorySystem,
        ranker: ContextRanker,
        policy: StaticPolicy,
        config: ContextEngineConfig,
        environment_probe: EnvironmentProbe = local_environment_probe,
    ):
        self.memory = memory
        self.ranker = ranker
        self.policy = policy
        self.config = config
        self.environment_probe = environment_probe
        self.personality_overrides: Dict[str, Any] = {}

    def build_system_context(self) -> SystemContext:
        personality = self.policy.personality
        if self.personality_overrides:
            traits = PersonalityTraits.model_validate({
                **personality.traits.model_dump(),
                **self.personality_overrides,
            })
            personality = personality.model_copy(update={"traits": traits})

        return SystemContext(
            avatar_personality=personality.model_copy(deep=True),
            conversation_guidelines=self.policy.guidelines.model_copy(deep=True),
            technical_capabilities=TechnicalCapabilities(
                supported_languages=list(self.policy.supported_languages),
                max_tokens=self.policy.max_tokens,
                processing_timeout=self.policy.processing_timeout,
                cache_size=self.config.cache.max_size,
                memory_limits=MemoryLimits(
                    short_term=self.config.memory.short_term_capacity,
                    long_term=self.config.memory.long_term_capacity,
                    working_memory=self.config.memory.working_memory_capacity,
                ),
            ),
        )

    def build_session_context(self, state: SessionState, message_count: int) -> SessionContext:
        return SessionContext(
            session_id=state.session_id,
            user_profile=(self.memory.long_term.user_profile or UserProfile()).model_copy(deep=True),
            session_objectives=self._session_objectives(),
            conversation_themes=self._conversation_themes(),
            start_time=state.start_time,
            message_count=message_count,
        )

    def build_immediate_context(
        self,
        messages: List[ChatMessage],
        analysis: EmotionAnalysis,
        session_duration_seconds: float = 0.0,
    ) -> ImmediateContext:
        return ImmediateContext(
            recent_messages=list(messages),
            current_user_emotion=_as_emotion(analysis.primary),
            conversation_flow=self.ranker.analyze_conversation_flow(messages),
            active_topics=self.ranker.extract_active_topics(messages),
            environment_data=self.build_environment(session_duration_seconds),
            emotion_analysis=analysis,
        )

    def build_environment(self, session_duration_seconds: float = 0.0) -> EnvironmentData:
        environment = self.environment_probe()
        return environment.model_copy(update={
            "session_duration": session_duration_seconds / 60,
            "active_features": environment.active_features or list(self.policy.active_features),
        })

    def build_context(
        self,
        state: SessionState,
        messages: List[ChatMessage],
        analysis: EmotionAnalysis,
        timestamp: datetime,
        session_duration_seconds: float = 0.0,
    ) -> Context:
        return Context(
            system=self.build_system_context(),
            session=self.build_session_context(state, message_count=len(messages)),
            immediate=self.build_immediate_context(messages, analysis, session_duration_seconds),
            timestamp=timestamp,
        )

    def build_fallback_context(
        self,
        state: SessionState,
        query: str,
        timestamp: datetime,
        session_duration_seconds: float = 0.0,
    ) -> Context:
        """Minimal, safely-defaulted context used when normal assembly fails"""

        return Context(
            system=self.build_system_context(),
            session=SessionContext(
                session_id=state.session_id,
                user_profile=UserProfile(),
                start_time=state.start_time,
                message_count=0,
            ),
            immediate=ImmediateContext(
                recent_messages=[],
                current_user_emotion=EmotionState.NEUTRAL,
                conversation_flow=ConversationFlow(
                    current_phase=ConversationPhase.GREETING,
                    flow_state=FlowState(momentum=0.5, depth=0.3, engagement=0.5, clarity=0.8),
                ),
                active_topics=[query] if query else [],
                # No probe call here: the probe may be what failed
                environment_data=EnvironmentData(
                    session_duration=session_duration_seconds / 60,
                    active_features=list(self.policy.active_features),
                ),
            ),
            timestamp=timestamp,
            metadata={"fallback": True},
        )

    def _session_objectives(self) -> List[str]:
        return [
            pref.preference for pref in self.memory.long_term.preferences.values()
            if pref.category == "objectives"
        ]

    def _conversation_themes(self) -> List[ConversationTheme]:
        counts = Counter(
            topic
            for interaction in self.memory.long_term.interactions
            for topic in interaction.topics
        )
        return [ConversationTheme(theme=theme, frequency=count) for theme, count in counts.most_common()]


def _as_emotion(label: Optional[str]) -> EmotionState:
    try:
        return EmotionState(label)
    except ValueError:
        return EmotionState.NEUTRAL
