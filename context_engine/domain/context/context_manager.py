from typing import Dict, Any, Callable, Optional, TypeVar
from datetime import datetime
import structlog

from context_engine.domain.errors import ContextManagerShutdownError, OperationalFailure
from context_engine.domain.events import ContextEvent, EventBus, EventType
from context_engine.domain.emotion import EmotionAnalyzer
from context_engine.domain.models.config import ContextEngineConfig
from context_engine.domain.models.context_state import (
    ChatMessage,
    Context,
    ContextAnalysis,
    PersonalityTraits,
    SessionContext,
    StaticPolicy,
    UserProfile,
    utc_now,
)
from context_engine.domain.validation import ContextValidator, HealthCheck, ValidationResult
from context_engine.infrastructure.observability.logging import (
    bind_session,
    context_logger,
    setup_logging_from_config,
    unbind_session,
)
from context_engine.infrastructure.observability.performance_monitor import (
    PerformanceMonitor,
    measure_output,
)
from .collaborators import (
    ContextCompressor,
    ConversationSummary,
    FeedbackCollector,
    FeedbackRecord,
    InMemoryFeedbackCollector,
    RecentWindowCompressor,
)
from .context_ranker import ContextRanker
from .context_retriever import ContextRetriever, EnvironmentProbe, local_environment_probe
from .memory.cache_memory_store import CacheKeyGenerator, ContextCache
from .memory.memory_system import TieredMemorySystem
from .state.state_manager import StateManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SOURCE = "ContextManager"
SERVICE_NAME = "context_manager"
SUMMARY_WINDOW = 50
_TEXT_TRAITS = {"humor"}


class ContextManager:
    """Builds the layered context the agent reads before every reply.

    Owns the cache, the tiered memory, the emotion analyzer, the validator
    and the session state. Cache and memory events are re-published on the
    manager's own bus. `process_message` and `get_context_for_response` never
    raise: any failure is logged, reported as an `error_occurred` event and
    answered with a minimal fallback context.
    """

    def __init__(
        self,
        config: Optional[ContextEngineConfig] = None,
        policy: Optional[StaticPolicy] = None,
        compressor: Optional[ContextCompressor] = None,
        feedback_collector: Optional[FeedbackCollector] = None,
        environment_probe: EnvironmentProbe = local_environment_probe,
        monitor: Optional[PerformanceMonitor] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config or ContextEngineConfig()
        self._policy = (policy or StaticPolicy()).model_copy(deep=True)
        self._now = now

        self.events = EventBus(source=SOURCE)
        self.monitor = monitor or PerformanceMonitor(self.config.monitoring, now=now)
        self.cache = ContextCache(self.config.cache, now=now)
        self.memory = TieredMemorySystem(self.config.memory)
        self.emotion_analyzer = EmotionAnalyzer(self.config.emotion, monitor=self.monitor, now=now)
        self.validator = ContextValidator(self.config.validation, monitor=self.monitor, now=now)
        self.ranker = ContextRanker()
        self.retriever = ContextRetriever(self.memory, self.ranker, self._policy, self.config, environment_probe)
        self.state = StateManager(now)

        self.compressor = compressor or RecentWindowCompressor(self._policy.guidelines.max_context_window)
        self.feedback_collector = feedback_collector or InMemoryFeedbackCollector()

        self._initialized = False
        # Bound once so the same object can be unsubscribed later
        self._forward_listener = self._forward
        self._connect_forwarding()

    @property
    def policy(self) -> StaticPolicy:
        """Copy of the policy; the manager's own instance is never handed out"""
        return self._policy.model_copy(deep=True)

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # Lifecycle

    async def initialize(self) -> None:
        """Start the background sweeps"""

        if self.state.is_shut_down:
            raise ContextManagerShutdownError("Context manager has been shut down and cannot be re-initialized")
        if self._initialized:
            return

        await self.cache.start()
        await self.emotion_analyzer.start()
        bind_session(self.session_id)
        self._initialized = True

        context_logger.log_component_lifecycle(SOURCE, "initialized", session_id=self.session_id)

    async def shutdown(self) -> None:
        """Stop sweeps, drop cached data and every listener"""

        if self.state.is_shut_down:
            return

        await self.cache.stop()
        await self.emotion_analyzer.stop()
        self._disconnect_forwarding()
        await self.cache.destroy()
        self.emotion_analyzer.clear_cache()
        self.compressor.clear_cache()
        self.events.clear()

        self.state.shutdown()
        self._initialized = False
        unbind_session()

        context_logger.log_component_lifecycle(SOURCE, "shutdown", session_id=self.session_id)

    async def health_check(self) -> Dict[str, Any]:
        """Service status plus per-component statistics"""

        if self.state.is_shut_down:
            status = "unhealthy"
        elif not self._initialized:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "session_id": self.session_id,
            "initialized": self._initialized,
            "timestamp": self._now().isoformat(),
            "components": {
                "cache": self.cache.get_stats(),
                "memory": self.memory.get_memory_stats(),
                "emotion_analyzer": self.emotion_analyzer.get_cache_stats(),
                "validator": self.validator.get_validation_stats().model_dump(mode="json"),
            },
        }

    # Context construction

    async def process_message(self, message: ChatMessage) -> Context:
        """Build the context for a new message and record it in memory"""

        if self.state.is_shut_down:
            return self._handle_failure(
                "process_message",
                ContextManagerShutdownError("Context manager is shut down"),
                query=message.content,
            )

        tracker = self.monitor.start_operation(SERVICE_NAME, "process_message", len(message.content))
        try:
            context = self._build_turn_context(message)
        except Exception as e:
            tracker.finish(error=e)
            return self._handle_failure("process_message", e, query=message.content)

        tracker.finish(output_size=measure_output(context))
        return context.model_copy(deep=True)

    async def get_context_for_response(self, query: str) -> Context:
        """Current context for answering `query`, served from cache when fresh"""

        if self.state.is_shut_down:
            return self._handle_failure(
                "get_context_for_response",
                ContextManagerShutdownError("Context manager is shut down"),
                query=query,
            )

        cache_key = CacheKeyGenerator.for_session(self.session_id)
        tracker = self.monitor.start_operation(SERVICE_NAME, "get_context_for_response", len(query))
        try:
            # Check cache first
            cached = self.cache.get(cache_key)
            if isinstance(cached, Context):
                tracker.finish(output_size=measure_output(cached), cache_hit=True)
                return cached.model_copy(deep=True)

            context = self._step("memory_retrieval", lambda: self._build_context_from_memory(query))
            self._step("cache_store", lambda: self.cache.set(cache_key, context))
        except Exception as e:
            tracker.finish(error=e)
            return self._handle_failure("get_context_for_response", e, query=query)

        tracker.finish(output_size=measure_output(context), cache_hit=False)
        return context.model_copy(deep=True)

    # Analysis and profile

    def analyze_context(self, context: Optional[Context] = None) -> ContextAnalysis:
        """Relevance, tone, topics, intent and reply recommendations"""

        target = context if context is not None else self._current_context()
        analysis = self.ranker.analyze_context(target)

        self.events.emit(EventType.CONTEXT_UPDATED, {
            "session_id": self.session_id,
            "type": "analysis",
            "relevance_score": analysis.relevance_score,
        })
        return analysis

    def update_user_profile(self, updates: Dict[str, Any]) -> UserProfile:
        """Merge profile fields into long-term memory"""

        profile = self.memory.long_term.update_user_profile(updates)
        self._invalidate_session_snapshot("user_profile_updated")

        self.events.emit(EventType.MEMORY_UPDATED, {
            "session_id": self.session_id,
            "type": "user_profile",
            "fields": sorted(updates.keys()),
        })
        return profile

    def get_current_session_context(self) -> SessionContext:
        return self.retriever.build_session_context(
            self.state.state,
            message_count=len(self.memory.short_term.get_recent_messages()),
        )

    def get_context_stats(self) -> Dict[str, Any]:
        return {
            "session": self.state.get_current_state(),
            "session_duration_seconds": self.state.session_duration_seconds(),
            "cache": self.cache.get_stats(),
            "memory": self.memory.get_memory_stats(),
            "emotion_cache": self.emotion_analyzer.get_cache_stats(),
            "validation": self.validator.get_validation_stats().model_dump(mode="json"),
            "performance": {
                service: self.monitor.get_service_stats(service).model_dump(mode="json")
                for service in self.monitor.services()
            },
            "listeners": self.events.listener_count(),
        }

    # Collaborators

    def compress_context(self, context: Optional[Context] = None) -> Context:
        """New context holding only the messages the compressor retained"""

        source = context if context is not None else self._current_context()
        result = self.compressor.compress(list(source.immediate.recent_messages), source)

        compressed = source.model_copy(deep=True)
        compressed.immediate.recent_messages = list(result.retained_messages)
        compressed.session.message_count = len(result.retained_messages)
        compressed.metadata["compression"] = {
            "original_size": result.original_size,
            "compressed_size": result.compressed_size,
            "compression_ratio": result.compression_ratio,
            "summary": result.summary,
            "topics_retained": result.topics_retained,
            "emotional_tone": result.emotional_tone,
            "method": result.method,
        }

        self.events.emit(EventType.CONTEXT_UPDATED, {
            "session_id": self.session_id,
            "type": "compression",
            "compression_ratio": result.compression_ratio,
            "retained": len(result.retained_messages),
        })
        return compressed

    def get_conversation_summary(self, limit: int = SUMMARY_WINDOW) -> ConversationSummary:
        return self.compressor.summarize(self.memory.short_term.get_recent_messages(limit))

    def collect_feedback(
        self,
        user_id: str,
        rating: int,
        category: str,
        text: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FeedbackRecord:
        record = self.feedback_collector.collect(
            rating,
            category,
            text,
            {**(metadata or {}), "user_id": user_id, "session_id": self.session_id},
        )

        self.events.emit(EventType.CONTEXT_UPDATED, {
            "session_id": self.session_id,
            "type": "feedback_collected",
            "feedback_id": record.id,
            "rating": record.rating,
            "category": record.category,
        })
        return record

    def get_feedback_analytics(self) -> Dict[str, Any]:
        return self.feedback_collector.analytics()

    # Session and personality

    def clear_session(self, preserve_long_term: bool = True) -> str:
        """Wipe session data and start a new session; returns the new session id"""

        previous = self.session_id
        self.memory.clear_memories(preserve_long_term=preserve_long_term)
        self.cache.clear()
        self.emotion_analyzer.clear_cache()
        self.compressor.clear_cache()

        self.state.start_new_session()
        if self._initialized:
            bind_session(self.session_id)

        context_logger.log_component_lifecycle(
            SOURCE,
            "session_cleared",
            session_id=self.session_id,
            previous_session_id=previous,
            preserve_long_term=preserve_long_term,
        )
        self.events.emit(EventType.CONTEXT_EXPIRED, {
            "session_id": previous,
            "new_session_id": self.session_id,
            "reason": "session_cleared",
            "preserve_long_term": preserve_long_term,
        })
        return self.session_id

    def adjust_personality(self, trait_overrides: Dict[str, Any]) -> PersonalityTraits:
        """Overlay trait values on the static personality; numeric traits are clamped to 0-1"""

        applied: Dict[str, Any] = {}
        for trait, value in trait_overrides.items():
            if trait not in PersonalityTraits.model_fields:
                logger.warning("Unknown personality trait ignored", trait=trait)
                continue

            if trait in _TEXT_TRAITS:
                if not isinstance(value, str):
                    logger.warning("Personality trait requires text", trait=trait, value=value)
                    continue
                applied[trait] = value
                continue

            if isinstance(value, bool) or not isinstance(value, (int, float)):
                logger.warning("Personality trait requires a number", trait=trait, value=value)
                continue
            applied[trait] = min(1.0, max(0.0, float(value)))

        self.retriever.personality_overrides.update(applied)
        self._invalidate_session_snapshot("personality_adjusted")

        traits = self.retriever.build_system_context().avatar_personality.traits
        self.events.emit(EventType.PERSONALITY_ADJUSTED, {
            "session_id": self.session_id,
            "adjustments": applied,
            "traits": traits.model_dump(),
        })
        return traits

    # Validation

    def validate_context(self, context: Optional[Context] = None) -> ValidationResult:
        return self.validator.validate_context(context if context is not None else self._current_context())

    def perform_health_check(self, context: Optional[Context] = None) -> HealthCheck:
        return self.validator.perform_health_check(context if context is not None else self._current_context())

    # Events

    def subscribe(self, event_type: EventType, listener: Callable[[ContextEvent], None]) -> None:
        self.events.subscribe(event_type, listener)

    def unsubscribe(self, event_type: EventType, listener: Callable[[ContextEvent], None]) -> bool:
        return self.events.unsubscribe(event_type, listener)

    # Internals

    def _build_turn_context(self, message: ChatMessage) -> Context:
        session_id = self.session_id
        previous = self.memory.working.current_context

        analysis = self._step(
            "emotion_analysis",
            lambda: self.emotion_analyzer.analyze_emotional_state(message.content, previous),
        )

        capacity = self.memory.short_term.capacity
        messages = (self.memory.short_term.get_recent_messages() + [message])[-capacity:]
        turn = self.state.record_turn()

        context = self._step("context_assembly", lambda: self.retriever.build_context(
            self.state.state,
            messages,
            analysis,
            timestamp=self._now(),
            session_duration_seconds=self.state.session_duration_seconds(),
        ))
        memory_types = self._step("memory_update", lambda: self.memory.process_message(message, context))

        cache_key = CacheKeyGenerator.for_conversation_context(session_id, turn)
        self._step("cache_store", lambda: self.cache.set(cache_key, context))
        self._invalidate_session_snapshot("message_processed")

        context_logger.log_context_update(session_id, "conversation", "created", {
            "message_id": message.id,
            "turn": turn,
            "emotion": analysis.primary,
            "memory_types": memory_types,
        })
        self.events.emit(EventType.CONTEXT_CREATED, {
            "session_id": session_id,
            "message_id": message.id,
            "context_type": "conversation",
            "turn": turn,
            "cache_key": cache_key,
        })
        return context

    def _build_context_from_memory(self, query: str) -> Context:
        relevant = self.memory.get_relevant_memories(query, limit=self.memory.short_term.capacity)
        messages = relevant.recent_messages
        text = messages[-1].content if messages else query

        analysis = self.emotion_analyzer.analyze_emotional_state(text, self.memory.working.current_context)
        context = self.retriever.build_context(
            self.state.state,
            messages,
            analysis,
            timestamp=self._now(),
            session_duration_seconds=self.state.session_duration_seconds(),
        )
        context.metadata["retrieval"] = {
            "query": query,
            "relevance_score": relevant.relevance_score,
            "significant_interactions": len(relevant.significant_interactions),
            "learned_preferences": len(relevant.learned_preferences),
            "message_relevance": self.ranker.rank_messages(query, messages),
        }
        return context

    def _current_context(self) -> Context:
        current = self.memory.working.current_context
        if current is not None:
            return current
        return self.retriever.build_fallback_context(
            self.state.state,
            query="",
            timestamp=self._now(),
            session_duration_seconds=self.state.session_duration_seconds(),
        )

    def _step(self, step: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except Exception as e:
            raise OperationalFailure(step, e) from e

    def _handle_failure(self, operation: str, error: Exception, query: str = "") -> Context:
        cause = error.cause if isinstance(error, OperationalFailure) else error
        step = error.step if isinstance(error, OperationalFailure) else operation

        context_logger.log_operation_failure(operation, self.session_id, error)
        self.events.emit(EventType.ERROR_OCCURRED, {
            "session_id": self.session_id,
            "operation": operation,
            "step": step,
            "error": str(cause),
            "error_type": type(cause).__name__,
        })

        return self.retriever.build_fallback_context(
            self.state.state,
            query=query,
            timestamp=self._now(),
            session_duration_seconds=self.state.session_duration_seconds(),
        )

    def _invalidate_session_snapshot(self, reason: str) -> None:
        self.cache.delete(CacheKeyGenerator.for_session(self.session_id), reason=reason)

    def _forward(self, event: ContextEvent) -> None:
        self.events.publish(event.forwarded(SOURCE))

    def _connect_forwarding(self) -> None:
        for event_type in EventType:
            self.cache.events.subscribe(event_type, self._forward_listener)
            self.memory.events.subscribe(event_type, self._forward_listener)

    def _disconnect_forwarding(self) -> None:
        for event_type in EventType:
            self.cache.events.unsubscribe(event_type, self._forward_listener)
            self.memory.events.unsubscribe(event_type, self._forward_listener)


def create_context_manager(
    config: Optional[ContextEngineConfig] = None,
    policy: Optional[StaticPolicy] = None,
    configure_logging: bool = False,
    **kwargs: Any,
) -> ContextManager:
    """Manager configured from CONTEXT_ENGINE_* environment variables unless a config is given"""
    config = config or ContextEngineConfig.from_env()
    if configure_logging:
        setup_logging_from_config(config.logging)
    return ContextManager(config=config, policy=policy, **kwargs)
