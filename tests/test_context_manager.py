"""
Tests for the context manager orchestrator.

The manager is built with the fake clock and a fixed environment probe so
every context it produces is deterministic.
"""

import pytest

from context_engine import create_context_manager
from context_engine.domain.context import ContextManager
from context_engine.domain.errors import ContextManagerShutdownError
from context_engine.domain.events import EventType
from context_engine.domain.models.config import ContextEngineConfig, MemoryConfig
from context_engine.domain.models.context_state import (
    ConversationPhase,
    EmotionState,
    EnvironmentData,
    StaticPolicy,
)


def fixed_environment():
    return EnvironmentData(time_of_day="afternoon", user_timezone="UTC")


@pytest.fixture
def manager(clock):
    return ContextManager(policy=StaticPolicy(), environment_probe=fixed_environment, now=clock)


@pytest.fixture
def events(manager):
    received = []
    for event_type in EventType:
        manager.subscribe(event_type, received.append)
    return received


def _of_type(events, event_type):
    return [e for e in events if e.type == event_type]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_and_shutdown(self, manager):
        await manager.initialize()
        assert manager.is_initialized
        assert manager.cache._sweep_task is not None

        status = await manager.health_check()
        assert status["status"] == "healthy"

        await manager.shutdown()
        assert manager.cache._sweep_task is None
        assert (await manager.health_check())["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent_and_final(self, manager, make_message):
        await manager.initialize()
        await manager.shutdown()
        await manager.shutdown()

        with pytest.raises(ContextManagerShutdownError):
            await manager.initialize()

        context = await manager.process_message(make_message("hello"))
        assert context.metadata["fallback"] is True

    @pytest.mark.asyncio
    async def test_health_check_before_initialize(self, manager):
        status = await manager.health_check()
        assert status["status"] == "degraded"
        assert set(status["components"]) == {"cache", "memory", "emotion_analyzer", "validator"}


class TestProcessMessage:

    @pytest.mark.asyncio
    async def test_builds_consistent_context(self, manager, make_message):
        message = make_message("I am so happy to learn astronomy today")
        context = await manager.process_message(message)

        assert context.session.session_id == manager.session_id
        assert [m.id for m in context.immediate.recent_messages] == [message.id]
        assert context.session.message_count == len(context.immediate.recent_messages)
        assert context.immediate.current_user_emotion == EmotionState.HAPPY
        assert context.immediate.conversation_flow.current_phase == ConversationPhase.EXPLORATION
        assert "astronomy" in context.immediate.active_topics
        assert context.immediate.environment_data.time_of_day == "afternoon"
        assert context.immediate.environment_data.active_features == ["chat", "voice", "3d_avatar"]
        assert manager.validate_context(context).is_valid

    @pytest.mark.asyncio
    async def test_caches_by_turn_and_emits_created(self, manager, events, make_message):
        message = make_message("hello")
        await manager.process_message(message)

        assert manager.cache.has(f"conversation:{manager.session_id}:1")
        created = _of_type(events, EventType.CONTEXT_CREATED)
        assert created[0].payload["message_id"] == message.id
        assert created[0].payload["turn"] == 1
        assert created[0].source == "ContextManager"

    @pytest.mark.asyncio
    async def test_returned_context_is_detached(self, manager, make_message):
        context = await manager.process_message(make_message("I am happy about telescopes"))
        context.immediate.recent_messages.clear()
        context.session.user_profile.user_id = "someone_else"

        cached = manager.cache.get(f"conversation:{manager.session_id}:1")
        assert len(cached.immediate.recent_messages) == 1
        assert cached.session.user_profile.user_id != "someone_else"
        assert manager.validate_context(cached).is_valid
        assert len(manager.memory.working.current_context.immediate.recent_messages) == 1

    @pytest.mark.asyncio
    async def test_recent_window_follows_short_term_capacity(self, clock, make_message):
        config = ContextEngineConfig(memory=MemoryConfig(short_term_capacity=3))
        manager = ContextManager(config=config, environment_probe=fixed_environment, now=clock)

        for n in range(5):
            context = await manager.process_message(make_message(f"message number {n}", message_id=f"m{n}"))

        assert [m.id for m in context.immediate.recent_messages] == ["m2", "m3", "m4"]
        assert context.session.message_count == 3

    @pytest.mark.asyncio
    async def test_emotion_trend_uses_previous_turn(self, manager, make_message):
        await manager.process_message(make_message("I feel sad and down"))
        context = await manager.process_message(make_message("Now I am happy"))
        assert context.immediate.emotion_analysis.trend.value == "improving"

    @pytest.mark.asyncio
    async def test_failure_returns_fallback_and_reports(self, clock, make_message):
        def broken_probe():
            raise RuntimeError("no clock")

        manager = ContextManager(environment_probe=broken_probe, now=clock)
        errors = []
        manager.subscribe(EventType.ERROR_OCCURRED, errors.append)

        context = await manager.process_message(make_message("what is a comet"))

        assert context.metadata["fallback"] is True
        assert context.session.message_count == 0
        assert context.immediate.active_topics == ["what is a comet"]
        assert errors[0].payload["step"] == "context_assembly"
        assert errors[0].payload["error_type"] == "RuntimeError"
        assert manager.monitor.metrics[-1].error_occurred is True


class TestContextForResponse:

    @pytest.mark.asyncio
    async def test_cache_first(self, manager, make_message):
        await manager.process_message(make_message("tell me about comets"))

        first = await manager.get_context_for_response("comets")
        assert manager.cache.has(f"session:{manager.session_id}")
        assert first.metadata["retrieval"]["query"] == "comets"
        assert first.metadata["retrieval"]["message_relevance"] == {
            first.immediate.recent_messages[0].id: 1.0,
        }

        second = await manager.get_context_for_response("comets")
        assert second == first
        assert manager.cache.get_stats()["hits"] >= 1

    @pytest.mark.asyncio
    async def test_new_message_invalidates_snapshot(self, manager, make_message):
        await manager.process_message(make_message("first"))
        await manager.get_context_for_response("first")
        await manager.process_message(make_message("second"))

        assert not manager.cache.has(f"session:{manager.session_id}")
        context = await manager.get_context_for_response("second")
        assert len(context.immediate.recent_messages) == 2

    @pytest.mark.asyncio
    async def test_cache_events_are_forwarded(self, manager, events, make_message):
        await manager.process_message(make_message("hello"))
        cached = _of_type(events, EventType.CONTEXT_CACHED)
        assert cached
        assert all(e.source == "ContextManager" for e in cached)


class TestSession:

    @pytest.mark.asyncio
    async def test_clear_session_preserving_long_term(self, manager, events, make_message):
        await manager.process_message(make_message("Please remember this, it is important"))
        old_session = manager.session_id
        stored = len(manager.memory.long_term.interactions)
        assert stored == 1

        new_session = manager.clear_session(preserve_long_term=True)

        assert new_session != old_session
        assert manager.memory.short_term.get_recent_messages() == []
        assert manager.memory.working.current_context is None
        assert len(manager.memory.long_term.interactions) == stored
        expired = _of_type(events, EventType.CONTEXT_EXPIRED)
        assert expired[-1].payload["reason"] == "session_cleared"
        assert expired[-1].payload["session_id"] == old_session

    @pytest.mark.asyncio
    async def test_clear_session_dropping_long_term(self, manager, make_message):
        await manager.process_message(make_message("Please remember this, it is important"))
        manager.clear_session(preserve_long_term=False)
        assert len(manager.memory.long_term.interactions) == 0

    def test_update_user_profile(self, manager, events):
        profile = manager.update_user_profile({"user_id": "user_42"})

        assert profile.user_id == "user_42"
        assert manager.get_current_session_context().user_profile.user_id == "user_42"
        updated = _of_type(events, EventType.MEMORY_UPDATED)
        assert updated[-1].payload["type"] == "user_profile"

    @pytest.mark.asyncio
    async def test_session_context_themes(self, manager, make_message):
        await manager.process_message(make_message("Remember the important telescope setup"))
        session = manager.get_current_session_context()

        themes = {t.theme: t.frequency for t in session.conversation_themes}
        assert themes["telescope"] == 1
        assert session.message_count == 1


class TestPersonality:

    @pytest.mark.asyncio
    async def test_adjust_personality_clamps_and_applies(self, manager, events, make_message):
        traits = manager.adjust_personality({"empathy": 1.7, "humor": "witty", "charisma": 0.9})

        assert traits.empathy == 1.0
        assert traits.humor == "witty"
        adjusted = _of_type(events, EventType.PERSONALITY_ADJUSTED)
        assert adjusted[0].payload["adjustments"] == {"empathy": 1.0, "humor": "witty"}

        context = await manager.process_message(make_message("hi"))
        assert context.system.avatar_personality.traits.empathy == 1.0
        assert manager.policy.personality.traits.empathy == 0.5

    @pytest.mark.asyncio
    async def test_policy_is_isolated_from_callers(self, clock, make_message):
        policy = StaticPolicy()
        manager = ContextManager(policy=policy, environment_probe=fixed_environment, now=clock)

        policy.personality.traits.empathy = 0.9
        manager.policy.personality.traits.empathy = 0.1
        context = await manager.process_message(make_message("hello"))
        context.system.avatar_personality.traits.empathy = 0.2

        assert manager.policy.personality.traits.empathy == 0.5
        second = await manager.process_message(make_message("hello again"))
        assert second.system.avatar_personality.traits.empathy == 0.5


class TestCollaborators:

    @pytest.mark.asyncio
    async def test_compress_context_returns_new_context(self, manager, events, make_message):
        for n in range(15):
            context = await manager.process_message(make_message(f"message {n} about planets"))

        compressed = manager.compress_context(context)

        assert compressed is not context
        assert len(context.immediate.recent_messages) == 15
        assert len(compressed.immediate.recent_messages) == 10
        assert compressed.session.message_count == 10
        assert compressed.metadata["compression"]["compression_ratio"] < 1
        assert _of_type(events, EventType.CONTEXT_UPDATED)[-1].payload["type"] == "compression"

    @pytest.mark.asyncio
    async def test_conversation_summary(self, manager, make_message):
        await manager.process_message(make_message("galaxies are fascinating"))
        await manager.process_message(make_message("tell me about galaxies", sender="assistant"))

        summary = manager.get_conversation_summary()
        assert summary.message_count == 2
        assert summary.participant_count == 2
        assert "galaxies" in summary.key_topics

    def test_feedback(self, manager, events):
        record = manager.collect_feedback("user_1", 9, "accuracy", "great answers")

        assert record.rating == 5
        assert record.metadata["user_id"] == "user_1"
        analytics = manager.get_feedback_analytics()
        assert analytics["total_feedback"] == 1
        assert analytics["satisfaction_rate"] == 1.0
        assert _of_type(events, EventType.CONTEXT_UPDATED)[-1].payload["type"] == "feedback_collected"


class TestAnalysis:

    @pytest.mark.asyncio
    async def test_analyze_context(self, manager, make_message):
        await manager.process_message(make_message("I'm confused, how do I point the telescope?"))
        analysis = manager.analyze_context()

        assert analysis.user_intent_analysis.primary_intent == "seeking_information"
        assert analysis.response_recommendations[0].type == "clarification"
        assert 0 < analysis.relevance_score <= 1

    @pytest.mark.asyncio
    async def test_health_report_of_current_context(self, manager, make_message):
        await manager.process_message(make_message("planets and moons"))
        health = manager.perform_health_check()
        assert health.context_id == manager.session_id
        assert health.overall in ("healthy", "warning")

    @pytest.mark.asyncio
    async def test_context_stats(self, manager, make_message):
        await manager.process_message(make_message("hello"))
        stats = manager.get_context_stats()

        assert stats["memory"]["short_term"]["message_count"] == 1
        assert stats["cache"]["size"] == 1
        assert "context_manager" in stats["performance"]
        assert stats["validation"]["total_validations"] == 0


class TestEvents:

    def test_unsubscribe(self, manager):
        received = []
        listener = received.append
        manager.subscribe(EventType.CONTEXT_UPDATED, listener)
        assert manager.unsubscribe(EventType.CONTEXT_UPDATED, listener) is True

        manager.collect_feedback("u", 4, "tone")
        assert received == []


def test_create_context_manager_reads_environment(monkeypatch):
    monkeypatch.setenv("CONTEXT_ENGINE_SHORT_TERM_CAPACITY", "4")
    manager = create_context_manager(environment_probe=fixed_environment)
    assert manager.memory.short_term.capacity == 4
