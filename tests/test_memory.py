"""
Tests for the memory tiers and the tiered memory facade.
"""

import pytest
from pydantic import ValidationError

from context_engine.domain.context.memory import (
    LongTermMemory,
    ShortTermMemory,
    TieredMemorySystem,
    WorkingMemory,
    extract_topics,
)
from context_engine.domain.events import EventType
from context_engine.domain.models.config import MemoryConfig
from context_engine.domain.models.context_state import EmotionState
from context_engine.domain.models.memory_state import (
    ActiveProcess,
    LearnedPreference,
    ProcessStatus,
    SignificantInteraction,
)


def _interaction(interaction_id, impact, topics=None, summary="a talk"):
    return SignificantInteraction(id=interaction_id, summary=summary, impact=impact, topics=topics or [])


class TestShortTermMemory:

    def test_keeps_last_n_in_order(self, make_message):
        memory = ShortTermMemory(capacity=5)
        for n in range(10):
            memory.add_message(make_message(f"message {n}", message_id=f"m{n}"))

        assert [m.id for m in memory.get_recent_messages()] == ["m5", "m6", "m7", "m8", "m9"]

    def test_limit(self, make_message):
        memory = ShortTermMemory(capacity=5)
        for n in range(3):
            memory.add_message(make_message(f"message {n}", message_id=f"m{n}"))

        assert [m.id for m in memory.get_recent_messages(2)] == ["m1", "m2"]
        assert memory.get_recent_messages(0) == []

    def test_add_message_reports_dropped(self, make_message):
        memory = ShortTermMemory(capacity=1)
        memory.add_message(make_message("first", message_id="a"))
        dropped = memory.add_message(make_message("second", message_id="b"))
        assert [m.id for m in dropped] == ["a"]

    def test_stats(self, make_message):
        memory = ShortTermMemory(capacity=5)
        memory.add_message(make_message("hello"))
        stats = memory.get_stats()
        assert stats["message_count"] == 1
        assert stats["capacity"] == 5
        assert stats["oldest_message"] == stats["newest_message"]

    def test_context_snapshots_are_bounded(self, make_context):
        memory = ShortTermMemory(capacity=50)
        snapshots = [make_context() for _ in range(12)]
        for context in snapshots:
            memory.add_context(context)

        recent = memory.get_recent_contexts()
        assert len(recent) == 10
        assert recent[0] is snapshots[2]
        assert memory.get_stats()["context_count"] == 10

        memory.clear()
        assert memory.get_recent_contexts() == []


class TestLongTermMemory:

    def test_overflow_drops_lowest_impact(self):
        memory = LongTermMemory(capacity=2)
        memory.store_significant_interaction(_interaction("old", 0.9))
        memory.store_significant_interaction(_interaction("weak", 0.3))
        memory.store_significant_interaction(_interaction("new", 0.6))

        assert [i.id for i in memory.interactions] == ["old", "new"]

    def test_preference_merge(self):
        memory = LongTermMemory()
        memory.update_preference(LearnedPreference(
            category="style", preference="brief", confidence=0.6, evidence=["short reply"],
        ))
        memory.update_preference(LearnedPreference(
            category="style", preference="brief", confidence=0.8, evidence=["another short reply"],
        ))

        assert len(memory.preferences) == 1
        stored = memory.get_preference("style", "brief")
        assert stored.confidence == pytest.approx(0.7)
        assert len(stored.evidence) == 2

    def test_search_orders_by_impact(self):
        memory = LongTermMemory()
        memory.store_significant_interaction(_interaction("low", 0.2, topics=["python"]))
        memory.store_significant_interaction(_interaction("high", 0.9, summary="Python packaging"))
        memory.store_significant_interaction(_interaction("other", 0.8, topics=["cooking"]))

        results = memory.search_significant_interactions("python")
        assert [i.id for i in results] == ["high", "low"]

    def test_relevant_preferences_by_confidence(self):
        memory = LongTermMemory()
        memory.update_preference(LearnedPreference(category="tone", preference="warm_tone", confidence=0.4))
        memory.update_preference(LearnedPreference(category="tone", preference="calm_tone", confidence=0.9))

        results = memory.get_relevant_preferences("tone")
        assert [p.preference for p in results] == ["calm_tone", "warm_tone"]

    def test_relationship_ignores_unknown_fields(self):
        memory = LongTermMemory()
        progress = memory.update_relationship_progress({"trust_level": 0.8, "bogus": 1})
        assert progress.trust_level == 0.8
        assert not hasattr(progress, "bogus")

    def test_clear(self):
        memory = LongTermMemory()
        memory.store_significant_interaction(_interaction("a", 0.5))
        memory.update_user_profile({"user_id": "u1"})
        memory.clear()
        assert len(memory.interactions) == 0
        assert memory.user_profile is None


class TestWorkingMemory:

    def test_completed_processes_go_first(self):
        memory = WorkingMemory(capacity=2)
        memory.add_process(ActiveProcess(id="p1", status=ProcessStatus.COMPLETED))
        memory.add_process(ActiveProcess(id="p2"))
        evicted = memory.add_process(ActiveProcess(id="p3"))

        assert [p.id for p in evicted] == ["p1"]
        assert memory.get_process("p2") is not None
        assert memory.get_process("p3") is not None

    def test_readding_replaces(self):
        memory = WorkingMemory()
        memory.add_process(ActiveProcess(id="p1", progress=0.1))
        memory.add_process(ActiveProcess(id="p1", progress=0.5))
        assert len(memory.processes) == 1
        assert memory.get_process("p1").progress == 0.5

    def test_update_and_remove_process(self):
        memory = WorkingMemory()
        memory.add_process(ActiveProcess(id="p1"))
        updated = memory.update_process("p1", status=ProcessStatus.COMPLETED, progress=1.0)
        assert updated.status == ProcessStatus.COMPLETED
        assert memory.update_process("missing", progress=1.0) is None
        assert memory.remove_process("p1") is True
        assert memory.remove_process("p1") is False

    def test_update_validates_changes(self):
        memory = WorkingMemory(capacity=2)
        memory.add_process(ActiveProcess(id="p1"))
        memory.add_process(ActiveProcess(id="p2"))

        updated = memory.update_process("p1", status="completed", progress=5)
        assert updated.status == ProcessStatus.COMPLETED
        assert updated.progress == 1.0
        assert [p.id for p in memory.processes.items()] == ["p1", "p2"]

        evicted = memory.add_process(ActiveProcess(id="p3"))
        assert [p.id for p in evicted] == ["p1"]

    def test_update_rejects_unknown_status(self):
        memory = WorkingMemory()
        memory.add_process(ActiveProcess(id="p1"))

        with pytest.raises(ValidationError):
            memory.update_process("p1", status="exploded")
        assert memory.get_process("p1").status == ProcessStatus.RUNNING

    def test_temporary_data(self):
        memory = WorkingMemory()
        memory.set_temporary_data("draft", {"text": "hi"})
        assert memory.get_temporary_data("draft") == {"text": "hi"}
        memory.clear_temporary_data()
        assert memory.get_temporary_data("draft") is None


class TestTieredMemorySystem:

    @pytest.fixture
    def memory(self):
        return TieredMemorySystem(MemoryConfig(short_term_capacity=5))

    def test_significant_message_reaches_long_term(self, memory, make_message, make_context):
        message = make_message("Please remember this, it is important")
        updated = memory.process_message(message, make_context())

        assert "long_term" in updated
        assert len(memory.long_term.interactions) == 1
        interaction = memory.long_term.interactions.items()[0]
        assert interaction.summary.startswith("neutral discussion about please, remember")
        assert interaction.impact == pytest.approx(0.5)

    def test_plain_message_stays_short_term(self, memory, make_message, make_context):
        message = make_message("ok", sender="assistant")
        updated = memory.process_message(message, make_context())

        assert updated == ["short_term", "working"]
        assert len(memory.long_term.interactions) == 0
        assert memory.working.current_context is not None

    def test_user_messages_teach_preferences(self, memory, make_message, make_context):
        memory.process_message(make_message("I'm so happy"), make_context(emotion=EmotionState.HAPPY))

        assert memory.long_term.get_preference("communication_style", "prefers_brief_responses") is not None
        assert memory.long_term.get_preference("emotional_response", "responds_well_to_happy_tone") is not None

    def test_emits_memory_updated(self, memory, make_message, make_context):
        events = []
        memory.events.subscribe(EventType.MEMORY_UPDATED, events.append)
        message = make_message("hello")
        memory.process_message(message, make_context())

        assert events[0].payload["message_id"] == message.id
        assert events[0].source == "MemorySystem"

    def test_relevant_memories(self, memory, make_message, make_context):
        memory.process_message(make_message("Remember my important astronomy homework"), make_context())
        result = memory.get_relevant_memories("astronomy")

        assert result.query == "astronomy"
        assert len(result.significant_interactions) == 1
        assert 0 < result.relevance_score <= 1

    def test_clear_memories(self, memory, make_message, make_context):
        memory.process_message(make_message("Please remember this, it is important"), make_context())

        memory.clear_memories(preserve_long_term=True)
        assert memory.short_term.get_recent_messages() == []
        assert memory.working.current_context is None
        assert len(memory.long_term.interactions) == 1

        memory.clear_memories(preserve_long_term=False)
        assert len(memory.long_term.interactions) == 0


def test_extract_topics():
    assert extract_topics("The quick, brown fox! The quick dog.") == ["quick", "brown"]
