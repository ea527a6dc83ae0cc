"""
Shared test fixtures for the context engine test suite.

Time-dependent components take an injectable clock, so most fixtures here are
built around a FakeClock that only moves when a test advances it.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from context_engine.domain.models.context_state import (
    ChatMessage,
    Context,
    ConversationFlow,
    ConversationPhase,
    EmotionState,
    EnvironmentData,
    FlowState,
    ImmediateContext,
    SessionContext,
    SystemContext,
    UserProfile,
)


class FakeClock:
    """Callable clock returning a fixed, manually advanced UTC time."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@pytest.fixture
def make_message(clock):
    """Factory for ChatMessage objects stamped with the fake clock."""
    counter = itertools.count()

    def _make(content: str, sender: str = "user", message_id: str = None) -> ChatMessage:
        return ChatMessage(
            id=message_id or f"msg_{next(counter)}",
            content=content,
            sender=sender,
            timestamp=clock(),
        )

    return _make


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------

@pytest.fixture
def make_context(clock):
    """Factory for complete, internally consistent contexts."""

    def _make(messages=None, active_topics=None, emotion=EmotionState.NEUTRAL, session_id="session_test") -> Context:
        messages = list(messages or [])
        return Context(
            system=SystemContext(),
            session=SessionContext(
                session_id=session_id,
                user_profile=UserProfile(user_id="user_1"),
                start_time=clock(),
                message_count=len(messages),
            ),
            immediate=ImmediateContext(
                recent_messages=messages,
                current_user_emotion=emotion,
                conversation_flow=ConversationFlow(
                    current_phase=ConversationPhase.EXPLORATION,
                    flow_state=FlowState(momentum=0.4, depth=0.2, engagement=0.5, clarity=0.9),
                ),
                active_topics=list(active_topics or []),
                environment_data=EnvironmentData(time_of_day="afternoon"),
            ),
            timestamp=clock(),
        )

    return _make


@pytest.fixture
def well_formed_context(make_context, make_message):
    messages = [
        make_message("Hi there, I want to learn about astronomy"),
        make_message("Happy to help with astronomy!", sender="assistant"),
    ]
    return make_context(messages=messages, active_topics=["astronomy"])
