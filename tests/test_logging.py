"""
Tests for the structlog helpers used by the context manager.
"""

import pytest
import structlog

from context_engine.infrastructure.observability.logging import (
    add_session_context,
    bind_session,
    build_processors,
    unbind_session,
)


@pytest.fixture(autouse=True)
def clean_contextvars():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


class TestSessionContext:

    def test_bound_session_is_stamped(self):
        bind_session("session_abc")
        event = add_session_context(None, "info", {"event": "context_update"})

        assert event["session_id"] == "session_abc"
        assert "timestamp" in event

    def test_explicit_session_wins(self):
        bind_session("session_abc")
        event = add_session_context(None, "info", {"event": "x", "session_id": "other"})
        assert event["session_id"] == "other"

    def test_unbind(self):
        bind_session("session_abc")
        unbind_session()
        event = add_session_context(None, "info", {"event": "x"})
        assert "session_id" not in event


class TestProcessors:

    def test_renderer_follows_format(self):
        assert isinstance(build_processors("json")[-1], structlog.processors.JSONRenderer)
        assert isinstance(build_processors("console")[-1], structlog.dev.ConsoleRenderer)
