from context_engine.domain.context import ContextManager, create_context_manager
from context_engine.domain.events import ContextEvent, EventType
from context_engine.domain.models import ChatMessage, Context, ContextEngineConfig, StaticPolicy
from context_engine.infrastructure.observability.logging import setup_logging

__all__ = [
    "ContextManager",
    "create_context_manager",
    "ContextEvent",
    "EventType",
    "ChatMessage",
    "Context",
    "ContextEngineConfig",
    "StaticPolicy",
    "setup_logging",
]
