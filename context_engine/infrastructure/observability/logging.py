import structlog
import logging
import sys
from typing import Dict, Any, List, Optional, TextIO
from datetime import datetime, timezone
import os

from context_engine.domain.models.config import LoggingConfig


def build_processors(log_format: str = "json") -> List[Any]:
    """Processor chain shared by every engine logger; the renderer goes last"""

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        add_session_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "context-engine",
    stream: Optional[TextIO] = None
) -> None:
    """Configure stdlib logging and structlog for the engine"""

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    structlog.configure(
        processors=build_processors(log_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def setup_logging_from_config(config: LoggingConfig, stream: Optional[TextIO] = None) -> None:
    setup_logging(config.level, config.format, config.service_name, stream=stream)


def add_session_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp entries with the active session when the caller did not pass one"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    session_id = structlog.contextvars.get_contextvars().get("session_id")
    if session_id and "session_id" not in event_dict:
        event_dict["session_id"] = session_id

    return event_dict


def bind_session(session_id: str) -> None:
    structlog.contextvars.bind_contextvars(session_id=session_id)


def unbind_session() -> None:
    structlog.contextvars.unbind_contextvars("session_id")


class ContextLogger:
    """Typed log events for the context manager"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_context_update(
        self,
        session_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.logger.info(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )

    def log_component_lifecycle(
        self,
        component: str,
        transition: str,
        session_id: Optional[str] = None,
        **kwargs
    ):
        """Start, stop and clear transitions of engine components"""

        self.logger.info(
            "component_lifecycle",
            component=component,
            transition=transition,
            session_id=session_id,
            **kwargs
        )

    def log_operation_failure(
        self,
        operation: str,
        session_id: Optional[str],
        error: Exception,
        fallback_used: bool = True
    ):
        self.logger.error(
            "operation_failure",
            operation=operation,
            session_id=session_id,
            error=str(error),
            error_type=type(error).__name__,
            fallback_used=fallback_used
        )


context_logger = ContextLogger("context_engine")
