from typing import Dict, Any, Callable, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import json
import uuid

from context_engine.domain.models.context_state import ensure_utc, utc_now
from .models import (
    RuleOutcome,
    Severity,
    ValidationErrorType,
    ValidationFailure,
    ValidationWarning,
    ValidationWarningType,
)

CONTEXT_SIZE_LIMIT = 100_000
MESSAGE_MAX_AGE_SECONDS = 24 * 60 * 60


class ValidationRule(BaseModel):
    """A pluggable check run after the structural validation.

    `check` receives the context as a plain dict and returns a RuleOutcome,
    or None when there is nothing to report.
    """
    id: str
    name: str
    description: str = ""
    category: str = Field(default="required", description="required, type, range, format, consistency or performance")
    check: Callable[[Dict[str, Any]], Optional[RuleOutcome]]
    enabled: bool = True


def create_error(
    field: str,
    type: ValidationErrorType,
    message: str,
    severity: Severity,
    actual_value: Any = None,
    expected_value: Any = None,
    suggestion: Optional[str] = None,
) -> ValidationFailure:
    return ValidationFailure(
        id=f"error_{uuid.uuid4().hex[:12]}",
        field=field,
        type=type,
        message=message,
        severity=severity,
        actual_value=actual_value,
        expected_value=expected_value,
        suggestion=suggestion,
    )


def create_warning(
    field: str,
    type: ValidationWarningType,
    message: str,
    impact: str,
    suggestion: str,
) -> ValidationWarning:
    return ValidationWarning(
        id=f"warning_{uuid.uuid4().hex[:12]}",
        field=field,
        type=type,
        message=message,
        impact=impact,
        suggestion=suggestion,
    )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept datetimes, ISO-8601 strings and epoch seconds; anything else is None"""

    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def context_size(data: Dict[str, Any]) -> int:
    """Serialized length of the context in characters"""
    return len(json.dumps(data, default=str))


def context_size_rule() -> ValidationRule:
    def check(data: Dict[str, Any]) -> Optional[RuleOutcome]:
        size = context_size(data)
        if size <= CONTEXT_SIZE_LIMIT:
            return None
        return RuleOutcome(errors=[create_error(
            "context.size",
            ValidationErrorType.SIZE_LIMIT_EXCEEDED,
            "Context size exceeds recommended limit",
            Severity.MEDIUM,
            actual_value=size,
            expected_value="< 100KB",
            suggestion="Compress the context or trim recent messages",
        )])

    return ValidationRule(
        id="context_size_limit",
        name="Context Size Limit",
        description="Ensures context size is within acceptable limits",
        category="performance",
        check=check,
    )


def message_freshness_rule(now: Callable[[], datetime] = utc_now) -> ValidationRule:
    def check(data: Dict[str, Any]) -> Optional[RuleOutcome]:
        immediate = data.get("immediate")
        messages = immediate.get("recent_messages") if isinstance(immediate, dict) else None
        if not isinstance(messages, list):
            return None

        current = now()
        stale = 0
        for message in messages:
            sent_at = parse_timestamp(message.get("timestamp")) if isinstance(message, dict) else None
            if sent_at is not None and (current - sent_at).total_seconds() > MESSAGE_MAX_AGE_SECONDS:
                stale += 1

        if not stale:
            return None
        return RuleOutcome(warnings=[create_warning(
            "immediate.recent_messages",
            ValidationWarningType.POTENTIAL_ISSUE,
            f"{stale} messages are older than 24 hours",
            "quality",
            "Consider cleaning up old messages from recent context",
        )])

    return ValidationRule(
        id="message_freshness",
        name="Message Freshness",
        description="Ensures recent messages are actually recent",
        category="consistency",
        check=check,
    )


def default_rules(now: Callable[[], datetime] = utc_now) -> List[ValidationRule]:
    return [context_size_rule(), message_freshness_rule(now)]
