from typing import Dict, Any, Callable, List, Mapping, Optional, Union
from collections import Counter
from datetime import datetime
from pydantic import BaseModel
import time
import structlog

from context_engine.domain.models.config import ValidationConfig
from context_engine.domain.models.context_state import EmotionState, utc_now
from context_engine.infrastructure.observability.performance_monitor import PerformanceMonitor
from .models import (
    ErrorTypeCount,
    HealthCheck,
    RuleOutcome,
    Severity,
    ValidationErrorType,
    ValidationFailure,
    ValidationRecommendation,
    ValidationResult,
    ValidationStats,
    ValidationSummary,
    ValidationWarning,
    ValidationWarningType,
)
from .rules import ValidationRule, create_error, create_warning, default_rules, parse_timestamp
from .health_check import build_health_check

logger = structlog.get_logger(__name__)

SERVICE_NAME = "context_validator"

VALID_EMOTIONS = {state.value for state in EmotionState}
TRAIT_RANGE = "0-1 range"
RECENT_MESSAGE_WARNING_THRESHOLD = 50
TREND_WINDOW = 100

ContextInput = Union[BaseModel, Mapping[str, Any]]


class _Tally:
    """Running count of checks for one validation pass"""

    def __init__(self):
        self.errors: List[ValidationFailure] = []
        self.warnings: List[ValidationWarning] = []
        self.checks = 0
        self.passed = 0

    def ok(self) -> None:
        self.checks += 1
        self.passed += 1

    def fail(self, error: ValidationFailure) -> None:
        self.checks += 1
        self.errors.append(error)

    def warn(self, warning: ValidationWarning) -> None:
        self.warnings.append(warning)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    return type(value).__name__


class ContextValidator:
    """Structural, range and consistency validation of layered contexts.

    Accepts a Context model or a plain mapping with the same snake_case keys.
    Never raises: malformed input produces a critical finding instead.
    """

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        monitor: Optional[PerformanceMonitor] = None,
        now: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.config = config or ValidationConfig()
        self.monitor = monitor
        self._now = now
        self._timer = timer
        self.rules: Dict[str, ValidationRule] = {}
        self.history: List[ValidationResult] = []
        self._totals = {"validations": 0, "valid": 0, "invalid": 0, "score": 0.0, "time": 0.0}
        self._error_counts: Counter = Counter()

        for rule in default_rules(now):
            self.add_validation_rule(rule)

    def validate_context(self, context: ContextInput) -> ValidationResult:
        """Validate a complete context"""

        tracker = self.monitor.start_operation(SERVICE_NAME, "validate_context") if self.monitor else None
        result = self._validate(context)
        if tracker:
            tracker.finish(output_size=len(result.errors) + len(result.warnings))
        return result

    def perform_health_check(self, context: ContextInput) -> HealthCheck:
        """Validate and translate the findings into a health report"""

        data = self._normalize(context)
        validation = self.validate_context(context)
        return build_health_check(data, validation)

    def add_validation_rule(self, rule: ValidationRule) -> None:
        self.rules[rule.id] = rule

    def remove_validation_rule(self, rule_id: str) -> bool:
        return self.rules.pop(rule_id, None) is not None

    def get_validation_stats(self) -> ValidationStats:
        """Aggregate statistics over every recorded validation"""

        total = self._totals["validations"]
        recent = self.history[-TREND_WINDOW:]

        recent_counts: Counter = Counter(error.type.value for result in recent for error in result.errors)

        return ValidationStats(
            total_validations=total,
            valid_count=self._totals["valid"],
            invalid_count=self._totals["invalid"],
            average_score=self._totals["score"] / total if total else 0.0,
            average_validation_time=self._totals["time"] / total if total else 0.0,
            error_rate=self._totals["invalid"] / total if total else 0.0,
            most_common_errors=[ErrorTypeCount(type=t, count=c) for t, c in recent_counts.most_common(10)],
            common_issues=[ErrorTypeCount(type=t, count=c) for t, c in self._error_counts.most_common()],
            performance_trend=self._performance_trend(recent),
        )

    def _validate(self, context: ContextInput) -> ValidationResult:
        start = self._timer()

        data = self._normalize(context)
        if data is None:
            return self._error_result(f"Context must be a mapping, got {_type_name(context)}", start)

        try:
            tally = _Tally()
            rules_applied: List[str] = []

            layers = {
                "system": self._validate_system,
                "session": self._validate_session,
                "immediate": self._validate_immediate,
            }
            for name, validate_layer in layers.items():
                value = data.get(name)
                if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                    tally.fail(create_error(
                        name, ValidationErrorType.TYPE_ERROR, f"{name.capitalize()} context must be an object",
                        Severity.CRITICAL, actual_value=_type_name(value), expected_value="object",
                    ))
                elif not isinstance(value, Mapping):
                    tally.fail(create_error(
                        name, ValidationErrorType.MISSING_REQUIRED, f"{name.capitalize()} context is required",
                        Severity.CRITICAL,
                    ))
                else:
                    tally.ok()
                    validate_layer(value, tally)
                    rules_applied.append(f"{name}_validation")

            self._validate_timestamp(data.get("timestamp"), tally)

            if all(isinstance(data.get(name), Mapping) for name in layers):
                self._validate_consistency(data, tally)
                rules_applied.append("consistency_validation")

            rules_applied.extend(self._run_custom_rules(data, tally))

            validation_time = (self._timer() - start) * 1000
            result = self._build_result(tally, validation_time, self._coverage(data), rules_applied)
        except Exception as e:
            logger.exception("Context validation failed", error=str(e))
            return self._error_result(f"Validation failed: {e}", start)

        self._record(result)
        return result

    def _normalize(self, context: Any) -> Optional[Dict[str, Any]]:
        if isinstance(context, BaseModel):
            return context.model_dump(mode="json")
        if isinstance(context, Mapping):
            return dict(context)
        return None

    def _validate_timestamp(self, value: Any, tally: _Tally) -> None:
        if _is_number(value):
            tally.fail(create_error(
                "timestamp", ValidationErrorType.TYPE_ERROR, "Timestamp must be a datetime or ISO-8601 string",
                Severity.MEDIUM, actual_value=_type_name(value), expected_value="datetime",
            ))
        elif value is None or value == "":
            tally.fail(create_error(
                "timestamp", ValidationErrorType.MISSING_REQUIRED, "Timestamp is required", Severity.MEDIUM,
            ))
        elif parse_timestamp(value) is None:
            tally.fail(create_error(
                "timestamp", ValidationErrorType.INVALID_FORMAT, "Timestamp must be a valid date", Severity.MEDIUM,
                actual_value=value,
            ))
        else:
            tally.ok()

    def _validate_system(self, system: Mapping[str, Any], tally: _Tally) -> None:
        personality = system.get("avatar_personality")
        if not isinstance(personality, Mapping):
            tally.fail(create_error(
                "system.avatar_personality", ValidationErrorType.MISSING_REQUIRED,
                "Avatar personality is required", Severity.CRITICAL,
            ))
        else:
            tally.ok()
            traits = personality.get("traits")
            if isinstance(traits, Mapping):
                for trait, value in traits.items():
                    if not _is_number(value):
                        continue
                    if 0 <= value <= 1:
                        tally.ok()
                    else:
                        tally.fail(create_error(
                            f"system.avatar_personality.traits.{trait}", ValidationErrorType.RANGE_ERROR,
                            f"Trait {trait} must be between 0 and 1", Severity.HIGH,
                            actual_value=value, expected_value=TRAIT_RANGE,
                        ))

        if not isinstance(system.get("conversation_guidelines"), Mapping):
            tally.fail(create_error(
                "system.conversation_guidelines", ValidationErrorType.MISSING_REQUIRED,
                "Conversation guidelines are required", Severity.HIGH,
            ))
        else:
            tally.ok()

        if not isinstance(system.get("technical_capabilities"), Mapping):
            tally.fail(create_error(
                "system.technical_capabilities", ValidationErrorType.MISSING_REQUIRED,
                "Technical capabilities are required", Severity.MEDIUM,
            ))
        else:
            tally.ok()

    def _validate_session(self, session: Mapping[str, Any], tally: _Tally) -> None:
        session_id = session.get("session_id")
        if _is_number(session_id):
            tally.fail(create_error(
                "session.session_id", ValidationErrorType.TYPE_ERROR, "Session ID must be a string",
                Severity.CRITICAL, actual_value=_type_name(session_id), expected_value="str",
            ))
        elif not isinstance(session_id, str) or not session_id.strip():
            tally.fail(create_error(
                "session.session_id", ValidationErrorType.MISSING_REQUIRED, "Session ID is required",
                Severity.CRITICAL,
            ))
        else:
            tally.ok()

        profile = session.get("user_profile")
        if isinstance(profile, str):
            tally.fail(create_error(
                "session.user_profile", ValidationErrorType.TYPE_ERROR, "User profile must be an object",
                Severity.HIGH, actual_value="str", expected_value="object",
            ))
        elif not isinstance(profile, Mapping):
            tally.fail(create_error(
                "session.user_profile", ValidationErrorType.MISSING_REQUIRED, "User profile is required",
                Severity.HIGH,
            ))
        else:
            tally.ok()
            if not profile.get("user_id"):
                tally.fail(create_error(
                    "session.user_profile.user_id", ValidationErrorType.MISSING_REQUIRED, "User ID is required",
                    Severity.CRITICAL,
                ))
            else:
                tally.ok()

        for field, label in (("session_objectives", "Session objectives"), ("conversation_themes", "Conversation themes")):
            value = session.get(field)
            if isinstance(value, str):
                tally.fail(create_error(
                    f"session.{field}", ValidationErrorType.TYPE_ERROR, f"{label} must be an array",
                    Severity.MEDIUM, actual_value="str", expected_value="array",
                ))
            elif not isinstance(value, list):
                tally.fail(create_error(
                    f"session.{field}", ValidationErrorType.MISSING_REQUIRED, f"{label} are required",
                    Severity.MEDIUM,
                ))
            else:
                tally.ok()

        start_time = parse_timestamp(session.get("start_time"))
        if start_time is None:
            tally.fail(create_error(
                "session.start_time", ValidationErrorType.INVALID_FORMAT, "Start time must be a valid date",
                Severity.MEDIUM, actual_value=session.get("start_time"),
            ))
        else:
            tally.ok()
            if start_time > self._now():
                tally.warn(create_warning(
                    "session.start_time", ValidationWarningType.SUBOPTIMAL_VALUE,
                    "Start time is in the future", "quality", "Verify the session start time is correct",
                ))

        message_count = session.get("message_count")
        if not _is_number(message_count):
            tally.fail(create_error(
                "session.message_count", ValidationErrorType.TYPE_ERROR, "Message count must be a number",
                Severity.MEDIUM, actual_value=_type_name(message_count), expected_value="int",
            ))
        elif message_count < 0:
            tally.fail(create_error(
                "session.message_count", ValidationErrorType.RANGE_ERROR, "Message count cannot be negative",
                Severity.MEDIUM, actual_value=message_count, expected_value=">= 0",
            ))
        else:
            tally.ok()

    def _validate_immediate(self, immediate: Mapping[str, Any], tally: _Tally) -> None:
        messages = immediate.get("recent_messages")
        if not isinstance(messages, list):
            tally.fail(create_error(
                "immediate.recent_messages", ValidationErrorType.TYPE_ERROR, "Recent messages must be an array",
                Severity.HIGH, actual_value=_type_name(messages), expected_value="array",
            ))
        else:
            tally.ok()
            for index, message in enumerate(messages):
                if self._is_valid_message(message):
                    tally.ok()
                else:
                    tally.fail(create_error(
                        f"immediate.recent_messages[{index}]", ValidationErrorType.INVALID_FORMAT,
                        "Invalid message format", Severity.MEDIUM,
                        suggestion="Messages need a non-empty id, content, a sender and a timestamp",
                    ))

            if len(messages) > RECENT_MESSAGE_WARNING_THRESHOLD:
                tally.warn(create_warning(
                    "immediate.recent_messages", ValidationWarningType.PERFORMANCE_CONCERN,
                    "Large number of recent messages may impact performance", "performance",
                    "Consider implementing message compression or limiting recent message count",
                ))

        emotion = immediate.get("current_user_emotion")
        if emotion in VALID_EMOTIONS:
            tally.ok()
        else:
            tally.fail(create_error(
                "immediate.current_user_emotion", ValidationErrorType.INVALID_FORMAT, "Invalid emotion state",
                Severity.LOW, actual_value=emotion, expected_value=", ".join(sorted(VALID_EMOTIONS)),
            ))

        flow = immediate.get("conversation_flow")
        if isinstance(flow, str):
            tally.fail(create_error(
                "immediate.conversation_flow", ValidationErrorType.TYPE_ERROR, "Conversation flow must be an object",
                Severity.MEDIUM, actual_value="str", expected_value="object",
            ))
        elif not isinstance(flow, Mapping):
            tally.fail(create_error(
                "immediate.conversation_flow", ValidationErrorType.MISSING_REQUIRED,
                "Conversation flow is required", Severity.MEDIUM,
            ))
        else:
            tally.ok()
            flow_state = flow.get("flow_state")
            if isinstance(flow_state, Mapping):
                for metric in ("momentum", "depth", "engagement", "clarity"):
                    value = flow_state.get(metric)
                    if _is_number(value) and not 0 <= value <= 1:
                        tally.fail(create_error(
                            f"immediate.conversation_flow.flow_state.{metric}", ValidationErrorType.RANGE_ERROR,
                            f"Flow state {metric} must be between 0 and 1", Severity.HIGH,
                            actual_value=value, expected_value=TRAIT_RANGE,
                        ))
                    else:
                        tally.ok()

        if not isinstance(immediate.get("active_topics"), list):
            tally.fail(create_error(
                "immediate.active_topics", ValidationErrorType.TYPE_ERROR, "Active topics must be an array",
                Severity.LOW, actual_value=_type_name(immediate.get("active_topics")), expected_value="array",
            ))
        else:
            tally.ok()

        environment = immediate.get("environment_data")
        if isinstance(environment, str):
            tally.fail(create_error(
                "immediate.environment_data", ValidationErrorType.TYPE_ERROR, "Environment data must be an object",
                Severity.LOW, actual_value="str", expected_value="object",
            ))
        elif not isinstance(environment, Mapping):
            tally.fail(create_error(
                "immediate.environment_data", ValidationErrorType.MISSING_REQUIRED,
                "Environment data is required", Severity.LOW,
            ))
        else:
            tally.ok()

    def _validate_consistency(self, data: Mapping[str, Any], tally: _Tally) -> None:
        session = data["session"]
        immediate = data["immediate"]

        if not data.get("timestamp"):
            tally.fail(create_error(
                "context.timestamp", ValidationErrorType.MISSING_REQUIRED, "Context timestamp is required",
                Severity.HIGH,
            ))
        else:
            tally.ok()
            context_time = parse_timestamp(data.get("timestamp"))
            start_time = parse_timestamp(session.get("start_time"))
            if context_time and start_time and context_time < start_time:
                tally.errors.append(create_error(
                    "context.timestamp", ValidationErrorType.CONSISTENCY_ERROR,
                    "Context timestamp is before session start time", Severity.HIGH,
                    actual_value=data.get("timestamp"), expected_value=f">= {session.get('start_time')}",
                ))

        messages = immediate.get("recent_messages")
        if isinstance(messages, list):
            reported = session.get("message_count")
            if reported != len(messages):
                tally.fail(create_error(
                    "context.message_count", ValidationErrorType.CONSISTENCY_ERROR,
                    f"Message count mismatch: reported {reported}, actual {len(messages)}", Severity.HIGH,
                    actual_value=reported, expected_value=len(messages),
                ))
            else:
                tally.ok()
        else:
            tally.fail(create_error(
                "context.message_count", ValidationErrorType.CONSISTENCY_ERROR,
                "Cannot validate message count consistency: recent_messages is not an array", Severity.HIGH,
            ))

        profile = session.get("user_profile")
        if isinstance(profile, Mapping) and profile.get("user_id"):
            if not profile.get("preferences") or not profile.get("communication_style"):
                tally.warn(create_warning(
                    "session.user_profile", ValidationWarningType.SUBOPTIMAL_VALUE, "User profile is incomplete",
                    "quality", "Complete user profile for better personalization",
                ))
            tally.ok()

    def _run_custom_rules(self, data: Dict[str, Any], tally: _Tally) -> List[str]:
        applied = []
        allowed = self.config.enabled_rule_set

        for rule in list(self.rules.values()):
            if not rule.enabled or (allowed is not None and rule.id not in allowed):
                continue

            applied.append(rule.id)
            try:
                outcome = rule.check(data)
                if isinstance(outcome, Mapping):
                    outcome = RuleOutcome.model_validate(outcome)
                elif outcome is not None and not isinstance(outcome, RuleOutcome):
                    raise TypeError(f"expected RuleOutcome, got {type(outcome).__name__}")
            except Exception as e:
                logger.warning("Validation rule failed", rule_id=rule.id, error=str(e))
                tally.fail(create_error(
                    rule.id, ValidationErrorType.CUSTOM_ERROR, f"Custom rule {rule.name} failed: {e}", Severity.LOW,
                ))
                continue

            if outcome is not None and outcome.errors:
                tally.checks += 1
                tally.errors.extend(outcome.errors)
            else:
                tally.ok()
            if outcome is not None:
                tally.warnings.extend(outcome.warnings)

        return applied

    def _is_valid_message(self, message: Any) -> bool:
        if not isinstance(message, Mapping):
            return False
        return (
            isinstance(message.get("id"), str) and len(message["id"]) > 0
            and isinstance(message.get("content"), str) and len(message["content"]) > 0
            and isinstance(message.get("sender") or message.get("role"), str)
            and parse_timestamp(message.get("timestamp")) is not None
        )

    def _build_result(
        self,
        tally: _Tally,
        validation_time: float,
        coverage: float,
        rules_applied: List[str],
    ) -> ValidationResult:
        blocking = [e for e in tally.errors if e.severity in (Severity.CRITICAL, Severity.HIGH)]
        is_valid = not blocking and not (self.config.strict_mode and tally.warnings)

        return ValidationResult(
            is_valid=is_valid,
            errors=tally.errors,
            warnings=tally.warnings,
            score=self._score(tally),
            summary=ValidationSummary(
                total_checks=tally.checks,
                passed_checks=tally.passed,
                failed_checks=tally.checks - tally.passed,
                warnings_count=len(tally.warnings),
                critical_errors=sum(1 for e in tally.errors if e.severity == Severity.CRITICAL),
                validation_time=validation_time,
                coverage=coverage,
            ),
            recommendations=self._recommendations(tally.errors, tally.warnings),
            rules_applied=rules_applied,
        )

    def _score(self, tally: _Tally) -> float:
        if tally.checks == 0:
            return 0.0

        penalties = {Severity.CRITICAL: 0.3, Severity.HIGH: 0.2, Severity.MEDIUM: 0.1}
        score = tally.passed / tally.checks
        score -= sum(penalties.get(error.severity, 0.0) for error in tally.errors)
        score -= 0.05 * len(tally.warnings)
        return max(0.0, min(1.0, score))

    def _recommendations(
        self,
        errors: List[ValidationFailure],
        warnings: List[ValidationWarning],
    ) -> List[ValidationRecommendation]:
        recommendations = []

        critical = [e for e in errors if e.severity == Severity.CRITICAL]
        if critical:
            recommendations.append(ValidationRecommendation(
                id="fix_critical_errors",
                priority="critical",
                category="data_quality",
                action="Fix critical validation errors",
                description=f"Address {len(critical)} critical errors that prevent system operation",
                impact="System functionality",
                effort="high",
            ))

        performance = [w for w in warnings if w.impact == "performance"]
        if performance:
            recommendations.append(ValidationRecommendation(
                id="optimize_performance",
                priority="medium",
                category="performance",
                action="Optimize performance issues",
                description=f"Address {len(performance)} performance-related warnings",
                impact="System performance",
            ))

        return recommendations

    def _coverage(self, data: Mapping[str, Any]) -> float:
        total = 0
        present = 0
        pending = [data]
        while pending:
            node = pending.pop()
            for value in node.values():
                total += 1
                if value is not None:
                    present += 1
                if isinstance(value, Mapping):
                    pending.append(value)
        return present / total if total else 1.0

    def _error_result(self, message: str, start: float) -> ValidationResult:
        validation_time = (self._timer() - start) * 1000
        result = ValidationResult(
            is_valid=False,
            errors=[create_error("validation", ValidationErrorType.INVALID_FORMAT, message, Severity.CRITICAL)],
            score=0.0,
            summary=ValidationSummary(
                total_checks=1,
                passed_checks=0,
                failed_checks=1,
                critical_errors=1,
                validation_time=validation_time,
                coverage=0.0,
            ),
            recommendations=[ValidationRecommendation(
                id="fix_validation_error",
                priority="critical",
                category="data_quality",
                action="Fix validation error",
                description="Address the validation system error",
                impact="System reliability",
            )],
            rules_applied=["error_handling"],
        )
        self._record(result)
        return result

    def _record(self, result: ValidationResult) -> None:
        self.history.append(result)
        overflow = len(self.history) - self.config.max_history
        if overflow > 0:
            del self.history[:overflow]

        self._totals["validations"] += 1
        self._totals["score"] += result.score
        self._totals["time"] += result.summary.validation_time
        self._totals["valid" if result.is_valid else "invalid"] += 1
        self._error_counts.update(error.type.value for error in result.errors)

        if not result.is_valid:
            logger.debug(
                "Context failed validation",
                errors=len(result.errors),
                critical=result.summary.critical_errors,
                score=round(result.score, 3),
            )

    def _performance_trend(self, results: List[ValidationResult]) -> str:
        half = len(results) // 2
        if half == 0:
            return "stable"

        recent = results[-half:]
        older = results[:half]
        recent_avg = sum(r.summary.validation_time for r in recent) / len(recent)
        older_avg = sum(r.summary.validation_time for r in older) / len(older)
        threshold = older_avg * 0.1

        if recent_avg < older_avg - threshold:
            return "improving"
        if recent_avg > older_avg + threshold:
            return "declining"
        return "stable"
