from .context_validator import ContextValidator
from .health_check import build_health_check
from .models import (
    HealthCheck,
    HealthIssue,
    RuleOutcome,
    Severity,
    ValidationErrorType,
    ValidationFailure,
    ValidationResult,
    ValidationStats,
    ValidationWarning,
    ValidationWarningType,
)
from .rules import ValidationRule, create_error, create_warning

__all__ = [
    "ContextValidator",
    "build_health_check",
    "HealthCheck",
    "HealthIssue",
    "RuleOutcome",
    "Severity",
    "ValidationErrorType",
    "ValidationFailure",
    "ValidationResult",
    "ValidationStats",
    "ValidationWarning",
    "ValidationWarningType",
    "ValidationRule",
    "create_error",
    "create_warning",
]
