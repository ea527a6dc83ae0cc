from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from context_engine.domain.models.context_state import utc_now


class Severity(str, Enum):
    """Severity of a validation failure"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ValidationErrorType(str, Enum):
    MISSING_REQUIRED = "missing_required"
    INVALID_TYPE = "invalid_type"
    OUT_OF_RANGE = "out_of_range"
    INVALID_FORMAT = "invalid_format"
    INCONSISTENT_DATA = "inconsistent_data"
    CIRCULAR_REFERENCE = "circular_reference"
    SIZE_LIMIT_EXCEEDED = "size_limit_exceeded"
    INVALID_RELATIONSHIP = "invalid_relationship"
    TYPE_ERROR = "type_error"
    RANGE_ERROR = "range_error"
    CONSISTENCY_ERROR = "consistency_error"
    CUSTOM_ERROR = "custom_error"


class ValidationWarningType(str, Enum):
    SUBOPTIMAL_VALUE = "suboptimal_value"
    DEPRECATED_FIELD = "deprecated_field"
    PERFORMANCE_CONCERN = "performance_concern"
    BEST_PRACTICE_VIOLATION = "best_practice_violation"
    POTENTIAL_ISSUE = "potential_issue"


class ValidationFailure(BaseModel):
    """A finding that lowers the score; critical and high ones invalidate the context"""
    id: str
    field: str
    type: ValidationErrorType
    message: str
    severity: Severity
    expected_value: Optional[Any] = None
    actual_value: Optional[Any] = None
    suggestion: Optional[str] = None


class ValidationWarning(BaseModel):
    """A finding that lowers the score but never invalidates outside strict mode"""
    id: str
    field: str
    type: ValidationWarningType
    message: str
    impact: str = Field(description="performance, quality or usability")
    suggestion: str


class ValidationSummary(BaseModel):
    total_checks: int = 0
    passed_checks: int = 0
    failed_checks: int = 0
    warnings_count: int = 0
    critical_errors: int = 0
    validation_time: float = Field(default=0.0, description="Milliseconds")
    coverage: float = Field(default=1.0, description="Share of non-null fields, 0-1")


class ValidationRecommendation(BaseModel):
    id: str
    priority: str
    category: str = Field(description="data_quality, performance, consistency or completeness")
    action: str
    description: str
    impact: str
    effort: str = "medium"


class ValidationResult(BaseModel):
    """Read-only report on one context"""
    is_valid: bool
    errors: List[ValidationFailure] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    score: float = 0.0
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    recommendations: List[ValidationRecommendation] = Field(default_factory=list)
    rules_applied: List[str] = Field(default_factory=list)


class RuleOutcome(BaseModel):
    """What a custom rule reports; an empty outcome counts as passed"""
    errors: List[ValidationFailure] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)


class HealthIssue(BaseModel):
    type: str = Field(description="data_quality, performance, consistency or security")
    severity: str = Field(description="info, warning, error or critical")
    description: str
    affected_components: List[str] = Field(default_factory=list)
    resolution: str


class HealthRecommendation(BaseModel):
    issue: str
    recommendation: str
    priority: str


class HealthPerformance(BaseModel):
    context_size: int = 0
    processing_time: float = 0.0
    validation_overhead: float = 0.0


class HealthCheck(BaseModel):
    """Health report derived from a validation run"""
    timestamp: datetime = Field(default_factory=utc_now)
    context_id: str = "unknown"
    health_score: float
    issues: List[HealthIssue] = Field(default_factory=list)
    performance: HealthPerformance = Field(default_factory=HealthPerformance)
    recommendations: List[HealthRecommendation] = Field(default_factory=list)
    overall: str = Field(description="healthy, warning or critical")
    categories: Dict[str, int] = Field(default_factory=dict)


class ErrorTypeCount(BaseModel):
    type: str
    count: int


class ValidationStats(BaseModel):
    total_validations: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    average_score: float = 0.0
    average_validation_time: float = 0.0
    error_rate: float = 0.0
    most_common_errors: List[ErrorTypeCount] = Field(default_factory=list)
    common_issues: List[ErrorTypeCount] = Field(default_factory=list)
    performance_trend: str = "stable"
