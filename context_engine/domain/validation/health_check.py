from typing import Dict, Any, List, Mapping, Optional

from .models import (
    HealthCheck,
    HealthIssue,
    HealthPerformance,
    HealthRecommendation,
    ValidationResult,
)
from .rules import context_size

ERROR_HEALTH_TYPES = {
    "missing_required": "data_quality",
    "invalid_type": "data_quality",
    "invalid_format": "data_quality",
    "size_limit_exceeded": "performance",
    "inconsistent_data": "consistency",
    "consistency_error": "consistency",
    "circular_reference": "security",
}

WARNING_HEALTH_TYPES = {
    "suboptimal_value": "data_quality",
    "deprecated_field": "data_quality",
    "performance_concern": "performance",
    "best_practice_violation": "consistency",
    "potential_issue": "security",
}

SEVERITY_TO_HEALTH = {
    "low": "info",
    "medium": "warning",
    "high": "error",
    "critical": "critical",
}

RECOMMENDATION_PRIORITY = {"critical": 5, "high": 4, "medium": 3, "warning": 2, "low": 1}

DEFAULT_RESOLUTION = "Review and fix the identified issue"


def build_health_check(data: Optional[Mapping[str, Any]], validation: ValidationResult) -> HealthCheck:
    """Translate validation findings into health issues and an overall status"""

    issues: List[HealthIssue] = []
    recommendations: List[HealthRecommendation] = []

    for error in validation.errors:
        health_type = ERROR_HEALTH_TYPES.get(error.type.value, "data_quality")
        resolution = error.suggestion or DEFAULT_RESOLUTION
        issues.append(HealthIssue(
            type=health_type,
            severity=SEVERITY_TO_HEALTH.get(error.severity.value, "warning"),
            description=error.message,
            affected_components=[error.field],
            resolution=resolution,
        ))
        recommendations.append(HealthRecommendation(
            issue=error.message, recommendation=resolution, priority=error.severity.value,
        ))

    for warning in validation.warnings:
        health_type = WARNING_HEALTH_TYPES.get(warning.type.value, "data_quality")
        issues.append(HealthIssue(
            type=health_type,
            severity="warning",
            description=warning.message,
            affected_components=[warning.field],
            resolution=warning.suggestion,
        ))
        recommendations.append(HealthRecommendation(
            issue=warning.message, recommendation=warning.suggestion, priority="warning",
        ))

    immediate = data.get("immediate") if data else None
    if isinstance(immediate, Mapping):
        _add_soft_issues(immediate, issues, recommendations)

    categories = {
        level: sum(1 for issue in issues if issue.severity == level)
        for level in ("critical", "error", "warning", "info")
    }

    # Error-level issues are reported as warnings overall
    if categories["critical"]:
        overall = "critical"
    elif categories["error"] or categories["warning"]:
        overall = "warning"
    else:
        overall = "healthy"

    session = data.get("session") if data else None
    context_id = session.get("session_id") if isinstance(session, Mapping) else None

    return HealthCheck(
        context_id=context_id if isinstance(context_id, str) and context_id else "unknown",
        health_score=validation.score,
        issues=issues,
        performance=HealthPerformance(
            context_size=context_size(dict(data)) if data else 0,
            processing_time=validation.summary.validation_time,
            validation_overhead=validation.summary.validation_time,
        ),
        recommendations=sorted(
            recommendations,
            key=lambda r: RECOMMENDATION_PRIORITY.get(r.priority, 0),
            reverse=True,
        ),
        overall=overall,
        categories=categories,
    )


def _add_soft_issues(
    immediate: Mapping[str, Any],
    issues: List[HealthIssue],
    recommendations: List[HealthRecommendation],
) -> None:
    soft: Dict[str, Dict[str, str]] = {
        "recent_messages": {
            "description": "No recent messages available",
            "resolution": "Add recent messages to improve context quality",
        },
        "active_topics": {
            "description": "No active topics available",
            "resolution": "Add active topics to improve context relevance",
        },
    }

    for field, text in soft.items():
        value = immediate.get(field)
        if isinstance(value, list) and not value:
            issues.append(HealthIssue(
                type="data_quality",
                severity="warning",
                description=text["description"],
                affected_components=[f"immediate.{field}"],
                resolution=text["resolution"],
            ))
            recommendations.append(HealthRecommendation(
                issue=text["description"], recommendation=text["resolution"], priority="medium",
            ))
