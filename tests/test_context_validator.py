"""
Tests for context validation: structure, ranges, consistency and custom rules.
"""

import pytest

from context_engine.domain.models.config import ValidationConfig
from context_engine.domain.validation import (
    ContextValidator,
    RuleOutcome,
    Severity,
    ValidationErrorType,
    ValidationRule,
    create_error,
)


@pytest.fixture
def validator(clock):
    return ContextValidator(now=clock, timer=lambda: 0.0)


class TestStructure:

    def test_well_formed_context_is_valid(self, validator, well_formed_context):
        result = validator.validate_context(well_formed_context)

        assert result.is_valid
        assert result.score > 0.8
        assert result.errors == []
        assert "consistency_validation" in result.rules_applied

    def test_plain_mapping_is_accepted(self, validator, well_formed_context):
        result = validator.validate_context(well_formed_context.model_dump(mode="json"))
        assert result.is_valid

    def test_missing_system_layer(self, validator, well_formed_context):
        data = well_formed_context.model_dump(mode="json")
        del data["system"]

        result = validator.validate_context(data)
        assert result.is_valid is False
        error = next(e for e in result.errors if e.field == "system")
        assert error.severity == Severity.CRITICAL
        assert error.type == ValidationErrorType.MISSING_REQUIRED
        assert "consistency_validation" not in result.rules_applied

    def test_non_mapping_input(self, validator):
        result = validator.validate_context("not a context")
        assert result.is_valid is False
        assert result.score == 0
        assert result.errors[0].severity == Severity.CRITICAL
        assert result.rules_applied == ["error_handling"]

    def test_layer_of_wrong_type(self, validator, well_formed_context):
        data = well_formed_context.model_dump(mode="json")
        data["session"] = "session"
        result = validator.validate_context(data)
        error = next(e for e in result.errors if e.field == "session")
        assert error.type == ValidationErrorType.TYPE_ERROR

    def test_invalid_message_format(self, validator, well_formed_context):
        data = well_formed_context.model_dump(mode="json")
        data["immediate"]["recent_messages"][0]["content"] = ""
        result = validator.validate_context(data)
        fields = [e.field for e in result.errors]
        assert "immediate.recent_messages[0]" in fields


class TestRanges:

    def test_trait_out_of_range(self, validator, well_formed_context):
        data = well_formed_context.model_dump(mode="json")
        data["system"]["avatar_personality"]["traits"]["empathy"] = 1.5

        result = validator.validate_context(data)
        error = next(e for e in result.errors if e.field == "system.avatar_personality.traits.empathy")
        assert error.type == ValidationErrorType.RANGE_ERROR
        assert error.severity == Severity.HIGH
        assert result.is_valid is False

    def test_unknown_emotion_is_low_severity(self, validator, well_formed_context):
        data = well_formed_context.model_dump(mode="json")
        data["immediate"]["current_user_emotion"] = "ecstatic"

        result = validator.validate_context(data)
        error = next(e for e in result.errors if e.field == "immediate.current_user_emotion")
        assert error.severity == Severity.LOW
        assert result.is_valid


class TestConsistency:

    def test_message_count_mismatch(self, validator, well_formed_context):
        well_formed_context.session.message_count = 5

        result = validator.validate_context(well_formed_context)
        error = next(e for e in result.errors if e.type == ValidationErrorType.CONSISTENCY_ERROR)
        assert error.field == "context.message_count"
        assert error.severity == Severity.HIGH
        assert result.is_valid is False

    def test_timestamp_before_session_start(self, validator, well_formed_context, clock):
        clock.advance(60)
        well_formed_context.session.start_time = clock()

        result = validator.validate_context(well_formed_context)
        assert any(
            e.field == "context.timestamp" and e.type == ValidationErrorType.CONSISTENCY_ERROR
            for e in result.errors
        )


class TestCustomRules:

    def test_custom_rule_findings_are_merged(self, validator, well_formed_context):
        def no_astronomy(data):
            if "astronomy" in data["immediate"]["active_topics"]:
                return RuleOutcome(errors=[create_error(
                    "immediate.active_topics", ValidationErrorType.CUSTOM_ERROR, "Off-limits topic", Severity.HIGH,
                )])
            return None

        validator.add_validation_rule(ValidationRule(id="no_astronomy", name="No astronomy", check=no_astronomy))
        result = validator.validate_context(well_formed_context)

        assert "no_astronomy" in result.rules_applied
        assert result.is_valid is False

    def test_raising_rule_becomes_low_severity_error(self, validator, well_formed_context):
        def broken(data):
            raise KeyError("boom")

        validator.add_validation_rule(ValidationRule(id="broken", name="Broken", check=broken))
        result = validator.validate_context(well_formed_context)

        error = next(e for e in result.errors if e.field == "broken")
        assert error.type == ValidationErrorType.CUSTOM_ERROR
        assert error.severity == Severity.LOW
        assert result.is_valid

    def test_rule_returning_wrong_type_is_contained(self, validator, well_formed_context):
        validator.add_validation_rule(ValidationRule(id="listy", name="Listy", check=lambda data: ["oops"]))
        result = validator.validate_context(well_formed_context)

        error = next(e for e in result.errors if e.field == "listy")
        assert error.type == ValidationErrorType.CUSTOM_ERROR
        assert error.severity == Severity.LOW
        assert result.is_valid
        assert "consistency_validation" in result.rules_applied

    def test_enabled_rule_set_filters_rules(self, clock, well_formed_context):
        validator = ContextValidator(ValidationConfig(enabled_rule_set=["context_size_limit"]), now=clock)
        result = validator.validate_context(well_formed_context)

        assert "context_size_limit" in result.rules_applied
        assert "message_freshness" not in result.rules_applied

    def test_remove_rule(self, validator):
        assert validator.remove_validation_rule("message_freshness") is True
        assert validator.remove_validation_rule("message_freshness") is False


class TestStrictMode:

    def test_warnings_invalidate_only_in_strict_mode(self, clock, well_formed_context):
        # Messages become stale after a day
        clock.advance(2 * 24 * 60 * 60)

        lenient = ContextValidator(now=clock).validate_context(well_formed_context)
        strict = ContextValidator(ValidationConfig(strict_mode=True), now=clock).validate_context(well_formed_context)

        assert lenient.warnings
        assert lenient.is_valid
        assert strict.is_valid is False


class TestStats:

    def test_totals(self, validator, well_formed_context):
        validator.validate_context(well_formed_context)
        validator.validate_context({"session": {}})

        stats = validator.get_validation_stats()
        assert stats.total_validations == 2
        assert stats.valid_count == 1
        assert stats.invalid_count == 1
        assert stats.error_rate == 0.5
        assert stats.most_common_errors[0].type == "missing_required"
        assert stats.performance_trend == "stable"

    def test_history_is_bounded(self, clock, well_formed_context):
        validator = ContextValidator(ValidationConfig(max_history=2), now=clock)
        for _ in range(5):
            validator.validate_context(well_formed_context)

        assert len(validator.history) == 2
        assert validator.get_validation_stats().total_validations == 5


def stepped_timer(durations_ms):
    """Timer yielding a start/end pair per validation with the given durations"""
    ticks = []
    for n, duration in enumerate(durations_ms):
        ticks += [float(n), n + duration / 1000]
    return iter(ticks).__next__


class TestPerformanceTrend:

    def test_slower_recent_validations_are_declining(self, clock, well_formed_context):
        validator = ContextValidator(now=clock, timer=stepped_timer([1, 1, 10, 10]))
        for _ in range(4):
            validator.validate_context(well_formed_context)

        assert validator.get_validation_stats().performance_trend == "declining"

    def test_faster_recent_validations_are_improving(self, clock, well_formed_context):
        validator = ContextValidator(now=clock, timer=stepped_timer([10, 10, 1, 1]))
        for _ in range(4):
            validator.validate_context(well_formed_context)

        assert validator.get_validation_stats().performance_trend == "improving"
