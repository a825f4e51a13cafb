"""Tests for template validation."""

from datetime import date
from decimal import Decimal

import pytest

from src.models.recurring import Frequency
from src.validation import TemplateValidationError, TemplateValidator


@pytest.fixture
def validator():
    return TemplateValidator()


def issue_types(result):
    return {(i.field, i.issue_type) for i in result.issues}


class TestSchemaValidation:
    """Stage 1 checks."""

    def test_valid_monthly_template(self, validator, template_factory):
        result = validator.validate(template_factory())
        assert result.is_valid
        assert result.issues == []

    def test_valid_weekly_template(self, validator, template_factory):
        result = validator.validate(
            template_factory(frequency=Frequency.WEEKLY, day_of_month=None, day_of_week=5)
        )
        assert result.is_valid

    def test_valid_daily_template(self, validator, template_factory):
        result = validator.validate(
            template_factory(frequency=Frequency.DAILY, day_of_month=None)
        )
        assert result.is_valid

    @pytest.mark.parametrize("frequency", [Frequency.MONTHLY, Frequency.QUARTERLY, Frequency.YEARLY])
    def test_day_of_month_required(self, validator, template_factory, frequency):
        result = validator.validate(template_factory(frequency=frequency, day_of_month=None))
        assert ("day_of_month", "missing_frequency_field") in issue_types(result)
        assert not result.is_valid

    @pytest.mark.parametrize("frequency", [Frequency.WEEKLY, Frequency.BIWEEKLY])
    def test_day_of_week_required(self, validator, template_factory, frequency):
        result = validator.validate(
            template_factory(frequency=frequency, day_of_month=None)
        )
        assert ("day_of_week", "missing_frequency_field") in issue_types(result)

    def test_out_of_range_fields(self, validator, template_factory):
        assert ("day_of_month", "out_of_range") in issue_types(
            validator.validate(template_factory(day_of_month=32))
        )
        assert ("day_of_week", "out_of_range") in issue_types(
            validator.validate(template_factory(
                frequency=Frequency.WEEKLY, day_of_month=None, day_of_week=7
            ))
        )

    def test_required_fields(self, validator, template_factory):
        result = validator.validate(template_factory(
            description="",
            amount_primary=None,
            start_date=None,
            frequency=None,
        ))
        types = issue_types(result)
        assert ("description", "missing") in types
        assert ("amount_primary", "missing") in types
        assert ("start_date", "missing") in types
        assert ("frequency", "invalid_value") in types
        assert result.error_count == 4


class TestSemanticValidation:
    """Stage 2 checks."""

    def test_end_before_start(self, validator, template_factory):
        result = validator.validate(template_factory(end_date=date(2023, 12, 31)))
        assert ("end_date", "inconsistent") in issue_types(result)

    def test_negative_amount(self, validator, template_factory):
        result = validator.validate(template_factory(amount_secondary=Decimal("-5")))
        assert ("amount_secondary", "invalid_value") in issue_types(result)

    def test_field_of_other_frequency(self, validator, template_factory):
        result = validator.validate(template_factory(day_of_week=2))
        assert ("day_of_week", "unexpected_field") in issue_types(result)
        assert not result.is_valid

    def test_zero_amount_is_only_a_warning(self, validator, template_factory):
        result = validator.validate(template_factory(amount_primary=Decimal("0")))
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_semantic_stage_skipped_after_schema_errors(self, validator, template_factory):
        result = validator.validate(template_factory(
            description="",
            end_date=date(2023, 1, 1),
        ))
        assert ("end_date", "inconsistent") not in issue_types(result)


class TestEnsureValid:
    def test_raises_with_result(self, validator, template_factory):
        with pytest.raises(TemplateValidationError) as exc_info:
            validator.ensure_valid(template_factory(day_of_month=None))
        assert exc_info.value.result.has_errors
        assert "Day of month is required" in str(exc_info.value)

    def test_returns_result_with_warnings(self, validator, template_factory):
        result = validator.ensure_valid(template_factory(last_processed=date(2024, 2, 1)))
        assert result.warnings
