"""
Two-Stage Template Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Frequency and its schedule fields
- Range checks on day of month / day of week

STAGE 2 - SEMANTIC VALIDATION:
- Date consistency (end after start)
- Amount sanity
- Fields that the frequency ignores

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Can skip stage 2 if stage 1 fails

Only templates created through the scheduler are validated. Rows that
people type into the sheet by hand are loaded leniently and, when their
schedule cannot be resolved, simply never come due.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the caller can correct the template.
"""

from decimal import Decimal

from src.models.recurring import (
    RecurringTemplate,
    ValidationIssue,
    ValidationResult,
)


class TemplateValidationError(Exception):
    """A template was rejected; `result` lists every issue found."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(f"Invalid recurring template: {messages}")


class TemplateValidator:
    """
    Validates recurring templates through a two-stage pipeline.

    Stage 1: Schema validation
    Stage 2: Semantic validation
    """

    def _validate_schema(
        self,
        template: RecurringTemplate,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not template.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
                severity="error",
            ))

        if template.amount_primary is None and template.amount_secondary is None:
            issues.append(ValidationIssue(
                field="amount_primary",
                issue_type="missing",
                message="At least one amount (EUR or USD) is required",
                severity="error",
            ))

        if template.start_date is None:
            issues.append(ValidationIssue(
                field="start_date",
                issue_type="missing",
                message="Start date is required",
                severity="error",
            ))

        frequency = template.frequency
        if frequency is None:
            issues.append(ValidationIssue(
                field="frequency",
                issue_type="invalid_value",
                message=(
                    "Frequency must be one of: daily, weekly, biweekly, "
                    "monthly, quarterly, yearly"
                ),
                severity="error",
            ))
        elif frequency.uses_day_of_month:
            if template.day_of_month is None:
                issues.append(ValidationIssue(
                    field="day_of_month",
                    issue_type="missing_frequency_field",
                    message=f"Day of month is required for {frequency.value} templates",
                    severity="error",
                ))
            elif not 1 <= template.day_of_month <= 31:
                issues.append(ValidationIssue(
                    field="day_of_month",
                    issue_type="out_of_range",
                    message=f"Day of month must be between 1 and 31, got {template.day_of_month}",
                    severity="error",
                ))
        elif frequency.uses_day_of_week:
            if template.day_of_week is None:
                issues.append(ValidationIssue(
                    field="day_of_week",
                    issue_type="missing_frequency_field",
                    message=f"Day of week is required for {frequency.value} templates",
                    severity="error",
                ))
            elif not 0 <= template.day_of_week <= 6:
                issues.append(ValidationIssue(
                    field="day_of_week",
                    issue_type="out_of_range",
                    message=(
                        "Day of week must be between 0 (Sunday) and 6 (Saturday), "
                        f"got {template.day_of_week}"
                    ),
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        template: RecurringTemplate,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if template.end_date and template.end_date < template.start_date:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="inconsistent",
                message=(
                    f"End date ({template.end_date}) is before "
                    f"start date ({template.start_date})"
                ),
                severity="error",
            ))

        for field in ("amount_primary", "amount_secondary"):
            amount = getattr(template, field)
            if amount is not None and amount < Decimal("0"):
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_value",
                    message=f"Amount must not be negative, got {amount}",
                    severity="error",
                ))

        frequency = template.frequency
        if not frequency.uses_day_of_month and template.day_of_month is not None:
            issues.append(ValidationIssue(
                field="day_of_month",
                issue_type="unexpected_field",
                message=f"Day of month is ignored for {frequency.value} templates",
                severity="error",
            ))
        if not frequency.uses_day_of_week and template.day_of_week is not None:
            issues.append(ValidationIssue(
                field="day_of_week",
                issue_type="unexpected_field",
                message=f"Day of week is ignored for {frequency.value} templates",
                severity="error",
            ))

        if (
            template.amount_primary == Decimal("0")
            and template.amount_secondary in (None, Decimal("0"))
        ):
            issues.append(ValidationIssue(
                field="amount_primary",
                issue_type="suspicious_value",
                message="Amount is zero; the generated entries will be empty",
                severity="warning",
            ))

        if template.last_processed is not None:
            issues.append(ValidationIssue(
                field="last_processed",
                issue_type="unexpected_field",
                message="New templates should not carry a last processed date",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, template: RecurringTemplate) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Returns:
            ValidationResult with all issues found
        """
        schema_valid, all_issues = self._validate_schema(template)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(template)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
        )

    def ensure_valid(self, template: RecurringTemplate) -> ValidationResult:
        """
        Validate and raise on errors.

        Raises:
            TemplateValidationError: If any error-level issue is found
        """
        result = self.validate(template)
        if result.has_errors:
            raise TemplateValidationError(result)
        return result
