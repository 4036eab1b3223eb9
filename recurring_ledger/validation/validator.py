"""
Rule Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION (parse_rule):
- Type checking of a raw payload
- Enum membership (interval)
- Done by pydantic; errors are converted into ValidationIssues

STAGE 2 - SEMANTIC VALIDATION (validate):
- Occurrence count is 0 or at least 2
- Name, category and owner are not blank
- Start date is present
- Currency code is well formed

IMPORTANT: Validation NEVER silently fixes issues, and it always runs
before a transaction is opened, so a rejected rule touches no storage.
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from recurring_ledger.models.rule import (
    Interval,
    RecurringRule,
    ValidationIssue,
    ValidationResult,
)


class ValidationError(ValueError):
    """A rule violates the rule invariants. Carries every issue found."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        summary = "; ".join(f"{i.field}: {i.message}" for i in issues)
        super().__init__(f"Invalid recurring rule: {summary}")


class RuleValidator:
    """Validates recurring rules through a two-stage pipeline."""

    def parse_rule(self, payload: dict[str, Any]) -> RecurringRule:
        """
        Build a rule from a raw payload and validate it.

        Raises:
            ValidationError: On schema or semantic problems
        """
        try:
            rule = RecurringRule.model_validate(payload)
        except PydanticValidationError as e:
            issues = [
                ValidationIssue(
                    field=".".join(str(part) for part in err["loc"]) or "rule",
                    issue_type="missing" if err["type"] == "missing" else "invalid_format",
                    message=err["msg"],
                    severity="error",
                )
                for err in e.errors()
            ]
            raise ValidationError(issues) from e

        self.ensure_valid(rule)
        return rule

    def _validate_semantic(self, rule: RecurringRule) -> list[ValidationIssue]:
        issues = []

        if not rule.user_id or not rule.user_id.strip():
            issues.append(ValidationIssue(
                field="user_id",
                issue_type="missing",
                message="Rule must belong to a user",
                severity="error",
            ))

        if not rule.name:
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Name is required",
                severity="error",
            ))

        if not rule.category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category is required",
                severity="error",
            ))

        if rule.start_date is None:
            issues.append(ValidationIssue(
                field="start_date",
                issue_type="missing",
                message="Start date is required",
                severity="error",
            ))

        # Interval may bypass the enum when built with model_construct
        if rule.interval not in set(Interval):
            issues.append(ValidationIssue(
                field="interval",
                issue_type="invalid_value",
                message=f"Interval must be one of: {', '.join(i.value for i in Interval)}",
                severity="error",
            ))

        if rule.occurrence_count < 0:
            issues.append(ValidationIssue(
                field="occurrence_count",
                issue_type="invalid_value",
                message="Occurrence count cannot be negative",
                severity="error",
            ))
        elif rule.occurrence_count == 1:
            issues.append(ValidationIssue(
                field="occurrence_count",
                issue_type="invalid_value",
                message="A recurring rule needs at least 2 occurrences (or 0 for open-ended)",
                severity="error",
            ))

        if rule.currency and (len(rule.currency) != 3 or not rule.currency.isalpha()):
            issues.append(ValidationIssue(
                field="currency",
                issue_type="invalid_format",
                message=f"Currency must be a 3-letter code, got '{rule.currency}'",
                severity="error",
            ))

        return issues

    def validate(self, rule: RecurringRule) -> ValidationResult:
        """Run semantic validation and collect every issue."""
        issues = self._validate_semantic(rule)
        return ValidationResult(
            rule_id=rule.id,
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def ensure_valid(self, rule: RecurringRule) -> ValidationResult:
        """
        Validate and raise on any error-level issue.

        Raises:
            ValidationError: If the rule is invalid
        """
        result = self.validate(rule)
        if result.has_errors:
            raise ValidationError(result.issues)
        return result

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
        rule_name: Optional[str] = None,
    ) -> str:
        """Generate a short, user-facing description of the result."""
        label = f"'{rule_name}'" if rule_name else "This recurring expense"
        if result.is_valid:
            return f"{label} looks good."

        lines = [f"{label} can't be saved yet:"]
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"   • {issue.message}")
        return "\n".join(lines)
