"""Rule validation package."""

from recurring_ledger.validation.validator import RuleValidator, ValidationError

__all__ = ["RuleValidator", "ValidationError"]
