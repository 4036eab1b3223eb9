"""
Core Data Models for Recurring Ledger

These models define the schemas for all data flowing through the engine.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Models check types and formats only. Business invariants
(occurrence count of 1, blank names, missing start date) are checked by
RuleValidator so they surface as one ValidationError with every issue listed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

# LedgerEntry has a field named "date"
CalendarDate = date


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Interval(str, Enum):
    """How often a recurring rule repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class UpdateMode(str, Enum):
    """
    Scope of regeneration when a rule is edited.

    REPLACE_FUTURE_ONLY never touches entries dated on or before "now".
    """
    REPLACE_ALL = "replace_all"
    REPLACE_FUTURE_ONLY = "replace_future_only"


class DeleteMode(str, Enum):
    """Which owned entries go away together with a deleted rule."""
    REMOVE_ALL = "remove_all"
    REMOVE_FUTURE_ONLY = "remove_future_only"


class Operation(str, Enum):
    """Reconciliation operations."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# =============================================================================
# RULES AND ENTRIES
# =============================================================================

class RecurringRule(BaseModel):
    """
    A user-authored template describing a repeating expense.

    occurrence_count == 0 means open-ended: each generation pass emits up
    to the configured ceiling of entries.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique rule ID"
    )
    user_id: str = Field(
        ...,
        description="Owning user"
    )

    name: str = Field(
        ...,
        max_length=255,
        description="Display name copied onto every entry"
    )
    amount: Decimal = Field(
        ...,
        max_digits=15,
        decimal_places=2,
        description="Amount of each occurrence"
    )
    currency: str = Field(
        default="",
        max_length=3,
        description="Currency code (empty means the configured default)"
    )
    category: str = Field(
        ...,
        max_length=255,
        description="Category label"
    )
    tags: list[str] = Field(default_factory=list)

    start_date: Optional[date] = Field(
        default=None,
        description="Date of the first occurrence"
    )
    interval: Interval = Field(
        ...,
        description="Repeat period"
    )
    occurrence_count: int = Field(
        default=0,
        description="Exact number of occurrences, 0 for open-ended"
    )

    @field_validator('currency')
    @classmethod
    def lowercase_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator('start_date', mode='before')
    @classmethod
    def date_from_datetime(cls, v):
        """Rules are calendar based; time of day is dropped."""
        if isinstance(v, datetime):
            return v.date()
        return v

    @property
    def is_open_ended(self) -> bool:
        return self.occurrence_count == 0


class LedgerEntry(BaseModel):
    """
    A concrete, dated expense.

    Entries produced by the engine carry recurring_rule_id. The reference
    is a back-link for filtering only: it may outlive the rule.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry ID"
    )
    user_id: str

    name: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    currency: str = Field(..., max_length=3)
    category: str = Field(..., min_length=1, max_length=255)
    tags: list[str] = Field(default_factory=list)
    date: CalendarDate

    recurring_rule_id: Optional[UUID] = Field(
        default=None,
        description="Rule this entry was materialized from, if any"
    )

    @property
    def is_recurring(self) -> bool:
        return self.recurring_rule_id is not None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Outcome of validating one rule."""

    rule_id: Optional[UUID] = None
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# RECONCILIATION RESULT
# =============================================================================

class ReconciliationResult(BaseModel):
    """
    What a committed create/update/delete did.

    Only returned after commit; a failed operation raises instead.
    """

    operation: Operation
    rule: RecurringRule
    mode: Optional[str] = Field(
        default=None,
        description="UpdateMode or DeleteMode value; None for create"
    )
    performed_at: datetime
    entries_deleted: int = Field(default=0, ge=0)
    entries_created: list[LedgerEntry] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.entries_created)
