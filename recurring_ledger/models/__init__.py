"""
Data Models Package

This package contains all Pydantic models used in the Recurring Ledger engine.
All data flowing through the engine must conform to these schemas.
"""

from recurring_ledger.models.rule import (
    DeleteMode,
    Interval,
    LedgerEntry,
    Operation,
    ReconciliationResult,
    RecurringRule,
    UpdateMode,
    ValidationIssue,
    ValidationResult,
)
from recurring_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Rule models
    "DeleteMode",
    "Interval",
    "LedgerEntry",
    "Operation",
    "ReconciliationResult",
    "RecurringRule",
    "UpdateMode",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
