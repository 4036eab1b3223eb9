"""
Audit Models for Recurring Ledger

Every change to a rule or its entries is logged for audit purposes.
This provides:
1. Complete traceability of all operations
2. Debugging information when things go wrong
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Rule lifecycle
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"

    # Entry materialization
    ENTRIES_MATERIALIZED = "entries_materialized"
    ENTRIES_REMOVED = "entries_removed"

    # Rejections and failures
    VALIDATION_FAILED = "validation_failed"
    RULE_NOT_FOUND = "rule_not_found"
    RECONCILIATION_FAILED = "reconciliation_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="User the affected rule belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'rule', 'entry')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one update)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.rule_created(rule_id, user_id, name, correlation_id)
        event = AuditEventBuilder.rule_not_found(rule_id, user_id, "update", correlation_id)
    """

    @staticmethod
    def rule_created(
        rule_id: UUID,
        user_id: str,
        name: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def rule_updated(
        rule_id: UUID,
        user_id: str,
        mode: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_UPDATED,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule updated ({mode})",
            details={"mode": mode},
            is_user_action=True,
        )

    @staticmethod
    def rule_deleted(
        rule_id: UUID,
        user_id: str,
        mode: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DELETED,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule deleted ({mode})",
            details={"mode": mode},
            is_user_action=True,
        )

    @staticmethod
    def entries_materialized(
        rule_id: UUID,
        user_id: str,
        count: int,
        first_date: Optional[str],
        last_date: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRIES_MATERIALIZED,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"{count} entries materialized",
            details={
                "count": count,
                "first_date": first_date,
                "last_date": last_date,
            },
        )

    @staticmethod
    def entries_removed(
        rule_id: UUID,
        user_id: str,
        count: int,
        after: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        scope = f"after {after}" if after else "all"
        return AuditEvent(
            event_type=AuditEventType.ENTRIES_REMOVED,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"{count} entries removed ({scope})",
            details={
                "count": count,
                "after": after,
            },
        )

    @staticmethod
    def validation_failed(
        rule_id: Optional[UUID],
        user_id: Optional[str],
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def rule_not_found(
        rule_id: UUID,
        user_id: str,
        operation: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_NOT_FOUND,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule not found during {operation}",
            details={"operation": operation},
        )

    @staticmethod
    def reconciliation_failed(
        rule_id: UUID,
        user_id: str,
        operation: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule {operation} rolled back",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
