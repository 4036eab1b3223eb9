"""
Audit Logger

DESIGN DECISION: Every change to a rule and its entries is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. User can see history of their rules

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from recurring_ledger.models.audit import AuditEvent, AuditEventBuilder
from recurring_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_rule_created(
        self,
        rule_id: UUID,
        user_id: str,
        name: str,
        correlation_id: UUID,
    ) -> None:
        """Log rule creation."""
        event = AuditEventBuilder.rule_created(
            rule_id=rule_id,
            user_id=user_id,
            name=name,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rule_updated(
        self,
        rule_id: UUID,
        user_id: str,
        mode: str,
        correlation_id: UUID,
    ) -> None:
        """Log rule update."""
        event = AuditEventBuilder.rule_updated(
            rule_id=rule_id,
            user_id=user_id,
            mode=mode,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rule_deleted(
        self,
        rule_id: UUID,
        user_id: str,
        mode: str,
        correlation_id: UUID,
    ) -> None:
        """Log rule deletion."""
        event = AuditEventBuilder.rule_deleted(
            rule_id=rule_id,
            user_id=user_id,
            mode=mode,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entries_materialized(
        self,
        rule_id: UUID,
        user_id: str,
        dates: list[date],
        correlation_id: UUID,
    ) -> None:
        """Log a batch of generated entries."""
        event = AuditEventBuilder.entries_materialized(
            rule_id=rule_id,
            user_id=user_id,
            count=len(dates),
            first_date=dates[0].isoformat() if dates else None,
            last_date=dates[-1].isoformat() if dates else None,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entries_removed(
        self,
        rule_id: UUID,
        user_id: str,
        count: int,
        after: Optional[date],
        correlation_id: UUID,
    ) -> None:
        """Log removal of a rule's entries."""
        event = AuditEventBuilder.entries_removed(
            rule_id=rule_id,
            user_id=user_id,
            count=count,
            after=after.isoformat() if after else None,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        rule_id: Optional[UUID],
        user_id: Optional[str],
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            rule_id=rule_id,
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rule_not_found(
        self,
        rule_id: UUID,
        user_id: str,
        operation: str,
        correlation_id: UUID,
    ) -> None:
        """Log an update/delete aimed at a missing rule."""
        event = AuditEventBuilder.rule_not_found(
            rule_id=rule_id,
            user_id=user_id,
            operation=operation,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_reconciliation_failed(
        self,
        rule_id: UUID,
        user_id: str,
        operation: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a rolled-back operation."""
        event = AuditEventBuilder.reconciliation_failed(
            rule_id=rule_id,
            user_id=user_id,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a rule operation and pass it through
    all subsequent audit calls.
    """
    return uuid4()
