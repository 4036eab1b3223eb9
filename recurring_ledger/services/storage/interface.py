"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine against any transactional backend
2. Use in-memory storage for testing
3. Keep reconciliation logic decoupled from storage implementation

The engine never talks to a database directly. It opens a transaction,
issues the operations below against the handle, and commits. The store
owns isolation: a concurrent reader must never see a rule without its
entries or entries regenerated for a rule that was rolled back.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.rule import LedgerEntry, RecurringRule


class LedgerStoreInterface(ABC):
    """
    Abstract interface for rule and ledger-entry storage.

    Write operations take the transaction handle returned by begin().
    Handles are opaque to callers.
    """

    @abstractmethod
    async def begin(self) -> Any:
        """
        Start a transaction.

        Returns:
            A handle to pass to the other operations

        Raises:
            ConnectionError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def commit(self, tx: Any) -> None:
        """
        Make every operation issued on the handle visible at once.

        Raises:
            StorageError: If the commit fails (nothing is applied)
        """
        pass

    @abstractmethod
    async def rollback(self, tx: Any) -> None:
        """Discard every operation issued on the handle."""
        pass

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """
        Scope a transaction to a block.

        Commits when the block exits normally. Any exception, including
        cancellation or a failing commit, rolls back before propagating.

        Usage:
            async with store.transaction() as tx:
                await store.upsert_rule(tx, rule)
        """
        tx = await self.begin()
        committed = False
        try:
            yield tx
            await self.commit(tx)
            committed = True
        finally:
            if not committed:
                await self.rollback(tx)

    @abstractmethod
    async def get_rule(
        self,
        tx: Any,
        user_id: str,
        rule_id: UUID,
        for_update: bool = False,
    ) -> Optional[RecurringRule]:
        """
        Fetch a rule owned by user_id.

        Args:
            tx: Transaction handle
            user_id: Owner the rule must belong to
            rule_id: The rule's unique identifier
            for_update: Lock the row until the transaction ends

        Returns:
            The rule if found and owned by user_id, None otherwise
        """
        pass

    @abstractmethod
    async def upsert_rule(self, tx: Any, rule: RecurringRule) -> None:
        """
        Insert a rule, or overwrite every field of the rule with the same ID.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_rule(self, tx: Any, user_id: str, rule_id: UUID) -> int:
        """
        Delete a rule owned by user_id.

        Returns:
            Number of rule rows removed (0 when absent or foreign)
        """
        pass

    @abstractmethod
    async def delete_entries_by_rule(
        self,
        tx: Any,
        user_id: str,
        rule_id: UUID,
        after: Optional[date] = None,
    ) -> int:
        """
        Delete entries materialized from a rule.

        Args:
            tx: Transaction handle
            user_id: Owner of the entries
            rule_id: Rule the entries point back to
            after: If given, only entries dated strictly after this date

        Returns:
            Number of entries removed
        """
        pass

    @abstractmethod
    async def bulk_insert_entries(
        self,
        tx: Any,
        entries: list[LedgerEntry],
    ) -> int:
        """
        Insert many entries in one batched operation.

        Returns:
            Number of entries inserted

        Raises:
            StorageError: If any row fails (the batch is not partially applied
                          once the transaction rolls back)
        """
        pass

    @abstractmethod
    async def list_rules(self, user_id: str) -> list[RecurringRule]:
        """
        List a user's rules, newest start date first.

        Reads committed state outside any caller transaction.
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        user_id: str,
        rule_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        """
        List a user's entries in date order.

        Args:
            user_id: Owner of the entries
            rule_id: Only entries pointing back to this rule

        Returns:
            Committed entries, oldest first
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """
    Base exception for storage operations.

    Raised after the transaction has been rolled back; callers may retry.
    """
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or owned by another user)."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
