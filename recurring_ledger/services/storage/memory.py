"""
In-Memory Storage Implementation

Keeps rules, entries and audit events in process memory. Used for tests
and for embedding the engine where no database is configured.

Transactions work on a private copy of the committed state which replaces
it on commit. A single asyncio.Lock serializes transactions, so readers
of the committed state never see a half-applied reconciliation.
"""

import asyncio
from datetime import date
from typing import Optional
from uuid import UUID

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.rule import LedgerEntry, RecurringRule
from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStoreInterface,
    StorageError,
)


class MemoryTransaction:
    """Working copy of the store's state for one transaction."""

    def __init__(
        self,
        rules: dict[UUID, RecurringRule],
        entries: dict[UUID, LedgerEntry],
    ):
        self.rules = rules
        self.entries = entries
        self.closed = False

    def ensure_open(self) -> None:
        if self.closed:
            raise StorageError("Transaction is already closed")


class InMemoryLedgerStore(LedgerStoreInterface):
    """
    Dictionary-backed implementation of the ledger store.

    Models are copied on the way in and out, so callers can never mutate
    stored state behind the store's back.
    """

    def __init__(self):
        self._rules: dict[UUID, RecurringRule] = {}
        self._entries: dict[UUID, LedgerEntry] = {}
        self._lock = asyncio.Lock()

    async def begin(self) -> MemoryTransaction:
        await self._lock.acquire()
        return MemoryTransaction(
            rules=dict(self._rules),
            entries=dict(self._entries),
        )

    async def commit(self, tx: MemoryTransaction) -> None:
        tx.ensure_open()
        self._rules = tx.rules
        self._entries = tx.entries
        tx.closed = True
        self._lock.release()

    async def rollback(self, tx: MemoryTransaction) -> None:
        if tx.closed:
            return
        tx.closed = True
        self._lock.release()

    async def get_rule(
        self,
        tx: MemoryTransaction,
        user_id: str,
        rule_id: UUID,
        for_update: bool = False,
    ) -> Optional[RecurringRule]:
        # The transaction lock already serializes writers
        tx.ensure_open()
        rule = tx.rules.get(rule_id)
        if rule is None or rule.user_id != user_id:
            return None
        return rule.model_copy(deep=True)

    async def upsert_rule(self, tx: MemoryTransaction, rule: RecurringRule) -> None:
        tx.ensure_open()
        existing = tx.rules.get(rule.id)
        if existing is not None and existing.user_id != rule.user_id:
            raise DuplicateError(f"Rule ID already in use: {rule.id}")
        tx.rules[rule.id] = rule.model_copy(deep=True)

    async def delete_rule(self, tx: MemoryTransaction, user_id: str, rule_id: UUID) -> int:
        tx.ensure_open()
        rule = tx.rules.get(rule_id)
        if rule is None or rule.user_id != user_id:
            return 0
        del tx.rules[rule_id]
        return 1

    async def delete_entries_by_rule(
        self,
        tx: MemoryTransaction,
        user_id: str,
        rule_id: UUID,
        after: Optional[date] = None,
    ) -> int:
        tx.ensure_open()
        doomed = [
            entry.id
            for entry in tx.entries.values()
            if entry.user_id == user_id
            and entry.recurring_rule_id == rule_id
            and (after is None or entry.date > after)
        ]
        for entry_id in doomed:
            del tx.entries[entry_id]
        return len(doomed)

    async def bulk_insert_entries(
        self,
        tx: MemoryTransaction,
        entries: list[LedgerEntry],
    ) -> int:
        tx.ensure_open()
        for entry in entries:
            if entry.id in tx.entries:
                raise DuplicateError(f"Entry already exists: {entry.id}")
            tx.entries[entry.id] = entry.model_copy(deep=True)
        return len(entries)

    async def list_rules(self, user_id: str) -> list[RecurringRule]:
        rules = [
            rule.model_copy(deep=True)
            for rule in self._rules.values()
            if rule.user_id == user_id
        ]
        rules.sort(key=lambda r: r.start_date or date.min, reverse=True)
        return rules

    async def list_entries(
        self,
        user_id: str,
        rule_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        entries = [
            entry.model_copy(deep=True)
            for entry in self._entries.values()
            if entry.user_id == user_id
            and (rule_id is None or entry.recurring_rule_id == rule_id)
        ]
        entries.sort(key=lambda e: e.date)
        return entries


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
