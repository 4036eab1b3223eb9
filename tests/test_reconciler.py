"""
Tests for the Reconciler flows against the in-memory store.

Each test drives one whole scenario through asyncio.run so the store's
lock stays on a single event loop.
"""

import asyncio
import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from recurring_ledger.audit import AuditLogger
from recurring_ledger.engine import Materializer, OccurrenceBudget
from recurring_ledger.models.audit import AuditEventType
from recurring_ledger.models.rule import DeleteMode, Interval, Operation, UpdateMode
from recurring_ledger.reconciler import Reconciler, create_app_components, history_cutoff
from recurring_ledger.services.storage import (
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    NotFoundError,
    StorageError,
)
from recurring_ledger.validation import ValidationError


NOW = datetime(2024, 2, 15, 10, 30)


class FailingInsertStore(InMemoryLedgerStore):
    """Store whose bulk insert always fails after the rule is written."""

    async def bulk_insert_entries(self, tx, entries):
        raise StorageError("insert failed")


class FailingEntryDeleteStore(InMemoryLedgerStore):
    """Store whose entry deletion fails after the rule row is removed."""

    async def delete_entries_by_rule(self, tx, user_id, rule_id, after=None):
        raise StorageError("delete failed")


class CrashingInsertStore(InMemoryLedgerStore):
    """Store that fails with a non-storage error mid-transaction."""

    async def bulk_insert_entries(self, tx, entries):
        raise RuntimeError("bug in insert")


def build(store=None):
    store = store or InMemoryLedgerStore()
    audit_storage = InMemoryAuditStorage()
    reconciler = Reconciler(store=store, audit_logger=AuditLogger(audit_storage))
    return reconciler, store, audit_storage


def summary(entries):
    return [(e.date, e.amount) for e in entries]


class TestCreate:
    """Tests for Reconciler.create_rule."""

    def test_create_persists_rule_and_entries(self, make_rule):
        """Test the rent rule materializes three monthly entries."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            result = await reconciler.create_rule(rule, now=NOW)
            return result, await store.list_rules("user-1"), await store.list_entries("user-1")

        result, rules, entries = asyncio.run(scenario())

        assert result.operation == Operation.CREATE
        assert result.created_count == 3
        assert [r.id for r in rules] == [rule.id]
        assert summary(entries) == [
            (date(2024, 1, 1), Decimal("1200.00")),
            (date(2024, 2, 1), Decimal("1200.00")),
            (date(2024, 3, 1), Decimal("1200.00")),
        ]
        assert all(e.recurring_rule_id == rule.id for e in entries)

    def test_create_includes_past_dates(self, make_rule):
        """Test that creation back-fills occurrences before now."""
        reconciler, store, _ = build()

        async def scenario():
            await reconciler.create_rule(make_rule(), now=datetime(2030, 1, 1))
            return await store.list_entries("user-1")

        assert len(asyncio.run(scenario())) == 3

    def test_create_open_ended(self, make_rule):
        """Test that an open-ended rule gets the ceiling of entries."""
        reconciler, store, _ = build()

        async def scenario():
            await reconciler.create_rule(make_rule(occurrence_count=0), now=NOW)
            return await store.list_entries("user-1")

        assert len(asyncio.run(scenario())) == 200

    def test_create_fills_default_currency(self, make_rule):
        """Test that an empty currency becomes the configured default."""
        reconciler, store, _ = build()

        async def scenario():
            result = await reconciler.create_rule(make_rule(currency=""), now=NOW)
            return result, await store.list_entries("user-1")

        result, entries = asyncio.run(scenario())
        assert result.rule.currency == "usd"
        assert {e.currency for e in entries} == {"usd"}

    def test_create_invalid_rule_writes_nothing(self, make_rule):
        """Test that an invalid rule never reaches the store."""
        reconciler, store, audit_storage = build()

        async def scenario():
            with pytest.raises(ValidationError):
                await reconciler.create_rule(make_rule(occurrence_count=1), now=NOW)
            return (
                await store.list_rules("user-1"),
                await store.list_entries("user-1"),
                await audit_storage.get_recent_events(),
            )

        rules, entries, events = asyncio.run(scenario())
        assert rules == []
        assert entries == []
        assert [e.event_type for e in events] == [AuditEventType.VALIDATION_FAILED]

    def test_create_rolls_back_on_insert_failure(self, make_rule):
        """Test that a failed entry insert also discards the rule."""
        reconciler, store, audit_storage = build(FailingInsertStore())

        async def scenario():
            with pytest.raises(StorageError):
                await reconciler.create_rule(make_rule(), now=NOW)
            return (
                await store.list_rules("user-1"),
                await store.list_entries("user-1"),
                await audit_storage.get_recent_events(),
            )

        rules, entries, events = asyncio.run(scenario())
        assert rules == []
        assert entries == []
        assert [e.event_type for e in events] == [AuditEventType.RECONCILIATION_FAILED]

    def test_create_existing_id_rejected(self, make_rule):
        """Test that creating over an existing rule changes nothing."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            with pytest.raises(DuplicateError):
                await reconciler.create_rule(
                    make_rule(id=rule.id, occurrence_count=2), now=NOW
                )
            return await store.list_rules("user-1"), await store.list_entries("user-1")

        rules, entries = asyncio.run(scenario())
        assert [r.occurrence_count for r in rules] == [3]
        assert [e.date for e in entries] == [
            date(2024, 1, 1),
            date(2024, 2, 1),
            date(2024, 3, 1),
        ]

    def test_create_unexpected_error_rolls_back(self, make_rule):
        """Test that a non-storage failure is audited as a system error."""
        reconciler, store, audit_storage = build(CrashingInsertStore())

        async def scenario():
            with pytest.raises(RuntimeError, match="bug in insert"):
                await reconciler.create_rule(make_rule(), now=NOW)
            return (
                await store.list_rules("user-1"),
                await audit_storage.get_recent_events(),
            )

        rules, events = asyncio.run(scenario())
        assert rules == []
        assert [e.event_type for e in events] == [AuditEventType.SYSTEM_ERROR]
        assert events[0].error_message == "bug in insert"
        assert events[0].details["operation"] == "create"

    def test_create_audits_outcome(self, make_rule):
        """Test that creation records rule and materialization events."""
        reconciler, _, audit_storage = build()
        rule = make_rule()
        correlation_id = uuid4()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW, correlation_id=correlation_id)
            return await audit_storage.get_events_by_entity("rule", rule.id)

        events = asyncio.run(scenario())
        assert [e.event_type for e in events] == [
            AuditEventType.RULE_CREATED,
            AuditEventType.ENTRIES_MATERIALIZED,
        ]
        assert all(e.correlation_id == correlation_id for e in events)
        assert events[1].details["count"] == 3
        assert events[1].details["last_date"] == "2024-03-01"


class TestUpdate:
    """Tests for Reconciler.update_rule."""

    def test_future_only_preserves_history(self, make_rule):
        """Test the rent price rise applies from March only."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            result = await reconciler.update_rule(
                "user-1",
                rule.id,
                make_rule(amount=Decimal("1300.00")),
                mode=UpdateMode.REPLACE_FUTURE_ONLY,
                now=NOW,
            )
            return result, await store.list_entries("user-1", rule.id)

        result, entries = asyncio.run(scenario())

        assert result.entries_deleted == 1
        assert result.created_count == 1
        assert result.rule.id == rule.id
        assert summary(entries) == [
            (date(2024, 1, 1), Decimal("1200.00")),
            (date(2024, 2, 1), Decimal("1200.00")),
            (date(2024, 3, 1), Decimal("1300.00")),
        ]

    def test_future_only_keeps_history_entry_ids(self, make_rule):
        """Test that historical entries are untouched, not rewritten."""
        reconciler, store, _ = build()
        rule = make_rule(occurrence_count=6)

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            before = await store.list_entries("user-1", rule.id)
            await reconciler.update_rule(
                "user-1",
                rule.id,
                make_rule(occurrence_count=6, category="rent"),
                mode="replace_future_only",
                now=NOW,
            )
            return before, await store.list_entries("user-1", rule.id)

        before, after = asyncio.run(scenario())
        history = [e for e in before if e.date <= history_cutoff(NOW)]
        assert [e for e in after if e.date <= history_cutoff(NOW)] == history
        assert {e.category for e in after if e.date > history_cutoff(NOW)} == {"rent"}
        assert len(after) == 6

    def test_entry_on_now_date_is_history(self, make_rule):
        """Test that an entry dated today is kept by future-only updates."""
        reconciler, store, _ = build()
        rule = make_rule()
        now = datetime(2024, 2, 1, 0, 0)

        async def scenario():
            await reconciler.create_rule(rule, now=now)
            await reconciler.update_rule(
                "user-1",
                rule.id,
                make_rule(amount=Decimal("1300.00")),
                mode=UpdateMode.REPLACE_FUTURE_ONLY,
                now=now,
            )
            return await store.list_entries("user-1", rule.id)

        assert summary(asyncio.run(scenario())) == [
            (date(2024, 1, 1), Decimal("1200.00")),
            (date(2024, 2, 1), Decimal("1200.00")),
            (date(2024, 3, 1), Decimal("1300.00")),
        ]

    def test_replace_all_regenerates_everything(self, make_rule):
        """Test that replace_all rewrites history from the new start."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            result = await reconciler.update_rule(
                "user-1",
                rule.id,
                make_rule(
                    amount=Decimal("50"),
                    start_date=date(2024, 1, 10),
                    interval=Interval.WEEKLY,
                    occurrence_count=2,
                ),
                mode=UpdateMode.REPLACE_ALL,
                now=NOW,
            )
            return result, await store.list_entries("user-1")

        result, entries = asyncio.run(scenario())
        assert result.entries_deleted == 3
        assert summary(entries) == [
            (date(2024, 1, 10), Decimal("50")),
            (date(2024, 1, 17), Decimal("50")),
        ]

    def test_replace_all_unchanged_is_idempotent(self, make_rule):
        """Test that an unchanged replace_all reproduces the same entries."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            before = await store.list_entries("user-1")
            await reconciler.update_rule("user-1", rule.id, rule, now=NOW)
            return before, await store.list_entries("user-1")

        before, after = asyncio.run(scenario())
        fields = lambda e: (e.date, e.amount, e.category, e.currency, e.tags)
        assert [fields(e) for e in after] == [fields(e) for e in before]

    def test_update_missing_rule(self, make_rule):
        """Test that updating an unknown rule raises NotFoundError."""
        reconciler, store, audit_storage = build()

        async def scenario():
            with pytest.raises(NotFoundError):
                await reconciler.update_rule("user-1", uuid4(), make_rule(), now=NOW)
            return await store.list_rules("user-1"), await audit_storage.get_recent_events()

        rules, events = asyncio.run(scenario())
        assert rules == []
        assert [e.event_type for e in events] == [AuditEventType.RULE_NOT_FOUND]

    def test_update_other_users_rule(self, make_rule):
        """Test that a rule owned by someone else is not found."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            with pytest.raises(NotFoundError):
                await reconciler.update_rule(
                    "user-2", rule.id, make_rule(user_id="user-2"), now=NOW
                )
            return await store.list_entries("user-1")

        assert len(asyncio.run(scenario())) == 3

    def test_update_invalid_rule_changes_nothing(self, make_rule):
        """Test that a rejected update leaves rule and entries alone."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            with pytest.raises(ValidationError):
                await reconciler.update_rule(
                    "user-1", rule.id, make_rule(occurrence_count=1), now=NOW
                )
            return await store.list_rules("user-1"), await store.list_entries("user-1")

        rules, entries = asyncio.run(scenario())
        assert rules[0].occurrence_count == 3
        assert len(entries) == 3

    def test_update_rolls_back_on_insert_failure(self, make_rule):
        """Test that a failed insert restores the old rule and entries."""
        store = FailingInsertStore()
        reconciler, _, _ = build(store)
        rule = make_rule()

        async def scenario():
            # Seed through the base implementation
            async with store.transaction() as tx:
                await store.upsert_rule(tx, rule.model_copy(update={"currency": "usd"}))
                await InMemoryLedgerStore.bulk_insert_entries(
                    store, tx, Materializer().generate(rule)
                )
            with pytest.raises(StorageError):
                await reconciler.update_rule(
                    "user-1", rule.id, make_rule(amount=Decimal("1")), now=NOW
                )
            return await store.list_rules("user-1"), await store.list_entries("user-1")

        rules, entries = asyncio.run(scenario())
        assert rules[0].amount == Decimal("1200.00")
        assert [e.amount for e in entries] == [Decimal("1200.00")] * 3


class TestDelete:
    """Tests for Reconciler.delete_rule."""

    def test_delete_future_only_leaves_dangling_history(self, make_rule):
        """Test the rent rule deleted mid-February keeps Jan and Feb."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            result = await reconciler.delete_rule(
                "user-1", rule.id, mode=DeleteMode.REMOVE_FUTURE_ONLY, now=NOW
            )
            return result, await store.list_rules("user-1"), await store.list_entries("user-1")

        result, rules, entries = asyncio.run(scenario())
        assert result.entries_deleted == 1
        assert rules == []
        assert [e.date for e in entries] == [date(2024, 1, 1), date(2024, 2, 1)]
        assert all(e.recurring_rule_id == rule.id for e in entries)

    def test_delete_all(self, make_rule):
        """Test that remove_all drops the rule and every entry."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            result = await reconciler.delete_rule("user-1", rule.id, now=NOW)
            return result, await store.list_rules("user-1"), await store.list_entries("user-1")

        result, rules, entries = asyncio.run(scenario())
        assert result.entries_deleted == 3
        assert rules == []
        assert entries == []

    def test_delete_rolls_back_on_entry_delete_failure(self, make_rule):
        """Test that a failed delete leaves the rule and every entry intact."""
        reconciler, store, audit_storage = build(FailingEntryDeleteStore())
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            with pytest.raises(StorageError, match="delete failed"):
                await reconciler.delete_rule("user-1", rule.id, now=NOW)
            return (
                await store.list_rules("user-1"),
                await store.list_entries("user-1"),
                await audit_storage.get_events_by_entity("rule", rule.id),
            )

        rules, entries, events = asyncio.run(scenario())
        assert [r.id for r in rules] == [rule.id]
        assert len(entries) == 3
        assert events[-1].event_type == AuditEventType.RECONCILIATION_FAILED

    def test_delete_missing_rule(self):
        """Test that deleting an unknown rule raises NotFoundError."""
        reconciler, _, _ = build()

        async def scenario():
            await reconciler.delete_rule("user-1", uuid4(), now=NOW)

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_delete_other_users_rule(self, make_rule):
        """Test that another user cannot delete the rule."""
        reconciler, store, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            with pytest.raises(NotFoundError):
                await reconciler.delete_rule("user-2", rule.id, now=NOW)
            return await store.list_rules("user-1"), await store.list_entries("user-1")

        rules, entries = asyncio.run(scenario())
        assert len(rules) == 1
        assert len(entries) == 3

    def test_delete_audits_removal(self, make_rule):
        """Test that deletion records rule and removal events."""
        reconciler, _, audit_storage = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            await reconciler.delete_rule(
                "user-1", rule.id, mode=DeleteMode.REMOVE_FUTURE_ONLY, now=NOW
            )
            return await audit_storage.get_events_by_entity("rule", rule.id)

        events = asyncio.run(scenario())
        assert [e.event_type for e in events][-2:] == [
            AuditEventType.RULE_DELETED,
            AuditEventType.ENTRIES_REMOVED,
        ]
        assert events[-1].details == {"count": 1, "after": "2024-02-15"}


class TestReads:
    """Tests for rule lookups."""

    def test_get_rule(self, make_rule):
        """Test fetching a rule by owner and id."""
        reconciler, _, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            return await reconciler.get_rule("user-1", rule.id)

        assert asyncio.run(scenario()).name == "Rent"

    def test_get_rule_wrong_user(self, make_rule):
        """Test that rules are scoped to their owner."""
        reconciler, _, _ = build()
        rule = make_rule()

        async def scenario():
            await reconciler.create_rule(rule, now=NOW)
            await reconciler.get_rule("user-2", rule.id)

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_list_rules_newest_first(self, make_rule):
        """Test that rules are listed by start date, newest first."""
        reconciler, _, _ = build()

        async def scenario():
            await reconciler.create_rule(make_rule(name="Old"), now=NOW)
            await reconciler.create_rule(
                make_rule(name="New", start_date=date(2024, 6, 1)), now=NOW
            )
            await reconciler.create_rule(make_rule(user_id="user-2"), now=NOW)
            return await reconciler.list_rules("user-1")

        assert [r.name for r in asyncio.run(scenario())] == ["New", "Old"]


class TestConfiguration:
    """Tests for wiring."""

    def test_custom_ceiling(self, make_rule):
        """Test that an injected materializer controls the ceiling."""
        store = InMemoryLedgerStore()
        reconciler = Reconciler(store, materializer=Materializer(OccurrenceBudget(10)))

        async def scenario():
            await reconciler.create_rule(make_rule(occurrence_count=0), now=NOW)
            return await store.list_entries("user-1")

        assert len(asyncio.run(scenario())) == 10

    def test_custom_default_currency(self, make_rule):
        """Test that the default currency can be injected."""
        reconciler = Reconciler(InMemoryLedgerStore(), default_currency="EUR")
        result = asyncio.run(reconciler.create_rule(make_rule(currency=""), now=NOW))
        assert result.rule.currency == "eur"

    def test_create_app_components_in_memory(self, make_rule):
        """Test the in-memory component factory."""
        reconciler, store, audit_storage = create_app_components(use_database=False)
        assert isinstance(store, InMemoryLedgerStore)
        assert isinstance(audit_storage, InMemoryAuditStorage)

        result = asyncio.run(reconciler.create_rule(make_rule(), now=NOW))
        assert result.created_count == 3

    def test_history_cutoff(self):
        """Test that the cutoff is the calendar date of now."""
        assert history_cutoff(NOW) == date(2024, 2, 15)
