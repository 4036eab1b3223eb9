"""
Reconciler for Recurring Ledger

This module ties together validation, materialization and storage, and
defines the three flows that change a recurring rule:
1. Create (validate → persist rule → materialize → insert entries)
2. Update (validate → lock rule → overwrite → drop stale entries → regenerate)
3. Delete (remove rule → drop all or only future entries)

DESIGN DECISION: The reconciler enforces the boundaries:
- Nothing is written for an invalid rule
- A rule and its entries change in one transaction or not at all
- Entries dated on or before "now" survive every future-only operation
- Every outcome is audited

"Now" is a parameter of each operation rather than state held here, so
callers (and tests) decide where history ends.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Union
from uuid import UUID

import structlog

from recurring_ledger.audit import AuditLogger, create_correlation_id
from recurring_ledger.config import get_settings
from recurring_ledger.engine import Materializer, OccurrenceBudget
from recurring_ledger.models.rule import (
    DeleteMode,
    LedgerEntry,
    Operation,
    ReconciliationResult,
    RecurringRule,
    UpdateMode,
)
from recurring_ledger.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    SQLAlchemyAuditStorage,
    SQLAlchemyLedgerStore,
    SQLDatabase,
    StorageError,
)
from recurring_ledger.validation import RuleValidator, ValidationError


logger = structlog.get_logger(__name__)


def history_cutoff(now: datetime) -> date:
    """
    Last date that counts as history at `now`.

    Entries dated on or before the cutoff are kept by future-only
    operations; entries after it are regenerated or removed.
    """
    return now.date()


class Reconciler:
    """
    Keeps each recurring rule and its materialized entries consistent.

    Flow per operation:
    1. Validate (no storage touched on failure)
    2. Open a transaction
    3. Write rule, delete stale entries, bulk insert new entries
    4. Commit, or roll back everything on any error
    5. Audit the outcome
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        materializer: Optional[Materializer] = None,
        validator: Optional[RuleValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_currency: Optional[str] = None,
    ):
        engine_settings = get_settings().engine
        self._store = store
        self._materializer = materializer or Materializer(
            OccurrenceBudget(engine_settings.open_ended_ceiling)
        )
        self._validator = validator or RuleValidator()
        self._audit_logger = audit_logger
        self._default_currency = (default_currency or engine_settings.default_currency).lower()

    def _prepare(self, rule: RecurringRule) -> RecurringRule:
        """Fill the default currency and validate."""
        if not rule.currency:
            rule = rule.model_copy(update={"currency": self._default_currency})
        self._validator.ensure_valid(rule)
        return rule

    async def _reject(
        self,
        error: ValidationError,
        rule: RecurringRule,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                rule_id=rule.id,
                user_id=rule.user_id,
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in error.issues
                ],
                correlation_id=correlation_id,
            )

    async def _audit_failure(
        self,
        error: StorageError,
        rule_id: UUID,
        user_id: str,
        operation: Operation,
        correlation_id: UUID,
    ) -> None:
        if not self._audit_logger:
            return
        if isinstance(error, NotFoundError):
            await self._audit_logger.log_rule_not_found(
                rule_id=rule_id,
                user_id=user_id,
                operation=operation.value,
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_reconciliation_failed(
                rule_id=rule_id,
                user_id=user_id,
                operation=operation.value,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    async def _audit_unexpected(
        self,
        error: Exception,
        rule_id: UUID,
        operation: Operation,
        correlation_id: UUID,
    ) -> None:
        """Record a non-storage failure; the transaction has already rolled back."""
        logger.exception("rule_operation_crashed", rule_id=str(rule_id), operation=operation.value)
        if self._audit_logger:
            await self._audit_logger.log_error(
                error_type=type(error).__name__,
                error_message=str(error),
                details={"operation": operation.value, "rule_id": str(rule_id)},
                correlation_id=correlation_id,
            )

    async def _audit_entries(
        self,
        rule: RecurringRule,
        deleted: int,
        after: Optional[date],
        created: list[LedgerEntry],
        correlation_id: UUID,
    ) -> None:
        if not self._audit_logger:
            return
        if deleted:
            await self._audit_logger.log_entries_removed(
                rule_id=rule.id,
                user_id=rule.user_id,
                count=deleted,
                after=after,
                correlation_id=correlation_id,
            )
        if created:
            await self._audit_logger.log_entries_materialized(
                rule_id=rule.id,
                user_id=rule.user_id,
                dates=[entry.date for entry in created],
                correlation_id=correlation_id,
            )

    async def create_rule(
        self,
        rule: RecurringRule,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Persist a new rule together with all of its entries.

        Entries are generated from the rule's start date with the full
        occurrence budget, past dates included.

        Raises:
            ValidationError: Rule is invalid (nothing written)
            DuplicateError: A rule with this id already exists (nothing written)
            StorageError: Store failed (nothing written)
        """
        now = now or datetime.now()
        correlation_id = correlation_id or create_correlation_id()

        try:
            rule = self._prepare(rule)
        except ValidationError as e:
            await self._reject(e, rule, correlation_id)
            raise

        entries = self._materializer.generate(rule)

        try:
            async with self._store.transaction() as tx:
                existing = await self._store.get_rule(tx, rule.user_id, rule.id, for_update=True)
                if existing is not None:
                    raise DuplicateError(f"Recurring rule already exists: {rule.id}")
                await self._store.upsert_rule(tx, rule)
                await self._store.bulk_insert_entries(tx, entries)
        except StorageError as e:
            logger.error("rule_create_failed", rule_id=str(rule.id), error=str(e))
            await self._audit_failure(e, rule.id, rule.user_id, Operation.CREATE, correlation_id)
            raise
        except Exception as e:
            await self._audit_unexpected(e, rule.id, Operation.CREATE, correlation_id)
            raise

        logger.info("rule_created", rule_id=str(rule.id), entries=len(entries))
        if self._audit_logger:
            await self._audit_logger.log_rule_created(
                rule_id=rule.id,
                user_id=rule.user_id,
                name=rule.name,
                correlation_id=correlation_id,
            )
        await self._audit_entries(rule, 0, None, entries, correlation_id)

        return ReconciliationResult(
            operation=Operation.CREATE,
            rule=rule,
            performed_at=now,
            entries_created=entries,
        )

    async def update_rule(
        self,
        user_id: str,
        rule_id: UUID,
        new_rule: RecurringRule,
        mode: Union[UpdateMode, str] = UpdateMode.REPLACE_ALL,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Overwrite a rule in place and regenerate its entries.

        Args:
            user_id: Owner of the rule
            rule_id: Rule to overwrite (the new rule's own id is ignored)
            new_rule: The new definition
            mode: REPLACE_ALL regenerates every entry from the new start
                  date; REPLACE_FUTURE_ONLY keeps entries dated on or
                  before now and regenerates only later ones
            now: Point in time separating history from the future

        Raises:
            ValidationError: New definition is invalid (nothing written)
            NotFoundError: No such rule for this user (nothing written)
            StorageError: Store failed (rule and entries unchanged)
        """
        mode = UpdateMode(mode)
        now = now or datetime.now()
        correlation_id = correlation_id or create_correlation_id()

        rule = new_rule.model_copy(update={"id": rule_id, "user_id": user_id})
        try:
            rule = self._prepare(rule)
        except ValidationError as e:
            await self._reject(e, rule, correlation_id)
            raise

        if mode == UpdateMode.REPLACE_ALL:
            after = None
            entries = self._materializer.generate(rule)
        else:
            after = history_cutoff(now)
            entries = self._materializer.generate(rule, from_date=after + timedelta(days=1))

        try:
            async with self._store.transaction() as tx:
                existing = await self._store.get_rule(tx, user_id, rule_id, for_update=True)
                if existing is None:
                    raise NotFoundError(f"Recurring rule not found: {rule_id}")
                await self._store.upsert_rule(tx, rule)
                deleted = await self._store.delete_entries_by_rule(
                    tx, user_id, rule_id, after=after
                )
                await self._store.bulk_insert_entries(tx, entries)
        except StorageError as e:
            logger.error("rule_update_failed", rule_id=str(rule_id), mode=mode.value, error=str(e))
            await self._audit_failure(e, rule_id, user_id, Operation.UPDATE, correlation_id)
            raise
        except Exception as e:
            await self._audit_unexpected(e, rule_id, Operation.UPDATE, correlation_id)
            raise

        logger.info(
            "rule_updated",
            rule_id=str(rule_id),
            mode=mode.value,
            deleted=deleted,
            created=len(entries),
        )
        if self._audit_logger:
            await self._audit_logger.log_rule_updated(
                rule_id=rule_id,
                user_id=user_id,
                mode=mode.value,
                correlation_id=correlation_id,
            )
        await self._audit_entries(rule, deleted, after, entries, correlation_id)

        return ReconciliationResult(
            operation=Operation.UPDATE,
            rule=rule,
            mode=mode.value,
            performed_at=now,
            entries_deleted=deleted,
            entries_created=entries,
        )

    async def delete_rule(
        self,
        user_id: str,
        rule_id: UUID,
        mode: Union[DeleteMode, str] = DeleteMode.REMOVE_ALL,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Delete a rule and all, or only the future, of its entries.

        Under REMOVE_FUTURE_ONLY the surviving entries keep their
        recurring_rule_id even though the rule is gone.

        Raises:
            NotFoundError: No such rule for this user (nothing written)
            StorageError: Store failed (rule and entries unchanged)
        """
        mode = DeleteMode(mode)
        now = now or datetime.now()
        correlation_id = correlation_id or create_correlation_id()
        after = history_cutoff(now) if mode == DeleteMode.REMOVE_FUTURE_ONLY else None

        try:
            async with self._store.transaction() as tx:
                rule = await self._store.get_rule(tx, user_id, rule_id, for_update=True)
                removed = await self._store.delete_rule(tx, user_id, rule_id)
                if rule is None or removed == 0:
                    raise NotFoundError(f"Recurring rule not found: {rule_id}")
                deleted = await self._store.delete_entries_by_rule(
                    tx, user_id, rule_id, after=after
                )
        except StorageError as e:
            logger.error("rule_delete_failed", rule_id=str(rule_id), mode=mode.value, error=str(e))
            await self._audit_failure(e, rule_id, user_id, Operation.DELETE, correlation_id)
            raise
        except Exception as e:
            await self._audit_unexpected(e, rule_id, Operation.DELETE, correlation_id)
            raise

        logger.info("rule_deleted", rule_id=str(rule_id), mode=mode.value, deleted=deleted)
        if self._audit_logger:
            await self._audit_logger.log_rule_deleted(
                rule_id=rule_id,
                user_id=user_id,
                mode=mode.value,
                correlation_id=correlation_id,
            )
        await self._audit_entries(rule, deleted, after, [], correlation_id)

        return ReconciliationResult(
            operation=Operation.DELETE,
            rule=rule,
            mode=mode.value,
            performed_at=now,
            entries_deleted=deleted,
        )

    async def get_rule(self, user_id: str, rule_id: UUID) -> RecurringRule:
        """
        Fetch one of a user's rules.

        Raises:
            NotFoundError: No such rule for this user
        """
        async with self._store.transaction() as tx:
            rule = await self._store.get_rule(tx, user_id, rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        return rule

    async def list_rules(self, user_id: str) -> list[RecurringRule]:
        """A user's rules, newest start date first."""
        return await self._store.list_rules(user_id)


def create_app_components(
    use_database: bool = True,
    database: Optional[SQLDatabase] = None,
) -> tuple[Reconciler, LedgerStoreInterface, AuditStorageInterface]:
    """
    Factory function to create all engine components.

    Args:
        use_database: Whether to use the configured SQL database.
                      Set to False for in-memory storage.
        database: Pre-built database wrapper (defaults to settings)

    Returns:
        (reconciler, ledger_store, audit_storage)
    """
    logging.basicConfig(level=get_settings().app.log_level)

    if use_database:
        database = database or SQLDatabase()
        database.create_tables()
        store = SQLAlchemyLedgerStore(database)
        audit_storage = SQLAlchemyAuditStorage(database)
    else:
        store = InMemoryLedgerStore()
        audit_storage = InMemoryAuditStorage()

    reconciler = Reconciler(
        store=store,
        audit_logger=AuditLogger(audit_storage),
    )
    return reconciler, store, audit_storage
