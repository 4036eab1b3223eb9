"""
SQL Storage Implementation

DESIGN DECISION: A relational database is the production backend because
the engine needs real transactions: a rule, the deletion of its stale
entries and the insertion of regenerated ones must commit together.

Any SQLAlchemy-supported database works. PostgreSQL is the intended
target (row locks on the rule make concurrent edits of one rule
serialize); SQLite is fine for single-user installs and tests.

TRADEOFFS:
- Calls are synchronous under async methods (one request at a time per
  session; the engine never shares a session between requests)
- Entry rows hold no foreign key to their rule, since future-only deletes
  deliberately leave dangling back-references
"""

from datetime import date, datetime
from pathlib import Path
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    create_engine,
    delete,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential

from recurring_ledger.config import get_settings
from recurring_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from recurring_ledger.models.rule import Interval, LedgerEntry, RecurringRule
from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

Base = declarative_base()


class RuleRow(Base):
    """Recurring rule table."""
    __tablename__ = "recurring_rules"

    id = Column(Uuid, primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    category = Column(String(255), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    start_date = Column(Date, nullable=False)
    interval = Column(String(20), nullable=False)  # daily, weekly, monthly, yearly
    occurrence_count = Column(Integer, nullable=False, default=0)  # 0 = open-ended
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EntryRow(Base):
    """Ledger entry table. recurring_rule_id may outlive its rule."""
    __tablename__ = "ledger_entries"

    id = Column(Uuid, primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    recurring_rule_id = Column(Uuid, nullable=True)
    name = Column(String(255), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    category = Column(String(255), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    entry_date = Column("date", Date, nullable=False, index=True)

    __table_args__ = (
        Index("idx_ledger_entries_user_rule", "user_id", "recurring_rule_id"),
    )


class AuditRow(Base):
    """Append-only audit log table."""
    __tablename__ = "audit_events"

    event_id = Column(Uuid, primary_key=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    user_id = Column(String(255), nullable=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Uuid, nullable=True)
    correlation_id = Column(Uuid, nullable=True)
    description = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    error_code = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    is_user_action = Column(Boolean, default=False)

    __table_args__ = (
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
    )


class SQLDatabase:
    """
    Engine and session factory wrapper.

    Handles connection verification with retry, and schema creation.
    """

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            settings = get_settings().database
            engine = create_engine(
                settings.url,
                pool_pre_ping=settings.pool_pre_ping,
                echo=settings.echo,
            )
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def session(self) -> Session:
        return self._session_factory()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> None:
        """Verify the database is reachable."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as e:
            raise ConnectionError(f"Failed to connect to database: {e}")

    def _ensure_sqlite_directory(self) -> None:
        url = self._engine.url
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Connect and create any missing tables."""
        self._ensure_sqlite_directory()
        self.connect()
        Base.metadata.create_all(bind=self._engine)
        logger.info("database_ready", url=self._engine.url.render_as_string(hide_password=True))


class SQLAlchemyLedgerStore(LedgerStoreInterface):
    """
    SQLAlchemy implementation of the ledger store.

    Each transaction handle is a Session with an open transaction.
    """

    def __init__(self, database: Optional[SQLDatabase] = None):
        self._db = database or SQLDatabase()

    def _rule_to_row(self, rule: RecurringRule) -> dict:
        """Convert a RecurringRule to column values."""
        return {
            "id": rule.id,
            "user_id": rule.user_id,
            "name": rule.name,
            "amount": rule.amount,
            "currency": rule.currency,
            "category": rule.category,
            "tags": list(rule.tags),
            "start_date": rule.start_date,
            "interval": Interval(rule.interval).value,
            "occurrence_count": rule.occurrence_count,
        }

    def _row_to_rule(self, row: RuleRow) -> RecurringRule:
        return RecurringRule(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            amount=row.amount,
            currency=row.currency,
            category=row.category,
            tags=list(row.tags or []),
            start_date=row.start_date,
            interval=Interval(row.interval),
            occurrence_count=row.occurrence_count,
        )

    def _entry_to_row(self, entry: LedgerEntry) -> dict:
        """Convert a LedgerEntry to column values."""
        return {
            "id": entry.id,
            "user_id": entry.user_id,
            "recurring_rule_id": entry.recurring_rule_id,
            "name": entry.name,
            "amount": entry.amount,
            "currency": entry.currency,
            "category": entry.category,
            "tags": list(entry.tags),
            "entry_date": entry.date,
        }

    def _row_to_entry(self, row: EntryRow) -> LedgerEntry:
        return LedgerEntry(
            id=row.id,
            user_id=row.user_id,
            recurring_rule_id=row.recurring_rule_id,
            name=row.name,
            amount=row.amount,
            currency=row.currency,
            category=row.category,
            tags=list(row.tags or []),
            date=row.entry_date,
        )

    async def begin(self) -> Session:
        try:
            session = self._db.session()
            session.begin()
            return session
        except OperationalError as e:
            raise ConnectionError(f"Failed to open transaction: {e}")

    async def commit(self, tx: Session) -> None:
        try:
            tx.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to commit transaction: {e}")
        tx.close()

    async def rollback(self, tx: Session) -> None:
        try:
            tx.rollback()
        finally:
            tx.close()

    async def get_rule(
        self,
        tx: Session,
        user_id: str,
        rule_id: UUID,
        for_update: bool = False,
    ) -> Optional[RecurringRule]:
        stmt = select(RuleRow).where(RuleRow.id == rule_id, RuleRow.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            row = tx.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get rule: {e}")
        return self._row_to_rule(row) if row is not None else None

    async def upsert_rule(self, tx: Session, rule: RecurringRule) -> None:
        values = self._rule_to_row(rule)
        try:
            row = tx.get(RuleRow, rule.id)
            if row is None:
                tx.add(RuleRow(**values))
            elif row.user_id != rule.user_id:
                raise DuplicateError(f"Rule ID already in use: {rule.id}")
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            tx.flush()
        except IntegrityError as e:
            raise DuplicateError(f"Failed to save rule: {e}")
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save rule: {e}")

    async def delete_rule(self, tx: Session, user_id: str, rule_id: UUID) -> int:
        stmt = delete(RuleRow).where(RuleRow.id == rule_id, RuleRow.user_id == user_id)
        try:
            result = tx.execute(stmt, execution_options={"synchronize_session": False})
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete rule: {e}")
        return result.rowcount

    async def delete_entries_by_rule(
        self,
        tx: Session,
        user_id: str,
        rule_id: UUID,
        after: Optional[date] = None,
    ) -> int:
        stmt = delete(EntryRow).where(
            EntryRow.user_id == user_id,
            EntryRow.recurring_rule_id == rule_id,
        )
        if after is not None:
            stmt = stmt.where(EntryRow.entry_date > after)
        try:
            result = tx.execute(stmt, execution_options={"synchronize_session": False})
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete entries: {e}")
        return result.rowcount

    async def bulk_insert_entries(
        self,
        tx: Session,
        entries: list[LedgerEntry],
    ) -> int:
        if not entries:
            return 0
        rows = [self._entry_to_row(entry) for entry in entries]
        try:
            tx.execute(insert(EntryRow), rows)
        except IntegrityError as e:
            raise DuplicateError(f"Failed to insert entries: {e}")
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert entries: {e}")
        return len(rows)

    async def list_rules(self, user_id: str) -> list[RecurringRule]:
        stmt = (
            select(RuleRow)
            .where(RuleRow.user_id == user_id)
            .order_by(RuleRow.start_date.desc())
        )
        try:
            with self._db.session() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._row_to_rule(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list rules: {e}")

    async def list_entries(
        self,
        user_id: str,
        rule_id: Optional[UUID] = None,
    ) -> list[LedgerEntry]:
        stmt = select(EntryRow).where(EntryRow.user_id == user_id)
        if rule_id is not None:
            stmt = stmt.where(EntryRow.recurring_rule_id == rule_id)
        stmt = stmt.order_by(EntryRow.entry_date)
        try:
            with self._db.session() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._row_to_entry(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list entries: {e}")


class SQLAlchemyAuditStorage(AuditStorageInterface):
    """
    SQLAlchemy implementation of audit log storage.

    Audit events are append-only and written in their own short
    transaction, never inside a reconciliation transaction, so a rollback
    never erases the record of why it happened.
    """

    def __init__(self, database: Optional[SQLDatabase] = None):
        self._db = database or SQLDatabase()

    def _event_to_row(self, event: AuditEvent) -> AuditRow:
        return AuditRow(
            event_id=event.event_id,
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            user_id=event.user_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            correlation_id=event.correlation_id,
            description=event.description,
            details=event.details,
            error_code=event.error_code,
            error_message=event.error_message,
            is_user_action=event.is_user_action,
        )

    def _row_to_event(self, row: AuditRow) -> AuditEvent:
        return AuditEvent(
            event_id=row.event_id,
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            user_id=row.user_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            correlation_id=row.correlation_id,
            description=row.description,
            details=row.details or {},
            error_code=row.error_code,
            error_message=row.error_message,
            is_user_action=bool(row.is_user_action),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            with self._db.session() as session:
                session.add(self._event_to_row(event))
                session.commit()
            return True
        except SQLAlchemyError as e:
            # Audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        stmt = (
            select(AuditRow)
            .where(AuditRow.entity_type == entity_type, AuditRow.entity_id == entity_id)
            .order_by(AuditRow.timestamp)
        )
        try:
            with self._db.session() as session:
                return [self._row_to_event(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditRow).order_by(AuditRow.timestamp.desc()).limit(limit)
        try:
            with self._db.session() as session:
                return [self._row_to_event(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}")
