"""Services package."""

from recurring_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
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

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "SQLAlchemyAuditStorage",
    "SQLAlchemyLedgerStore",
    "SQLDatabase",
    "StorageError",
]
