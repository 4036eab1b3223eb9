"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a SQLAlchemy backend; both are swappable.
"""

from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)
from recurring_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    MemoryTransaction,
)
from recurring_ledger.services.storage.sql import (
    SQLAlchemyAuditStorage,
    SQLAlchemyLedgerStore,
    SQLDatabase,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "MemoryTransaction",
    # SQL implementation
    "SQLAlchemyAuditStorage",
    "SQLAlchemyLedgerStore",
    "SQLDatabase",
]
