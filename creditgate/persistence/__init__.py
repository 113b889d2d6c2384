"""
Persistence Module.
Provides SQLite-backed and in-memory storage for the credit ledger and the
job mirror.
"""
from .database import Database, init_schema, get_database_path
from .ledger_repo import (
    BaseLedgerRepository,
    InMemoryLedgerRepository,
    SQLiteLedgerRepository,
    CreditTransaction,
    TransactionKind,
)
from .jobs_repo import SQLiteJobRepository, JobRecord

STORAGE_BACKEND_SQLITE = "sqlite"
STORAGE_BACKEND_MEMORY = "memory"


__all__ = [
    "Database",
    "init_schema",
    "get_database_path",
    "BaseLedgerRepository",
    "InMemoryLedgerRepository",
    "SQLiteLedgerRepository",
    "CreditTransaction",
    "TransactionKind",
    "SQLiteJobRepository",
    "JobRecord",
    "STORAGE_BACKEND_SQLITE",
    "STORAGE_BACKEND_MEMORY",
]
