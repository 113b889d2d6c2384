"""
SQLite Database Connection and Schema Management.
"""
import os
import sqlite3
import logging
from pathlib import Path
from threading import RLock
from typing import Optional
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "data/creditgate.db"
MEMORY_DATABASE = ":memory:"


def get_database_path() -> str:
    """Get database path from environment or default."""
    return os.environ.get("DATABASE_PATH", DEFAULT_DATABASE_PATH)


class Database:
    """
    Owns a single SQLite connection shared by the repositories.

    All writes go through transaction(), which serializes writers on an
    RLock so that two threads never interleave BEGIN/COMMIT on the shared
    connection.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_database_path()
        self._lock = RLock()
        self._connection: Optional[sqlite3.Connection] = None

    def get_connection(self) -> sqlite3.Connection:
        """
        Get or create SQLite connection.
        Schema is created on first connect.
        """
        with self._lock:
            if self._connection is None:
                if self.path != MEMORY_DATABASE:
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)

                self._connection = sqlite3.connect(
                    self.path,
                    check_same_thread=False,
                    isolation_level=None,
                )
                self._connection.row_factory = sqlite3.Row

                if self.path != MEMORY_DATABASE:
                    self._connection.execute("PRAGMA journal_mode=WAL")
                self._connection.execute("PRAGMA busy_timeout=5000")

                logger.info(f"SQLite connection established: {self.path}")

                init_schema(self._connection)

            return self._connection

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.
        Auto-commits on success, rolls back on exception.
        """
        with self._lock:
            conn = self.get_connection()

            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def query(self, sql: str, params: tuple = ()) -> list:
        """Run a read query and return all rows."""
        with self._lock:
            return self.get_connection().execute(sql, params).fetchall()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.info("SQLite connection closed")


def init_schema(conn: sqlite3.Connection) -> None:
    """
    Initialize database schema.
    Creates tables if they don't exist.
    """
    conn.executescript("""
        -- Per-tenant credit balances
        CREATE TABLE IF NOT EXISTS credit_balances (
            tenant_id TEXT PRIMARY KEY,
            balance REAL NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        -- Append-only credit transaction log
        CREATE TABLE IF NOT EXISTS credit_transactions (
            id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            amount REAL NOT NULL,
            kind TEXT NOT NULL,
            description TEXT NOT NULL,
            metadata TEXT,
            reference TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (tenant_id) REFERENCES credit_balances(tenant_id)
        );

        -- Job mirror maintained by the queue engine adapter
        CREATE TABLE IF NOT EXISTS jobs (
            job_id TEXT PRIMARY KEY,
            queue TEXT NOT NULL,
            priority INTEGER NOT NULL,
            state TEXT NOT NULL,
            data TEXT,
            output TEXT,
            created_on TEXT NOT NULL,
            started_on TEXT,
            completed_on TEXT,
            failed_on TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_credit_transactions_tenant_id
            ON credit_transactions(tenant_id);
        CREATE INDEX IF NOT EXISTS idx_credit_transactions_created_at
            ON credit_transactions(created_at);
        CREATE INDEX IF NOT EXISTS idx_jobs_queue_state
            ON jobs(queue, state);
    """)

    # Columns added after the first release (migration)
    for statement in (
        "ALTER TABLE credit_transactions ADD COLUMN reference TEXT",
        "ALTER TABLE jobs ADD COLUMN retry_count INTEGER NOT NULL DEFAULT 0",
    ):
        try:
            conn.execute(statement)
        except sqlite3.OperationalError:
            pass  # Column already exists

    # One debit per settled job
    conn.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_credit_transactions_reference
            ON credit_transactions(reference) WHERE reference IS NOT NULL
    """)

    logger.info("Database schema initialized")
