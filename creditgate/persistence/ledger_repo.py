"""
Credit Ledger Repositories.
All balance mutations go through atomic_debit / record_credit.
"""
import json
import uuid
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

from .database import Database

logger = logging.getLogger(__name__)


class TransactionKind(str, Enum):
    """Direction of a ledger mutation."""
    CREDIT = "credit"
    DEBIT = "debit"


@dataclass(frozen=True)
class CreditTransaction:
    """Immutable ledger record. Debits carry a negative amount."""
    id: str
    tenant_id: str
    amount: float
    kind: TransactionKind
    description: str
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    reference: Optional[str] = None


def _new_transaction(
    tenant_id: str,
    amount: float,
    kind: TransactionKind,
    description: str,
    metadata: Optional[Dict[str, Any]],
    created_at: datetime,
    reference: Optional[str] = None,
) -> CreditTransaction:
    return CreditTransaction(
        id=uuid.uuid4().hex,
        tenant_id=tenant_id,
        amount=amount,
        kind=kind,
        description=description,
        created_at=created_at,
        metadata=dict(metadata or {}),
        reference=reference,
    )


class BaseLedgerRepository(ABC):
    """
    Abstract credit ledger store.

    Implementations must make atomic_debit a single compare-and-update per
    tenant: two concurrent debits for the same tenant never both observe
    the same pre-update balance. A debit carrying a reference is applied at
    most once; repeating it returns the first entry.
    """

    @abstractmethod
    def get_or_create_balance(self, tenant_id: str, default_balance: float) -> float:
        """Return balance, creating the tenant with default_balance if unseen."""
        pass

    @abstractmethod
    def atomic_debit(
        self,
        tenant_id: str,
        amount: float,
        description: str,
        default_balance: float,
        metadata: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> Optional[CreditTransaction]:
        """Subtract amount if balance >= amount. Returns None if insufficient."""
        pass

    @abstractmethod
    def get_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        """Entry recorded under reference, None if there is none."""
        pass

    @abstractmethod
    def record_credit(
        self,
        tenant_id: str,
        amount: float,
        description: str,
        default_balance: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """Add amount to balance."""
        pass

    @abstractmethod
    def get_history(
        self,
        tenant_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        """Transactions for tenant, newest first."""
        pass

    @abstractmethod
    def get_totals(self, tenant_id: str) -> Tuple[float, float]:
        """Return (total credited, total debited) as positive numbers."""
        pass

    @abstractmethod
    def get_updated_at(self, tenant_id: str) -> Optional[datetime]:
        """Last balance mutation time, None for unseen tenants."""
        pass


class InMemoryLedgerRepository(BaseLedgerRepository):
    """
    In-memory ledger.
    Thread-safe with one lock per tenant, suitable for development/testing.
    """

    def __init__(self):
        self._balances: Dict[str, float] = {}
        self._updated_at: Dict[str, datetime] = {}
        self._transactions: Dict[str, List[CreditTransaction]] = {}
        self._references: Dict[str, CreditTransaction] = {}
        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()
        logger.info("LedgerRepository initialized (in-memory)")

    def _lock_for(self, tenant_id: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = self._locks[tenant_id] = Lock()
            return lock

    def _ensure(self, tenant_id: str, default_balance: float) -> float:
        # caller holds the tenant lock
        if tenant_id not in self._balances:
            self._balances[tenant_id] = default_balance
            self._updated_at[tenant_id] = datetime.utcnow()
            self._transactions[tenant_id] = []
            logger.info(f"Created balance for tenant {tenant_id} with {default_balance} credits")
        return self._balances[tenant_id]

    def get_or_create_balance(self, tenant_id: str, default_balance: float) -> float:
        with self._lock_for(tenant_id):
            return self._ensure(tenant_id, default_balance)

    def atomic_debit(
        self,
        tenant_id: str,
        amount: float,
        description: str,
        default_balance: float,
        metadata: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> Optional[CreditTransaction]:
        with self._lock_for(tenant_id):
            if reference is not None and reference in self._references:
                return self._references[reference]

            balance = self._ensure(tenant_id, default_balance)
            if balance < amount:
                return None

            now = datetime.utcnow()
            entry = _new_transaction(
                tenant_id, -amount, TransactionKind.DEBIT, description, metadata, now, reference
            )
            self._balances[tenant_id] = balance - amount
            self._updated_at[tenant_id] = now
            self._transactions[tenant_id].append(entry)
            if reference is not None:
                self._references[reference] = entry
            return entry

    def get_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        return self._references.get(reference)

    def record_credit(
        self,
        tenant_id: str,
        amount: float,
        description: str,
        default_balance: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        with self._lock_for(tenant_id):
            balance = self._ensure(tenant_id, default_balance)

            now = datetime.utcnow()
            entry = _new_transaction(tenant_id, amount, TransactionKind.CREDIT, description, metadata, now)
            self._balances[tenant_id] = balance + amount
            self._updated_at[tenant_id] = now
            self._transactions[tenant_id].append(entry)
            return entry

    def get_history(
        self,
        tenant_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        with self._lock_for(tenant_id):
            entries = list(reversed(self._transactions.get(tenant_id, [])))
        return entries[offset:offset + limit]

    def get_totals(self, tenant_id: str) -> Tuple[float, float]:
        with self._lock_for(tenant_id):
            entries = list(self._transactions.get(tenant_id, []))
        credited = sum(e.amount for e in entries if e.kind == TransactionKind.CREDIT)
        debited = -sum(e.amount for e in entries if e.kind == TransactionKind.DEBIT)
        return credited, debited

    def get_updated_at(self, tenant_id: str) -> Optional[datetime]:
        with self._lock_for(tenant_id):
            return self._updated_at.get(tenant_id)

    def clear(self) -> None:
        """Clear all records (for testing)."""
        with self._locks_guard:
            self._balances.clear()
            self._updated_at.clear()
            self._transactions.clear()
            self._references.clear()
            self._locks.clear()


class SQLiteLedgerRepository(BaseLedgerRepository):
    """
    SQLite-backed ledger.
    Debits use a conditional UPDATE so the balance check and the
    subtraction are one statement.
    """

    def __init__(self, db: Database):
        self._db = db
        logger.info(f"LedgerRepository initialized (SQLite: {db.path})")

    def _ensure(self, conn, tenant_id: str, default_balance: float, now: str) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO credit_balances (tenant_id, balance, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (tenant_id, default_balance, now, now)
        )

    def _insert_entry(self, conn, entry: CreditTransaction) -> None:
        conn.execute(
            """
            INSERT INTO credit_transactions
                (id, tenant_id, amount, kind, description, metadata, reference, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.tenant_id,
                entry.amount,
                entry.kind.value,
                entry.description,
                json.dumps(entry.metadata, default=str),
                entry.reference,
                entry.created_at.isoformat(),
            )
        )

    def get_or_create_balance(self, tenant_id: str, default_balance: float) -> float:
        now = datetime.utcnow().isoformat()

        with self._db.transaction() as conn:
            self._ensure(conn, tenant_id, default_balance, now)
            row = conn.execute(
                "SELECT balance FROM credit_balances WHERE tenant_id = ?",
                (tenant_id,)
            ).fetchone()

        return row["balance"]

    def atomic_debit(
        self,
        tenant_id: str,
        amount: float,
        description: str,
        default_balance: float,
        metadata: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> Optional[CreditTransaction]:
        now = datetime.utcnow()
        entry = _new_transaction(
            tenant_id, -amount, TransactionKind.DEBIT, description, metadata, now, reference
        )

        with self._db.transaction() as conn:
            if reference is not None:
                existing = conn.execute(
                    "SELECT * FROM credit_transactions WHERE reference = ?",
                    (reference,)
                ).fetchone()
                if existing is not None:
                    return self._row_to_entry(existing)

            self._ensure(conn, tenant_id, default_balance, now.isoformat())
            cursor = conn.execute(
                """
                UPDATE credit_balances
                SET balance = balance - ?, updated_at = ?
                WHERE tenant_id = ? AND balance >= ?
                """,
                (amount, now.isoformat(), tenant_id, amount)
            )
            if cursor.rowcount == 0:
                return None

            self._insert_entry(conn, entry)

        logger.debug(f"Ledger debit: tenant={tenant_id}, amount={amount}, id={entry.id}")
        return entry

    def get_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        rows = self._db.query(
            "SELECT * FROM credit_transactions WHERE reference = ?",
            (reference,)
        )
        return self._row_to_entry(rows[0]) if rows else None

    def record_credit(
        self,
        tenant_id: str,
        amount: float,
        description: str,
        default_balance: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        now = datetime.utcnow()
        entry = _new_transaction(tenant_id, amount, TransactionKind.CREDIT, description, metadata, now)

        with self._db.transaction() as conn:
            self._ensure(conn, tenant_id, default_balance, now.isoformat())
            conn.execute(
                """
                UPDATE credit_balances
                SET balance = balance + ?, updated_at = ?
                WHERE tenant_id = ?
                """,
                (amount, now.isoformat(), tenant_id)
            )
            self._insert_entry(conn, entry)

        logger.debug(f"Ledger credit: tenant={tenant_id}, amount={amount}, id={entry.id}")
        return entry

    def get_history(
        self,
        tenant_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        rows = self._db.query(
            """
            SELECT * FROM credit_transactions
            WHERE tenant_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ? OFFSET ?
            """,
            (tenant_id, limit, offset)
        )
        return [self._row_to_entry(row) for row in rows]

    def get_totals(self, tenant_id: str) -> Tuple[float, float]:
        rows = self._db.query(
            """
            SELECT kind, COALESCE(SUM(amount), 0) AS total
            FROM credit_transactions
            WHERE tenant_id = ?
            GROUP BY kind
            """,
            (tenant_id,)
        )
        totals = {row["kind"]: row["total"] for row in rows}
        return totals.get("credit", 0.0), -totals.get("debit", 0.0)

    def get_updated_at(self, tenant_id: str) -> Optional[datetime]:
        rows = self._db.query(
            "SELECT updated_at FROM credit_balances WHERE tenant_id = ?",
            (tenant_id,)
        )
        return datetime.fromisoformat(rows[0]["updated_at"]) if rows else None

    def _row_to_entry(self, row) -> CreditTransaction:
        """Convert database row to CreditTransaction."""
        return CreditTransaction(
            id=row["id"],
            tenant_id=row["tenant_id"],
            amount=row["amount"],
            kind=TransactionKind(row["kind"]),
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            reference=row["reference"],
        )
