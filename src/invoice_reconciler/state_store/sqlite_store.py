"""
SQLite-based state store implementation.

Tables:
- invoice_cache: One row per scanned remote file per scope
- bank_accounts / transactions: Recorded bank data (written by sync jobs)
- folder_mappings: Per-user invoice folders (e.g. one per year)
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..schemas import (
    CachedInvoiceRecord,
    ExtractionMethod,
    InvoiceStats,
    Scope,
    TransactionCandidate,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _dec(value: Any) -> Decimal | None:
    """Decimal from a stored amount (text or number)."""
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _dec_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _invoice_from_row(row: sqlite3.Row) -> CachedInvoiceRecord:
    """Create a CachedInvoiceRecord from a database row."""
    return CachedInvoiceRecord(
        id=row["id"],
        user_id=row["user_id"],
        company_id=row["company_id"],
        drive_file_id=row["drive_file_id"],
        filename=row["filename"],
        extraction_method=ExtractionMethod(row["extraction_method"]),
        vendor=row["vendor"],
        amount=_dec(row["amount"]),
        tax_amount=_dec(row["tax_amount"]),
        tax_rate=_dec(row["tax_rate"]),
        date=row["date"],
        invoice_number=row["invoice_number"],
        raw_text=row["raw_text"],
        transaction_id=row["transaction_id"],
        match_confidence=row["match_confidence"],
        scanned_at=row["scanned_at"],
    )


def _scope_clause(scope: Scope, alias: str = "") -> tuple[str, list[Any]]:
    """WHERE fragment selecting a scope's rows (NULL company = personal)."""
    prefix = f"{alias}." if alias else ""
    if scope.company_id is None:
        return f"{prefix}user_id = ? AND {prefix}company_id IS NULL", [scope.user_id]
    return f"{prefix}user_id = ? AND {prefix}company_id = ?", [scope.user_id, scope.company_id]


class StateStore:
    """
    SQLite-based state store for the reconciler.

    Provides persistent tracking of:
    - Cached invoices (the scan idempotence record)
    - Bank accounts and transactions (candidate source for matching)
    - Folder mappings

    Every operation opens its own short-lived connection, so one store can
    be shared by concurrent scan workers.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

            # Bank data (owned by external sync jobs)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    company_id INTEGER,
                    name TEXT,
                    type TEXT NOT NULL DEFAULT 'checking'
                )
            """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bank_account_id INTEGER NOT NULL REFERENCES bank_accounts(id),
                    label TEXT,
                    amount TEXT NOT NULL,
                    date TEXT NOT NULL
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)"
            )

            # Invoice cache
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoice_cache (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    company_id INTEGER,
                    transaction_id INTEGER,
                    drive_file_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    vendor TEXT,
                    amount TEXT,
                    tax_amount TEXT,
                    tax_rate TEXT,
                    date TEXT,
                    invoice_number TEXT,
                    match_confidence REAL,
                    raw_text TEXT,
                    extraction_method TEXT NOT NULL,
                    scanned_at TEXT NOT NULL
                )
            """
            )
            # NULL company ids would never collide in a plain UNIQUE constraint
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_invoice_cache_scope_file
                ON invoice_cache(user_id, COALESCE(company_id, 0), drive_file_id)
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_invoice_cache_tx ON invoice_cache(transaction_id)"
            )

            # Folder mappings
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS folder_mappings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    purpose TEXT NOT NULL,
                    folder_id TEXT NOT NULL,
                    folder_path TEXT,
                    updated_at TEXT NOT NULL,
                    UNIQUE(user_id, purpose)
                )
            """
            )

    # === Invoice cache ===

    def invoice_exists(self, scope: Scope, drive_file_id: str) -> bool:
        """Check if a remote file has already been cached for a scope."""
        where, params = _scope_clause(scope)
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT 1 FROM invoice_cache WHERE {where} AND drive_file_id = ?",
                (*params, drive_file_id),
            ).fetchone()
            return row is not None

    def insert_invoice(self, record: CachedInvoiceRecord) -> bool:
        """
        Insert a cache row unless one already exists for (scope, file).

        Sets ``record.id`` and ``record.scanned_at`` on success.

        Returns:
            True if inserted, False if the row already existed
        """
        scanned_at = record.scanned_at or _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO invoice_cache
                (user_id, company_id, transaction_id, drive_file_id, filename, vendor,
                 amount, tax_amount, tax_rate, date, invoice_number, match_confidence,
                 raw_text, extraction_method, scanned_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    record.user_id,
                    record.company_id,
                    record.transaction_id,
                    record.drive_file_id,
                    record.filename,
                    record.vendor,
                    _dec_str(record.amount),
                    _dec_str(record.tax_amount),
                    _dec_str(record.tax_rate),
                    record.date,
                    record.invoice_number,
                    record.match_confidence,
                    record.raw_text,
                    record.extraction_method.value,
                    scanned_at,
                ),
            )
            if cursor.rowcount != 1:
                return False
            record.id = cursor.lastrowid
            record.scanned_at = scanned_at
            return True

    def delete_invoices_for_scope(self, scope: Scope) -> int:
        """Delete every cache row of a scope (forced re-scan). Returns count."""
        where, params = _scope_clause(scope)
        with self._transaction() as conn:
            cursor = conn.execute(f"DELETE FROM invoice_cache WHERE {where}", params)
            return cursor.rowcount

    def get_invoice(self, invoice_id: int) -> CachedInvoiceRecord | None:
        """Get a cache row by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM invoice_cache WHERE id = ?", (invoice_id,)
            ).fetchone()
            return _invoice_from_row(row) if row else None

    def list_invoices(
        self,
        scope: Scope,
        matched: bool | None = None,
    ) -> list[CachedInvoiceRecord]:
        """
        List a scope's cached invoices, newest invoice date first.

        Args:
            scope: Owning scope
            matched: True for linked only, False for unlinked only, None for all
        """
        where, params = _scope_clause(scope)
        if matched is True:
            where += " AND transaction_id IS NOT NULL"
        elif matched is False:
            where += " AND transaction_id IS NULL"

        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM invoice_cache WHERE {where} ORDER BY date DESC, id DESC",
                params,
            ).fetchall()
            return [_invoice_from_row(row) for row in rows]

    def match_invoice(self, invoice_id: int, transaction_id: int, confidence: float = 1.0) -> bool:
        """Link an invoice to a transaction (manual matches get confidence 1.0)."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE invoice_cache SET transaction_id = ?, match_confidence = ? WHERE id = ?",
                (transaction_id, confidence, invoice_id),
            )
            return cursor.rowcount > 0

    def unmatch_invoice(self, invoice_id: int) -> bool:
        """Clear an invoice's link and confidence."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE invoice_cache SET transaction_id = NULL, match_confidence = NULL
                WHERE id = ?
            """,
                (invoice_id,),
            )
            return cursor.rowcount > 0

    def link_invoice(self, scope: Scope, invoice_id: int, transaction_id: int) -> bool:
        """
        Make ``invoice_id`` the only invoice of the user linked to a transaction.

        Any other invoice of the same user linked to that transaction is
        unlinked first, in the same database transaction.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id FROM invoice_cache WHERE id = ? AND user_id = ?",
                (invoice_id, scope.user_id),
            ).fetchone()
            if row is None:
                return False

            conn.execute(
                """
                UPDATE invoice_cache SET transaction_id = NULL, match_confidence = NULL
                WHERE user_id = ? AND transaction_id = ? AND id != ?
            """,
                (scope.user_id, transaction_id, invoice_id),
            )
            conn.execute(
                "UPDATE invoice_cache SET transaction_id = ?, match_confidence = 1.0 WHERE id = ?",
                (transaction_id, invoice_id),
            )
            return True

    def delete_invoice(self, invoice_id: int) -> bool:
        """Delete one cache row (the file will be re-scanned next time)."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM invoice_cache WHERE id = ?", (invoice_id,))
            return cursor.rowcount > 0

    def get_invoice_stats(self, scope: Scope) -> InvoiceStats:
        """Match coverage for a scope."""
        where, params = _scope_clause(scope)
        with self._transaction() as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN transaction_id IS NOT NULL THEN 1 ELSE 0 END) AS matched
                FROM invoice_cache WHERE {where}
            """,
                params,
            ).fetchone()
            methods = conn.execute(
                f"""
                SELECT extraction_method, COUNT(*) AS count
                FROM invoice_cache WHERE {where}
                GROUP BY extraction_method
            """,
                params,
            ).fetchall()

        total = row["total"] or 0
        matched = row["matched"] or 0
        return InvoiceStats(
            total=total,
            matched=matched,
            unmatched=total - matched,
            match_rate=round(matched * 100 / total) if total else 0,
            by_method={m["extraction_method"]: m["count"] for m in methods},
        )

    # === Transactions ===

    def add_bank_account(
        self,
        user_id: int,
        company_id: int | None = None,
        account_type: str = "checking",
        name: str | None = None,
    ) -> int:
        """Register a bank account. Returns its ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO bank_accounts (user_id, company_id, name, type) VALUES (?, ?, ?, ?)",
                (user_id, company_id, name, account_type),
            )
            return cursor.lastrowid

    def add_transaction(
        self,
        bank_account_id: int,
        label: str,
        amount: Decimal | str,
        tx_date: str,
    ) -> int:
        """Record a bank transaction (signed amount, YYYY-MM-DD). Returns its ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO transactions (bank_account_id, label, amount, date)
                VALUES (?, ?, ?, ?)
            """,
                (bank_account_id, label, str(amount), tx_date),
            )
            return cursor.lastrowid

    def get_transaction(self, transaction_id: int) -> TransactionCandidate | None:
        """Get a transaction by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, label, amount, date FROM transactions WHERE id = ?",
                (transaction_id,),
            ).fetchone()
            if row is None:
                return None
            return TransactionCandidate(
                id=row["id"], label=row["label"] or "", amount=_dec(row["amount"]), date=row["date"]
            )

    def query_candidates(
        self,
        scope: Scope,
        date_from: str,
        date_to: str,
        exclude_linked: bool = True,
        excluded_label_prefixes: list[str] | tuple[str, ...] = (),
        limit: int = 50,
    ) -> list[TransactionCandidate]:
        """
        Transactions eligible for matching within a date window (inclusive).

        Personal scope reads every account of the user; company scope only
        that company's checking accounts. Results are ordered by distance to
        the window centre before the limit is applied.

        Args:
            scope: Owning scope
            date_from: First date (YYYY-MM-DD)
            date_to: Last date (YYYY-MM-DD)
            exclude_linked: Skip transactions already linked to a cached invoice
            excluded_label_prefixes: Case-insensitive label prefixes to skip
            limit: Maximum number of candidates
        """
        start = date.fromisoformat(date_from)
        end = date.fromisoformat(date_to)
        centre = (start + (end - start) / 2).isoformat()

        conditions = ["ba.user_id = ?", "t.date BETWEEN ? AND ?"]
        params: list[Any] = [scope.user_id, date_from, date_to]

        if scope.company_id is not None:
            conditions.append("ba.company_id = ? AND ba.type = 'checking'")
            params.append(scope.company_id)

        if exclude_linked:
            conditions.append(
                "t.id NOT IN (SELECT transaction_id FROM invoice_cache "
                "WHERE transaction_id IS NOT NULL)"
            )

        for prefix in excluded_label_prefixes:
            conditions.append("UPPER(COALESCE(t.label, '')) NOT LIKE ?")
            params.append(f"{prefix.upper()}%")

        params.extend([centre, limit])
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT t.id, t.label, t.amount, t.date
                FROM transactions t
                JOIN bank_accounts ba ON t.bank_account_id = ba.id
                WHERE {" AND ".join(conditions)}
                ORDER BY ABS(julianday(t.date) - julianday(?)), t.id
                LIMIT ?
            """,
                params,
            ).fetchall()

        return [
            TransactionCandidate(
                id=row["id"],
                label=row["label"] or "",
                amount=_dec(row["amount"]),
                date=row["date"],
            )
            for row in rows
        ]

    # === Folder mappings ===

    def set_folder_mapping(
        self,
        user_id: int,
        purpose: str,
        folder_id: str,
        folder_path: str | None = None,
    ) -> None:
        """Insert or replace the folder for (user, purpose)."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO folder_mappings (user_id, purpose, folder_id, folder_path, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, purpose) DO UPDATE SET
                    folder_id = excluded.folder_id,
                    folder_path = excluded.folder_path,
                    updated_at = excluded.updated_at
            """,
                (user_id, purpose, folder_id, folder_path, _now()),
            )

    def get_folder_mapping(self, user_id: int, purpose: str) -> dict[str, Any] | None:
        """Get the folder mapped for (user, purpose)."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM folder_mappings WHERE user_id = ? AND purpose = ?",
                (user_id, purpose),
            ).fetchone()
            return dict(row) if row else None

    def delete_folder_mapping(self, user_id: int, purpose: str) -> bool:
        """Remove a folder mapping."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM folder_mappings WHERE user_id = ? AND purpose = ?",
                (user_id, purpose),
            )
            return cursor.rowcount > 0
