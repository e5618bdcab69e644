"""SQLite database operations for FinWise."""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from uuid import UUID

from finwise.models import (
    DEFAULT_CATEGORIES,
    UNKNOWN_MERCHANT,
    ExchangeRateCacheEntry,
    Frequency,
    RecurringTransaction,
    Transaction,
    TransactionType,
)

# SQL schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    raw_text TEXT NOT NULL,
    text_hash TEXT NOT NULL,
    source_id TEXT,
    amount REAL,
    type TEXT NOT NULL,
    merchant TEXT NOT NULL,
    category TEXT NOT NULL,
    account_suffix TEXT,
    balance REAL,
    timestamp TEXT NOT NULL,
    txn_date TEXT NOT NULL,
    is_parsed INTEGER NOT NULL DEFAULT 0,
    is_manually_edited INTEGER NOT NULL DEFAULT 0,
    transaction_id TEXT,
    extraction_method TEXT,
    confidence REAL NOT NULL DEFAULT 0,
    extraction_error TEXT,
    original_currency TEXT,
    original_amount REAL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_transactions_text_hash ON transactions(text_hash);
CREATE INDEX IF NOT EXISTS idx_transactions_txn_id ON transactions(transaction_id);
CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(txn_date);
CREATE INDEX IF NOT EXISTS idx_transactions_merchant ON transactions(merchant);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category);

CREATE TABLE IF NOT EXISTS exchange_rates (
    currency TEXT PRIMARY KEY,
    rate REAL NOT NULL,
    last_updated TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recurring_transactions (
    id TEXT PRIMARY KEY,
    merchant TEXT NOT NULL UNIQUE,
    category TEXT NOT NULL,
    average_amount REAL NOT NULL,
    average_interval_days REAL NOT NULL,
    first_occurrence TEXT NOT NULL,
    last_occurrence TEXT NOT NULL,
    next_expected_date TEXT,
    occurrence_count INTEGER NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    frequency TEXT NOT NULL,
    confidence REAL NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_recurring_next ON recurring_transactions(next_expected_date);

CREATE TABLE IF NOT EXISTS categories (
    name TEXT PRIMARY KEY,
    is_active INTEGER NOT NULL DEFAULT 1,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS processed_messages (
    source_id TEXT PRIMARY KEY,
    transaction_id TEXT,
    processed_at TEXT NOT NULL
);
"""

TRANSACTION_COLUMNS = """
    id, raw_text, source_id, amount, type, merchant, category, account_suffix,
    balance, timestamp, is_parsed, is_manually_edited, transaction_id,
    extraction_method, confidence, extraction_error, original_currency, original_amount
"""


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema and seed default categories."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.executemany(
                "INSERT OR IGNORE INTO categories (name, is_active, sort_order) VALUES (?, 1, ?)",
                [(name, i) for i, name in enumerate(DEFAULT_CATEGORIES)],
            )
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # Transactions

    def add_transaction(self, transaction: Transaction, text_hash: str) -> None:
        """Insert a transaction. Identity checks are the caller's job."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO transactions (id, raw_text, text_hash, source_id, amount,
                type, merchant, category, account_suffix, balance, timestamp, txn_date,
                is_parsed, is_manually_edited, transaction_id, extraction_method,
                confidence, extraction_error, original_currency, original_amount)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(transaction.id),
                    transaction.raw_text,
                    text_hash,
                    transaction.source_id,
                    transaction.amount,
                    transaction.type.value,
                    transaction.merchant,
                    transaction.category,
                    transaction.account_suffix,
                    transaction.balance,
                    transaction.timestamp.isoformat(),
                    transaction.timestamp.date().isoformat(),
                    int(transaction.is_parsed),
                    int(transaction.is_manually_edited),
                    transaction.transaction_id,
                    transaction.extraction_method,
                    transaction.confidence,
                    transaction.extraction_error,
                    transaction.original_currency,
                    transaction.original_amount,
                ),
            )
            conn.commit()

    def find_by_text_hash(self, text_hash: str) -> Transaction | None:
        """Find a stored transaction with identical raw text."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE text_hash = ? LIMIT 1",
                (text_hash,),
            )
            row = cursor.fetchone()
            return self._row_to_transaction(row) if row else None

    def find_by_transaction_id(self, transaction_id: str) -> Transaction | None:
        """Find a stored transaction by external reference id."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE transaction_id = ? LIMIT 1",
                (transaction_id,),
            )
            row = cursor.fetchone()
            return self._row_to_transaction(row) if row else None

    def find_same_day_match(self, transaction: Transaction) -> Transaction | None:
        """Find a transaction on the same calendar day with equal amount, merchant, type and account."""
        if transaction.amount is None:
            return None
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT {TRANSACTION_COLUMNS} FROM transactions
                WHERE txn_date = ? AND type = ? AND merchant = ?
                  AND account_suffix IS ? AND amount IS NOT NULL
                  AND ABS(amount - ?) < 0.005
                LIMIT 1
                """,
                (
                    transaction.timestamp.date().isoformat(),
                    transaction.type.value,
                    transaction.merchant,
                    transaction.account_suffix,
                    transaction.amount,
                ),
            )
            row = cursor.fetchone()
            return self._row_to_transaction(row) if row else None

    def get_transaction_by_id(self, transaction_id: UUID) -> Transaction | None:
        """Get a single transaction by ID."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ?",
                (str(transaction_id),),
            )
            row = cursor.fetchone()
            return self._row_to_transaction(row) if row else None

    def get_all_transactions(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        merchant: str | None = None,
        category: str | None = None,
        txn_type: TransactionType | None = None,
        limit: int = 1000,
        ascending: bool = False,
    ) -> list[Transaction]:
        """Get transactions with optional filters, ordered by time."""
        query = f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE 1=1"
        params: list = []

        if start_date:
            query += " AND txn_date >= ?"
            params.append(start_date.isoformat())
        if end_date:
            query += " AND txn_date <= ?"
            params.append(end_date.isoformat())
        if merchant:
            query += " AND merchant = ?"
            params.append(merchant)
        if category:
            query += " AND category = ?"
            params.append(category)
        if txn_type:
            query += " AND type = ?"
            params.append(txn_type.value)

        query += f" ORDER BY timestamp {'ASC' if ascending else 'DESC'} LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def get_transactions_chronological(self) -> list[Transaction]:
        """Full scan of all transactions, oldest first."""
        with self._get_connection() as conn:
            cursor = conn.execute(f"SELECT {TRANSACTION_COLUMNS} FROM transactions ORDER BY timestamp ASC")
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def update_transaction(
        self,
        transaction_id: UUID,
        category: str | None = None,
        merchant: str | None = None,
    ) -> Transaction | None:
        """Apply a user edit (category and/or merchant) and flag the record as manually edited."""
        updates = ["is_manually_edited = 1"]
        params: list = []
        if category is not None:
            updates.append("category = ?")
            params.append(category)
        if merchant is not None:
            updates.append("merchant = ?")
            params.append(merchant)
        params.append(str(transaction_id))

        with self._get_connection() as conn:
            cursor = conn.execute(f"UPDATE transactions SET {', '.join(updates)} WHERE id = ?", params)
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_transaction_by_id(transaction_id)

    def delete_transaction(self, transaction_id: UUID) -> bool:
        """Delete one transaction. Returns True if a row was removed."""
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (str(transaction_id),))
            conn.commit()
            return cursor.rowcount > 0

    def delete_transactions_in_range(self, start_date: date, end_date: date) -> int:
        """Delete all transactions in an inclusive date range. Returns the number removed."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM transactions WHERE txn_date >= ? AND txn_date <= ?",
                (start_date.isoformat(), end_date.isoformat()),
            )
            conn.commit()
            return cursor.rowcount

    def get_transaction_count(self) -> int:
        """Get total number of transactions."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) as count FROM transactions")
            return cursor.fetchone()["count"]

    # Aggregates

    def get_category_totals(self, start_date: date, end_date: date) -> dict[str, float]:
        """Debit totals by category in an inclusive date range, largest first."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT category, SUM(amount) as total
                FROM transactions
                WHERE txn_date >= ? AND txn_date <= ? AND type = ? AND amount IS NOT NULL
                GROUP BY category
                ORDER BY total DESC
                """,
                (start_date.isoformat(), end_date.isoformat(), TransactionType.DEBIT.value),
            )
            return {row["category"]: row["total"] for row in cursor.fetchall()}

    def get_total(self, txn_type: TransactionType, start_date: date, end_date: date) -> float:
        """Sum of amounts of one type in an inclusive date range."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT SUM(amount) as total
                FROM transactions
                WHERE txn_date >= ? AND txn_date <= ? AND type = ? AND amount IS NOT NULL
                """,
                (start_date.isoformat(), end_date.isoformat(), txn_type.value),
            )
            return cursor.fetchone()["total"] or 0.0

    def get_latest_balance(self) -> float | None:
        """Balance reported by the most recent transaction that carries one."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT balance FROM transactions WHERE balance IS NOT NULL ORDER BY timestamp DESC LIMIT 1"
            )
            row = cursor.fetchone()
            return row["balance"] if row else None

    def get_unique_accounts(self) -> dict[str, int]:
        """Four-digit card/account suffixes with their transaction counts, most used first."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT account_suffix, COUNT(*) as count
                FROM transactions
                WHERE account_suffix GLOB '[0-9][0-9][0-9][0-9]'
                GROUP BY account_suffix
                ORDER BY count DESC, account_suffix
                """
            )
            return {row["account_suffix"]: row["count"] for row in cursor.fetchall()}

    def get_top_merchants(self, limit: int = 10) -> list[str]:
        """Merchants by transaction count, excluding unrecognized ones."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT merchant, COUNT(*) as count
                FROM transactions
                WHERE merchant != ?
                GROUP BY merchant
                ORDER BY count DESC, merchant
                LIMIT ?
                """,
                (UNKNOWN_MERCHANT, limit),
            )
            return [row["merchant"] for row in cursor.fetchall()]

    def get_available_months(self) -> list[date]:
        """First day of every month that has transactions, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT DISTINCT substr(txn_date, 1, 7) as month FROM transactions ORDER BY month DESC"
            )
            return [date.fromisoformat(f"{row['month']}-01") for row in cursor.fetchall()]

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        """Convert a database row to a Transaction model."""
        return Transaction(
            id=UUID(row["id"]),
            raw_text=row["raw_text"],
            source_id=row["source_id"],
            amount=row["amount"],
            type=TransactionType(row["type"]),
            merchant=row["merchant"],
            category=row["category"],
            account_suffix=row["account_suffix"],
            balance=row["balance"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            is_parsed=bool(row["is_parsed"]),
            is_manually_edited=bool(row["is_manually_edited"]),
            transaction_id=row["transaction_id"],
            extraction_method=row["extraction_method"] or "deterministic",
            confidence=row["confidence"],
            extraction_error=row["extraction_error"],
            original_currency=row["original_currency"],
            original_amount=row["original_amount"],
        )

    # Exchange rates

    def get_exchange_rates(self) -> list[ExchangeRateCacheEntry]:
        """Get every cached exchange rate."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT currency, rate, last_updated FROM exchange_rates ORDER BY currency")
            return [
                ExchangeRateCacheEntry(
                    currency=row["currency"],
                    rate=row["rate"],
                    last_updated=datetime.fromisoformat(row["last_updated"]),
                )
                for row in cursor.fetchall()
            ]

    def replace_exchange_rates(self, rates: dict[str, float], updated_at: datetime) -> None:
        """Replace the cached rate table wholesale."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM exchange_rates")
            conn.executemany(
                "INSERT INTO exchange_rates (currency, rate, last_updated) VALUES (?, ?, ?)",
                [(code, rate, updated_at.isoformat()) for code, rate in rates.items()],
            )
            conn.commit()

    def clear_exchange_rates(self) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM exchange_rates")
            conn.commit()

    # Recurring transactions

    def upsert_recurring(self, recurring: RecurringTransaction) -> RecurringTransaction:
        """Insert or replace a recurring pattern keyed by merchant.

        An existing row keeps its id and created_at.
        """
        existing = self.get_recurring_by_merchant(recurring.merchant)
        if existing:
            recurring = recurring.model_copy(
                update={"id": existing.id, "created_at": existing.created_at, "updated_at": datetime.now()}
            )
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO recurring_transactions (id, merchant, category,
                average_amount, average_interval_days, first_occurrence, last_occurrence,
                next_expected_date, occurrence_count, is_active, frequency, confidence,
                created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(recurring.id),
                    recurring.merchant,
                    recurring.category,
                    recurring.average_amount,
                    recurring.average_interval_days,
                    recurring.first_occurrence.isoformat(),
                    recurring.last_occurrence.isoformat(),
                    recurring.next_expected_date.isoformat() if recurring.next_expected_date else None,
                    recurring.occurrence_count,
                    int(recurring.is_active),
                    recurring.frequency.value,
                    recurring.confidence,
                    recurring.created_at.isoformat(),
                    recurring.updated_at.isoformat(),
                ),
            )
            conn.commit()
        return recurring

    def get_recurring_by_merchant(self, merchant: str) -> RecurringTransaction | None:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM recurring_transactions WHERE merchant = ?", (merchant,))
            row = cursor.fetchone()
            return self._row_to_recurring(row) if row else None

    def get_recurring_by_id(self, recurring_id: UUID) -> RecurringTransaction | None:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM recurring_transactions WHERE id = ?", (str(recurring_id),))
            row = cursor.fetchone()
            return self._row_to_recurring(row) if row else None

    def get_recurring(self, active_only: bool = True) -> list[RecurringTransaction]:
        """Get recurring patterns ordered by next expected date."""
        query = "SELECT * FROM recurring_transactions"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY next_expected_date ASC"
        with self._get_connection() as conn:
            cursor = conn.execute(query)
            return [self._row_to_recurring(row) for row in cursor.fetchall()]

    def set_recurring_active(self, recurring_id: UUID, is_active: bool) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE recurring_transactions SET is_active = ?, updated_at = ? WHERE id = ?",
                (int(is_active), datetime.now().isoformat(), str(recurring_id)),
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_recurring(self, recurring_id: UUID) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM recurring_transactions WHERE id = ?", (str(recurring_id),))
            conn.commit()
            return cursor.rowcount > 0

    def _row_to_recurring(self, row: sqlite3.Row) -> RecurringTransaction:
        """Convert a database row to a RecurringTransaction model."""
        return RecurringTransaction(
            id=UUID(row["id"]),
            merchant=row["merchant"],
            category=row["category"],
            average_amount=row["average_amount"],
            average_interval_days=row["average_interval_days"],
            first_occurrence=datetime.fromisoformat(row["first_occurrence"]),
            last_occurrence=datetime.fromisoformat(row["last_occurrence"]),
            next_expected_date=(
                datetime.fromisoformat(row["next_expected_date"]) if row["next_expected_date"] else None
            ),
            occurrence_count=row["occurrence_count"],
            is_active=bool(row["is_active"]),
            frequency=Frequency(row["frequency"]),
            confidence=row["confidence"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Categories

    def get_active_categories(self) -> list[str]:
        """Active category names, in display order."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT name FROM categories WHERE is_active = 1 ORDER BY sort_order, name")
            return [row["name"] for row in cursor.fetchall()]

    def add_category(self, name: str) -> None:
        """Add (or re-activate) a category."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO categories (name, is_active, sort_order)
                VALUES (?, 1, (SELECT COALESCE(MAX(sort_order), 0) + 1 FROM categories))
                ON CONFLICT(name) DO UPDATE SET is_active = 1
                """,
                (name,),
            )
            conn.commit()

    def set_category_active(self, name: str, is_active: bool) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("UPDATE categories SET is_active = ? WHERE name = ?", (int(is_active), name))
            conn.commit()
            return cursor.rowcount > 0

    # Processed messages

    def is_message_processed(self, source_id: str) -> bool:
        """Check if a message source id has already been ingested."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT 1 FROM processed_messages WHERE source_id = ?", (source_id,))
            return cursor.fetchone() is not None

    def mark_message_processed(self, source_id: str, transaction_id: UUID | None) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO processed_messages (source_id, transaction_id, processed_at) VALUES (?, ?, ?)",
                (source_id, str(transaction_id) if transaction_id else None, datetime.now().isoformat()),
            )
            conn.commit()
