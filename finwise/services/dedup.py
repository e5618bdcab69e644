"""Deduplication logic for FinWise."""

import hashlib
import logging

from finwise.db.sqlite import Database
from finwise.models import Transaction

logger = logging.getLogger(__name__)


def compute_file_hash(contents: bytes) -> str:
    """Compute SHA256 hash of file contents."""
    return hashlib.sha256(contents).hexdigest()


def compute_text_hash(raw_text: str) -> str:
    """
    Compute the identity hash of a notification's raw text.

    Whitespace is collapsed so the same SMS delivered with different line
    breaks still hashes identically.
    """
    normalized = " ".join(raw_text.split())
    return hashlib.sha256(normalized.encode()).hexdigest()


class DeduplicationEngine:
    """
    Gate in front of the transaction store.

    A candidate is a duplicate when, in order:
    1. a stored transaction has identical raw text
    2. it carries a transaction id already stored
    3. a stored transaction on the same calendar day has the same amount,
       merchant, type and account suffix

    Rule 3 is a heuristic and will also collapse two genuine same-day purchases
    of the same amount at the same merchant on the same card. Callers must
    serialize inserts within a sync session; the read-then-write check is not
    safe across truly concurrent writers.
    """

    def __init__(self, db: Database):
        self.db = db

    def find_duplicate(self, transaction: Transaction) -> Transaction | None:
        """Return the stored transaction this candidate duplicates, if any."""
        existing = self.db.find_by_text_hash(compute_text_hash(transaction.raw_text))
        if existing:
            logger.debug(f"Duplicate by raw text: {existing.id}")
            return existing

        if transaction.transaction_id and transaction.transaction_id.strip():
            existing = self.db.find_by_transaction_id(transaction.transaction_id.strip())
            if existing:
                logger.debug(f"Duplicate by transaction id {transaction.transaction_id}: {existing.id}")
                return existing

        existing = self.db.find_same_day_match(transaction)
        if existing:
            logger.debug(f"Duplicate by same-day amount/merchant/account: {existing.id}")
        return existing

    def is_duplicate(self, transaction: Transaction) -> bool:
        return self.find_duplicate(transaction) is not None

    def insert(self, transaction: Transaction) -> Transaction:
        """
        Persist a transaction unless it duplicates a stored one.

        Returns the stored transaction: the existing record (unchanged) for a
        duplicate, otherwise the candidate itself. Storage errors propagate.
        """
        existing = self.find_duplicate(transaction)
        if existing:
            return existing

        self.db.add_transaction(transaction, compute_text_hash(transaction.raw_text))
        logger.info(
            f"Stored transaction {transaction.id}: {transaction.type.value} "
            f"{transaction.amount} at {transaction.merchant}"
        )
        return transaction

    def insert_many(self, transactions: list[Transaction]) -> tuple[int, int]:
        """Insert several transactions. Returns (added_count, skipped_count)."""
        added = 0
        skipped = 0
        for txn in transactions:
            stored = self.insert(txn)
            if stored.id == txn.id:
                added += 1
            else:
                skipped += 1
        return added, skipped
