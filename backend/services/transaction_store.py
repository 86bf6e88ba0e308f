"""
Module: transaction_store.py
Description: Record store for transactions backed by SQLAlchemy.

The chat assistant and the HTTP routes both go through this store.
Methods are async so callers await them the same way regardless of the
backing session; the SQLAlchemy calls themselves are synchronous.

Ordering:
    list_transactions() returns the most recently *created* transaction
    first. "Delete last transaction" in the chat assistant relies on it.

Author: Finance Tracker Team
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session as DBSession

from models import Transaction
from .observability import log_transaction_mutation


TRANSACTION_TYPES = ("income", "expense")


class TransactionNotFoundError(LookupError):
    """Raised when updating a transaction that does not exist."""


@dataclass
class TransactionStats:
    total_income: float
    total_expenses: float
    savings: float


def summarize(transactions: list) -> TransactionStats:
    """Income/expense totals and their difference for any transaction list."""
    total_income = sum(t.amount for t in transactions if t.type == "income")
    total_expenses = sum(t.amount for t in transactions if t.type == "expense")
    return TransactionStats(
        total_income=total_income,
        total_expenses=total_expenses,
        savings=total_income - total_expenses,
    )


def totals_by_category(transactions: list) -> dict[str, float]:
    """Sum amounts per category, largest first."""
    totals: dict[str, float] = {}
    for t in transactions:
        totals[t.category] = totals.get(t.category, 0) + t.amount
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))


class TransactionStore:
    """CRUD access to Transaction rows."""

    def __init__(self, db: DBSession, source: str = "api"):
        self.db = db
        self.source = source

    def _build_transaction(
        self,
        user_id: str,
        type: str,
        amount: float,
        description: str,
        category: str,
        date: Optional[datetime],
        created_at: datetime,
    ) -> Transaction:
        if type not in TRANSACTION_TYPES:
            raise ValueError(f"Invalid transaction type: {type}")

        return Transaction(
            user_id=user_id,
            type=type,
            amount=round(float(amount), 2),
            description=description,
            category=category,
            date=date or datetime.now(),
            created_at=created_at,
            updated_at=created_at,
        )

    async def create_transaction(
        self,
        user_id: str,
        type: str,
        amount: float,
        description: str,
        category: str,
        date: Optional[datetime] = None,
    ) -> Transaction:
        """Insert a new transaction and return it."""
        transaction = self._build_transaction(
            user_id, type, amount, description, category, date, datetime.utcnow()
        )
        self.db.add(transaction)
        self.db.commit()
        self.db.refresh(transaction)

        log_transaction_mutation("created", transaction.id, source=self.source)
        return transaction

    async def create_transactions(self, user_id: str, rows: list[dict]) -> list[Transaction]:
        """
        Insert many transactions in one commit; on any error none are kept.

        Each row carries type, amount, description, category and date.
        Later rows get later created_at values so they count as newer.
        """
        started = datetime.utcnow()
        created = []
        try:
            for offset, row in enumerate(rows):
                transaction = self._build_transaction(
                    user_id,
                    row["type"],
                    row["amount"],
                    row["description"],
                    row["category"],
                    row["date"],
                    started + timedelta(microseconds=offset),
                )
                self.db.add(transaction)
                created.append(transaction)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        for transaction in created:
            log_transaction_mutation("created", transaction.id, source=self.source)
        return created

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(Transaction.id == transaction_id).first()

    async def list_transactions(self, user_id: str) -> list[Transaction]:
        """All of a user's transactions, most recently created first."""
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .all()
        )

    async def list_all_transactions(self) -> list[Transaction]:
        return (
            self.db.query(Transaction)
            .order_by(Transaction.created_at.desc())
            .all()
        )

    async def update_transaction(
        self,
        transaction_id: str,
        type: str,
        amount: float,
        description: str,
        category: str,
        date: datetime,
    ) -> Transaction:
        """
        Replace the editable fields of a transaction.

        Raises:
            TransactionNotFoundError: If no transaction has this id.
        """
        if type not in TRANSACTION_TYPES:
            raise ValueError(f"Invalid transaction type: {type}")

        transaction = await self.get_transaction(transaction_id)
        if not transaction:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        transaction.type = type
        transaction.amount = round(float(amount), 2)
        transaction.description = description
        transaction.category = category
        transaction.date = date
        transaction.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(transaction)

        log_transaction_mutation("updated", transaction.id, source=self.source)
        return transaction

    async def delete_transaction(self, transaction_id: str) -> None:
        """Delete by id. Deleting a missing id is a no-op."""
        transaction = await self.get_transaction(transaction_id)
        if not transaction:
            return

        self.db.delete(transaction)
        self.db.commit()
        log_transaction_mutation("deleted", transaction_id, source=self.source)

    async def get_stats(self, user_id: str) -> TransactionStats:
        return summarize(await self.list_transactions(user_id))
