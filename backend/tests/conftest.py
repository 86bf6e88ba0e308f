"""
Pytest configuration and shared fixtures for Finance Tracker tests.

This file is automatically loaded by pytest and provides:
    - In-memory SQLite database sessions
    - An in-memory record store for chat tests
    - Transaction factories and a fixed reference time

Author: Finance Tracker Team
"""

import os
import sys
import uuid
import asyncio
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

from database import Base  # noqa: E402
from models import Transaction, User  # noqa: E402


# Reference "now" used across tests: Monday 19 Oct 2026, mid-afternoon
NOW = datetime(2026, 10, 19, 15, 30, 0)


def run(coro):
    """Run a coroutine to completion from a sync test."""
    return asyncio.run(coro)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    """Database session bound to the in-memory engine."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    """A persisted regular user."""
    user = User(name="Alice", email="alice@example.com", password="not-a-hash", role="user")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# =============================================================================
# Transaction Fixtures
# =============================================================================

_created_counter = 0


def make_transaction(
    type="expense",
    amount=10.0,
    description="Something",
    category="Other Expenses",
    date=NOW,
    user_id="user-1",
    created_at=None,
):
    """Build an unsaved Transaction with every column populated."""
    global _created_counter
    _created_counter += 1
    created = created_at or (NOW + timedelta(microseconds=_created_counter))
    return Transaction(
        id=str(uuid.uuid4()),
        user_id=user_id,
        type=type,
        amount=amount,
        description=description,
        category=category,
        date=date,
        created_at=created,
        updated_at=created,
    )


class InMemoryStore:
    """
    Record store double that keeps transactions in a list.

    Newest created first, like the SQLAlchemy store. Tracks calls so
    tests can assert that nothing was written.
    """

    def __init__(self, transactions=None, fail_on=()):
        self.transactions = list(transactions or [])
        self.fail_on = set(fail_on)
        self.calls = []

    def _maybe_fail(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} unavailable")

    async def list_transactions(self, user_id):
        self._maybe_fail("list_transactions")
        owned = [t for t in self.transactions if t.user_id == user_id]
        return sorted(owned, key=lambda t: t.created_at, reverse=True)

    async def create_transaction(self, user_id, type, amount, description, category, date):
        self._maybe_fail("create_transaction")
        transaction = make_transaction(
            type=type,
            amount=amount,
            description=description,
            category=category,
            date=date,
            user_id=user_id,
            created_at=datetime.utcnow() + timedelta(days=3650),
        )
        self.transactions.append(transaction)
        return transaction

    async def create_transactions(self, user_id, rows):
        self._maybe_fail("create_transactions")
        created = [
            make_transaction(
                type=row["type"],
                amount=row["amount"],
                description=row["description"],
                category=row["category"],
                date=row["date"],
                user_id=user_id,
            )
            for row in rows
        ]
        self.transactions.extend(created)
        return created

    async def delete_transaction(self, transaction_id):
        self._maybe_fail("delete_transaction")
        self.transactions = [t for t in self.transactions if t.id != transaction_id]

    @property
    def mutations(self):
        return [c for c in self.calls if c in ("create_transaction", "create_transactions", "delete_transaction")]


@pytest.fixture
def store():
    return InMemoryStore()
