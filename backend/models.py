"""
SQLAlchemy ORM models for the Finance Tracker.

Includes:
    - User (regular users plus the single admin account)
    - Transaction (income/expense records owned by a user)

Author: Finance Tracker Team
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Application account.

    Emails are unique across all users. The password column only ever
    holds a bcrypt hash.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False, default="user")  # admin|user

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    transactions = relationship(
        "Transaction", back_populates="user", cascade="all, delete-orphan"
    )


class Transaction(Base):
    """
    A single income or expense entry.

    `date` is the economic date of the transaction; `created_at` and
    `updated_at` are record bookkeeping.
    """
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)  # income|expense
    amount = Column(Float, nullable=False)
    description = Column(String, nullable=False)
    category = Column(String, nullable=False)
    date = Column(DateTime, nullable=False, default=datetime.now)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="transactions")

    # Index for per-user listings ordered by recency
    __table_args__ = (
        Index('ix_transactions_user_id_created', 'user_id', 'created_at'),
    )

    def to_dict(self) -> dict:
        """Plain representation used by chat replies and exports."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "category": self.category,
            "date": self.date.isoformat() if self.date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
