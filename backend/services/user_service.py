"""
Module: user_service.py
Description: Account management for regular users and the admin.

Provides:
    - Lazy creation of the single admin account
    - Registration with unique emails and bcrypt-hashed passwords
    - Credential verification and profile updates
    - Admin listing/deletion of users (transactions cascade)

Author: Finance Tracker Team
"""

import os
from datetime import datetime
from typing import Optional

import bcrypt
from dotenv import load_dotenv
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from models import User
from .observability import logger, metrics

load_dotenv()


# =============================================================================
# Configuration
# =============================================================================

# Sentinel email the admin account is looked up by
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "password")
ADMIN_NAME = "Admin"


# =============================================================================
# Errors
# =============================================================================

class EmailAlreadyExistsError(ValueError):
    """Raised when an email is already registered."""


class UserNotFoundError(LookupError):
    """Raised when a user id does not exist."""


class InvalidPasswordError(ValueError):
    """Raised when the supplied current password is wrong."""


class UserDeletionError(ValueError):
    """Raised when a user cannot be deleted (missing or admin)."""


# =============================================================================
# Password hashing
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


class UserService:
    """User CRUD and authentication checks."""

    def __init__(self, db: DBSession):
        self.db = db

    def _get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def initialize_admin(self) -> User:
        """Create the admin account if it does not exist yet."""
        admin = self._get_by_email(ADMIN_EMAIL)
        if admin:
            return admin

        admin = User(
            name=ADMIN_NAME,
            email=ADMIN_EMAIL,
            password=hash_password(ADMIN_PASSWORD),
            role="admin",
        )
        self.db.add(admin)
        self.db.commit()
        self.db.refresh(admin)

        logger.info("Admin account created", email=ADMIN_EMAIL)
        return admin

    def create_user(self, name: str, email: str, password: str) -> User:
        """
        Register a regular user.

        Raises:
            EmailAlreadyExistsError: If the email is taken.
        """
        if self._get_by_email(email):
            raise EmailAlreadyExistsError("Email already exists")

        user = User(
            name=name,
            email=email,
            password=hash_password(password),
            role="user",
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise EmailAlreadyExistsError("Email already exists")
        self.db.refresh(user)

        logger.info("User registered", user_id=user.id[:8])
        metrics.increment("users.registered")
        return user

    def verify_user(self, email: str, password: str) -> Optional[User]:
        """Return the user if the credentials are valid, otherwise None."""
        user = self._get_by_email(email)
        if not user or not check_password(password, user.password):
            metrics.increment("auth.failed")
            return None

        # The sentinel email only ever authenticates the admin
        if email == ADMIN_EMAIL and user.role != "admin":
            return None

        return user

    def get_user(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == user_id).first()

    def update_user(
        self,
        user_id: str,
        current_password: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> User:
        """
        Update profile fields after re-checking the current password.

        Raises:
            UserNotFoundError: Unknown user id.
            InvalidPasswordError: Current password does not match.
            EmailAlreadyExistsError: New email belongs to someone else.
        """
        user = self.get_user(user_id)
        if not user:
            raise UserNotFoundError("User not found")

        if not check_password(current_password, user.password):
            raise InvalidPasswordError("Current password is incorrect")

        if email and email != user.email:
            if self._get_by_email(email):
                raise EmailAlreadyExistsError("Email already exists")
            user.email = email

        if name:
            user.name = name
        if password:
            user.password = hash_password(password)

        user.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user

    def list_users(self) -> list[User]:
        """All non-admin users, oldest first."""
        return (
            self.db.query(User)
            .filter(User.role != "admin")
            .order_by(User.created_at)
            .all()
        )

    def delete_user(self, user_id: str) -> None:
        """
        Delete a user together with all their transactions.

        Raises:
            UserDeletionError: If the user is missing or is the admin.
        """
        user = self.get_user(user_id)
        if not user or user.role == "admin":
            raise UserDeletionError("Cannot delete this user")

        self.db.delete(user)
        self.db.commit()

        logger.info("User deleted", user_id=user_id[:8])
        metrics.increment("users.deleted")
