"""Database engine and session setup (SQLite unless DATABASE_URL says otherwise)."""

import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./finance_tracker.db")

# SQLite connections are shared with FastAPI worker threads
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables and make sure the admin account exists."""
    from models import User, Transaction  # noqa: F401  registers the tables
    from services.user_service import UserService

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        UserService(db).initialize_admin()
    finally:
        db.close()
