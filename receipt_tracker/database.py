"""Database configuration and session management."""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from receipt_tracker.config import get_settings

settings = get_settings()


def build_engine(database_url: str) -> Engine:
    """Create an engine for the receipts store.

    SQLite is only used for local runs and tests; it gets a thread-shareable
    connection instead of the PostgreSQL pool sizing.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base: Any = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the receipts table (and its indexes) if missing."""
    from receipt_tracker import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
