"""
Database configuration and session management.
Provides SQLAlchemy engine, session factory, and context managers for database operations.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from caddy_panel.config import settings

class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass

# Create SQLAlchemy engine with SQLite database
engine = create_engine(f"sqlite:///{settings.db_path()}", echo=False, future=True)

# Plain (non-scoped) factory: several async operations may share one thread
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class DBSession:
    """
    Context manager for database sessions with automatic transaction handling.
    Ensures proper rollback on exceptions and commit on success.
    """
    def __init__(self, factory: sessionmaker | None = None):
        self.factory = factory or SessionLocal

    def __enter__(self) -> Session:
        self.db = self.factory()
        return self.db

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type:
                # Rollback transaction on any exception
                self.db.rollback()
            else:
                # Commit transaction on successful completion
                self.db.commit()
        finally:
            # Always close the session
            self.db.close()


def init_db(bind=None) -> None:
    """Create all tables that do not exist yet."""
    # models must be imported so their tables are registered on Base.metadata
    from caddy_panel.persistence import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
