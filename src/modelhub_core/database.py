"""Database connection and session management."""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .config import get_settings
from .models import Base

settings = get_settings()


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite gets a thread-tolerant connection; server databases get a
    conservative connection pool.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Configured engine
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,          # Verify connections before using
        pool_size=3,
        max_overflow=7,
        pool_recycle=3600,
        pool_timeout=30,
    )


engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=bind)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
