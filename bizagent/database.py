"""
Database configuration and session management.
Uses SQLAlchemy; SQLite for development, PostgreSQL for production.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Callable, Generator
from bizagent.config import config

# Create database engine
# For development: SQLite (file-based)
# For production: PostgreSQL
if config.DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        config.DATABASE_URL,
        connect_args={"check_same_thread": False}  # SQLite specific
    )
else:
    # PostgreSQL
    engine = create_engine(
        config.DATABASE_URL,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,  # Connection pool size
        max_overflow=20,  # Max connections above pool_size
        echo=config.DEBUG  # Log SQL queries in debug mode
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database sessions.

    Usage in FastAPI:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            return db.query(Item).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """
    Dependency returning the session factory.

    Tool fan-out runs queries on worker threads, and a Session must not be
    shared between threads, so each worker opens its own session from this.
    """
    return SessionLocal


def init_db():
    """
    Initialize database - create all tables.
    Should be called on application startup.
    """
    # Import models so they are registered on Base.metadata
    from bizagent import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
