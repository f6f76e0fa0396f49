"""
Database connection and session management.
Connects to PostgreSQL via DATABASE_URL (SQLite is accepted for tests).
"""
import os
from contextlib import contextmanager
from sqlalchemy import create_engine, text, update
from sqlalchemy.orm import sessionmaker
from app.models import Agent, Base

# Must point to the shared job store
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError(
        "DATABASE_URL environment variable is not set. "
        "Set it to your PostgreSQL connection string."
    )


def normalize_database_url(url: str) -> str:
    """Point bare postgres URLs at the psycopg (v3) driver."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def build_engine(url: str):
    """Create an engine; only PostgreSQL gets an explicitly sized pool."""
    url = normalize_database_url(url)
    if url.startswith("postgresql"):
        return create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(bind=None):
    """Initialize database tables via SQLAlchemy metadata."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def get_db_session(factory=None):
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on error.

    Usage:
        with get_db_session() as db:
            job = db.query(Job).first()
    """
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def lock_pass(db, key: str) -> None:
    """
    Serialise a read-then-write pass until the session's transaction ends.

    PostgreSQL takes a transaction-level advisory lock on ``key``. SQLite has
    no row or advisory locks, so an empty UPDATE takes the database write
    lock instead. Call it before the pass reads anything.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
    elif dialect == "sqlite":
        db.execute(
            update(Agent)
            .where(Agent.id.is_(None))
            .values(updated_at=Agent.updated_at)
            .execution_options(synchronize_session=False)
        )
