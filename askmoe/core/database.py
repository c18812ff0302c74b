"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for the entitlement and answer stores
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, UniqueConstraint
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from askmoe.core.config import settings


logger = logging.getLogger("askmoe")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

CANONICAL_KEY_MAX_CHARS = 768
TAG_MAX_CHARS = 200

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        # Local runs and tests; writers serialize on the file lock
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Drop the current engine so the next call re-reads the URL (tests)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# User entitlement records. Counters are only mutated through single UPDATE
# statements so concurrent requests from one user never lose an increment.
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('plan', String(20), nullable=False, server_default='trial'),
    Column('daily_used', Integer, nullable=False, server_default='0'),
    Column('daily_window_start', DateTime(timezone=True), nullable=True),
    Column('monthly_used', Integer, nullable=False, server_default='0'),
    # First instant of the next UTC month; the monthly window rolls once now passes it
    Column('monthly_resets_at', DateTime(timezone=True), nullable=True),
    Column('trial_questions_used', Integer, nullable=False, server_default='0'),
    Column('trial_expires_at', DateTime(timezone=True), nullable=True),
    Column('assistant_message_count', Integer, nullable=False, server_default='0'),
    Column('sees_ads', Boolean, nullable=False, server_default='1'),
    Column('last_seen', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_app_users_plan', 'plan'),
    Index('idx_app_users_monthly_resets_at', 'monthly_resets_at'),
)

# Canonical answers. canonical_key uniqueness is what makes concurrent
# cache misses converge on a single record.
answers = Table(
    'answers',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('canonical_key', String(CANONICAL_KEY_MAX_CHARS), nullable=False),
    Column('original_question', Text, nullable=False),
    Column('platform', String(TAG_MAX_CHARS), nullable=False),
    Column('version', String(TAG_MAX_CHARS), nullable=False),
    Column('answer_text', Text, nullable=False),
    Column('model_used', String(100), nullable=False),
    Column('prompt_tokens', Integer, nullable=False, server_default='0'),
    Column('completion_tokens', Integer, nullable=False, server_default='0'),
    Column('sources', JSON, nullable=True),
    Column('popularity', Integer, nullable=False, server_default='0'),
    Column('ups', Integer, nullable=False, server_default='0'),
    Column('downs', Integer, nullable=False, server_default='0'),
    Column('score', Integer, nullable=False, server_default='0'),
    Column('published', Boolean, nullable=False, server_default='0'),
    Column('published_url', String(1024), nullable=True),
    Column('seo_title', Text, nullable=True),
    Column('seo_description', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('canonical_key', name='uq_answers_canonical_key'),
    # Catalog listing: published answers by popularity then recency
    Index('idx_answers_published_popularity', 'published', 'popularity', 'created_at'),
    Index('idx_answers_platform_version', 'platform', 'version'),
    Index('idx_answers_score', 'score'),
)
