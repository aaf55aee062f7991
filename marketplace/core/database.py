"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite URLs get a thread-safe connection setup)
- Table definitions for the subscription engine
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Numeric, Index, ForeignKey, UniqueConstraint, select
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from marketplace.core.config import settings


logger = logging.getLogger("marketplace.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

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
        # Sweeps and concurrent publishes share the engine across threads
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": POOL_TIMEOUT},
            echo=False,
        )
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


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

    Commits when the block exits cleanly, rolls back on any exception.
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


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC.

    SQLite hands back naive values for DateTime(timezone=True) columns; those
    are stored as UTC wall-clock time.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_now(now: Optional[datetime] = None) -> datetime:
    """Injected clock value as aware UTC; the current time when None."""
    return utc_now() if now is None else ensure_utc(now)


# Subscription plan catalog
subscription_plans = Table(
    'subscription_plans',
    metadata,
    Column('plan_id', String(36), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('tier', String(20), nullable=False),  # basic | standard | premium
    Column('price_usd', Numeric(12, 2), nullable=False, server_default='0'),
    Column('price_syp', Numeric(14, 2), nullable=False, server_default='0'),
    Column('duration_days', Integer, nullable=False),
    Column('daily_product_limit', Integer, nullable=False),
    Column('max_images_per_product', Integer, nullable=False),
    Column('max_variants_per_product', Integer, nullable=False),
    Column('priority_support', Boolean, nullable=False, server_default='0'),
    Column('analytics_access', Boolean, nullable=False, server_default='0'),
    Column('custom_domain', Boolean, nullable=False, server_default='0'),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('display_order', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Tier uniqueness among active plans is enforced by the plan service
    Index('idx_subscription_plans_tier_active', 'tier', 'is_active'),
    Index('idx_subscription_plans_display_order', 'display_order'),
)

# Store profiles (owned by the store domain; snapshot columns written here)
store_profiles = Table(
    'store_profiles',
    metadata,
    Column('store_id', String(36), primary_key=True),
    Column('store_name', String(200), nullable=False),
    Column('owner_id', String(100), nullable=True, index=True),
    Column('has_active_subscription', Boolean, nullable=False, server_default='0'),
    Column('current_plan_id', String(36), nullable=True),
    Column('subscription_expires_at', DateTime(timezone=True), nullable=True),
    Column('daily_product_limit', Integer, nullable=False, server_default='0'),
    Column('max_images_per_product', Integer, nullable=False, server_default='0'),
    Column('max_variants_per_product', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Store subscriptions (one row per subscription instance)
store_subscriptions = Table(
    'store_subscriptions',
    metadata,
    Column('subscription_id', String(36), primary_key=True),
    Column('store_id', String(36), ForeignKey('store_profiles.store_id'), nullable=False),
    Column('plan_id', String(36), ForeignKey('subscription_plans.plan_id'), nullable=False),
    Column('status', String(30), nullable=False),  # PENDING_PAYMENT | ACTIVE | EXPIRED | CANCELLED
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('payment_method', String(20), nullable=False),  # MANUAL | ONLINE | FREE_GRANT
    Column('amount_paid', Numeric(14, 2), nullable=True),
    Column('payment_reference', String(200), nullable=True),
    Column('activated_by', String(100), nullable=True),
    Column('activated_at', DateTime(timezone=True), nullable=True),
    Column('cancelled_by', String(100), nullable=True),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('cancellation_reason', Text, nullable=True),
    Column('total_products_published', Integer, nullable=False, server_default='0'),
    Column('auto_renew', Boolean, nullable=False, server_default='0'),
    Column('notes', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Enforcement lookup: active subscription for a store
    Index('idx_store_subscriptions_store_status', 'store_id', 'status'),
    # Sweep lookup: active subscriptions by end date
    Index('idx_store_subscriptions_status_end', 'status', 'end_date'),
    Index('idx_store_subscriptions_plan_id', 'plan_id'),
)

# Daily usage ledger (one entry per subscription per calendar day)
subscription_daily_usage = Table(
    'subscription_daily_usage',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('subscription_id', String(36), ForeignKey('store_subscriptions.subscription_id'), nullable=False),
    Column('usage_date', String(10), nullable=False),  # YYYY-MM-DD in the reference timezone
    Column('products_published', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('subscription_id', 'usage_date', name='uq_subscription_daily_usage_day'),
    Index('idx_subscription_daily_usage_subscription', 'subscription_id'),
)

# Generic settings store (key -> JSON value)
system_settings = Table(
    'system_settings',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('value', JSON, nullable=False),
    Column('updated_by', String(100), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)
