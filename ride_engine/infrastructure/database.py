"""
Async SQLAlchemy engine and session factory.

PostgreSQL (with PostGIS) through ``asyncpg``.  Zones and fare rules are
read from here by the config sync; with ``driver_store=sql`` the driver
roster lives here too, and claims are short row-locking transactions, so
the pool is sized from ``DB_POOL_SIZE`` / ``DB_MAX_OVERFLOW``.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ride_engine.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the zone, fare-rule, driver and ride tables."""
