"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.
"""

from contextlib import asynccontextmanager

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from skymap.app.core.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()

# Dialects that support INSERT ... ON CONFLICT
_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


async def get_db():
    """
    FastAPI dependency for database sessions.

    Yields an async database session and ensures it's properly closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(db: AsyncSession):
    """
    Transaction boundary for a group of writes.

    Commits when the block exits cleanly, rolls back and re-raises otherwise.
    Services flush inside the block; only this helper commits.

    Usage:
        async with unit_of_work(db):
            db.add(invoice)
            await db.flush()
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


def upsert_insert(db: AsyncSession):
    """
    Return the dialect-specific ``insert`` construct for the session's engine.

    Both PostgreSQL and SQLite expose ``on_conflict_do_nothing`` and
    ``on_conflict_do_update`` with the same signature.

    Raises:
        RuntimeError: If the bound dialect has no ON CONFLICT support
    """
    dialect_name = db.bind.dialect.name
    try:
        return _UPSERT_INSERTS[dialect_name]
    except KeyError:
        raise RuntimeError(f"Dialect '{dialect_name}' does not support INSERT ... ON CONFLICT")
