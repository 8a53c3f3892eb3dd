"""
Database session configuration.

Engine, session factory and the unit-of-work boundary every ledger
mutation runs inside. PostgreSQL (asyncpg) in deployment; the tests build
their own SQLite engine.
"""

from contextlib import asynccontextmanager
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from backend.app.core.config import settings


def _engine_options() -> dict:
    options = {"echo": settings.db_echo}
    # SQLite engines do not take queue-pool sizing
    if not settings.database_url.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return options


engine = create_async_engine(settings.database_url, **_engine_options())

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Named constraints so migrations and IntegrityError messages are stable
Base = declarative_base(metadata=MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}))


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
    Atomic unit for multi-write ledger mutations.
    
    Commits everything written inside the block, or rolls all of it back
    if anything raises. Domain services flush; only this boundary commits.
    
    Usage:
        async with unit_of_work(db):
            db.add(transaction)
            await BalanceAccessor.apply_delta(db, scout, -amount)
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
