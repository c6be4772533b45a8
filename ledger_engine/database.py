"""
Ledger Engine - Database

Declarative base for the ledger tables plus the async engine and the
session factory the request dependencies draw from. Services own commit
and rollback; a request session is only opened and closed here.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ledger_engine.config import settings


# Constraint names derive from table and column names on every backend
LEDGER_NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base shared by accounts, fiscal calendar and journal tables."""
    metadata = MetaData(naming_convention=LEDGER_NAMING_CONVENTION)


def build_engine(database_url: str) -> AsyncEngine:
    """
    Async engine for the ledger database.

    Pool sizing applies to server databases only; SQLite files are
    opened with a busy timeout so concurrent writers queue instead of
    failing straight away.
    """
    options: Dict[str, Any] = {"echo": settings.debug}
    if make_url(database_url).get_backend_name() == "sqlite":
        options["connect_args"] = {"timeout": 30}
    else:
        options.update(
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
    return create_async_engine(database_url, **options)


engine = build_engine(settings.database_url_async)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; whatever a service left uncommitted is discarded on close."""
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """Create any missing ledger tables. Development and tests only."""
    import ledger_engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
