"""Database utilities for the custody-tracking service."""

from __future__ import annotations

import os

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


DEFAULT_DB_USER = "custody"
DEFAULT_DB_PASSWORD = "custody"
DEFAULT_DB_HOST = "localhost"
DEFAULT_DB_PORT = "5432"
DEFAULT_DB_NAME = "custody_ledger"


def _build_default_dsn() -> str:
    user = os.getenv("DB_USER", DEFAULT_DB_USER)
    password = os.getenv("DB_PASSWORD", DEFAULT_DB_PASSWORD)
    host = os.getenv("DB_HOST", DEFAULT_DB_HOST)
    port = os.getenv("DB_PORT", DEFAULT_DB_PORT)
    name = os.getenv("DB_NAME", DEFAULT_DB_NAME)
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


def get_database_dsn() -> str:
    """Return the ledger DSN; ``DB_DSN`` wins over the individual ``DB_*`` parts."""

    return os.getenv("DB_DSN", _build_default_dsn())


def _echo_sql() -> bool:
    return os.getenv("DB_ECHO", "").strip().lower() in {"1", "true", "yes"}


engine = create_async_engine(get_database_dsn(), pool_pre_ping=True, echo=_echo_sql())
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class Base(DeclarativeBase):
    """Declarative base shared by tasks, checkpoint events and audit entries."""

    pass


async def init_db() -> None:
    """Create the ledger tables, including the one-checkpoint-per-task unique index."""

    from . import models  # noqa: F401  register tables on the metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
