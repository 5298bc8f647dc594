"""Database configuration and session management."""

import asyncio
import weakref
from datetime import date
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import structlog
from sqlalchemy import or_, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from curtailment_mining.core.config import get_settings

logger = structlog.get_logger()

# Lazy initialization
_engine = None
_async_session_factory = None

# Namespace for pg_advisory_xact_lock keys so they do not collide with other apps
ADVISORY_LOCK_NAMESPACE = 0x43_55_52_54  # "CURT"

# Entries vanish once no coroutine holds or waits on the lock
_date_locks: "weakref.WeakValueDictionary[Tuple[int, date], asyncio.Lock]" = weakref.WeakValueDictionary()


def get_engine():
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        engine_kwargs = {
            "echo": settings.DB_ECHO,
            "future": True,
        }

        if "sqlite" in settings.database_url_async:
            # For SQLite, use StaticPool without pool size parameters
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_size"] = settings.DB_POOL_SIZE
            engine_kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
            engine_kwargs["pool_pre_ping"] = True

        _engine = create_async_engine(settings.database_url_async, **engine_kwargs)
    return _engine


def get_session_factory():
    """Get or create the async session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def init_db() -> None:
    """Initialize database."""
    try:
        # Import all models here to ensure they are registered
        from curtailment_mining import models  # noqa: F401

        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise


async def close_db() -> None:
    """Close database connections."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_factory = None
    logger.info("Database connections closed")


def dialect_name(db: AsyncSession) -> str:
    """Name of the SQL dialect the session is bound to."""
    return db.get_bind().dialect.name


def build_upsert(
    db: AsyncSession,
    model,
    rows: List[Dict[str, Any]],
    index_elements: Sequence[str],
    update_columns: Iterable[str],
    only_if_changed: bool = False,
):
    """
    Build an INSERT ... ON CONFLICT DO UPDATE statement for the session's dialect.

    Args:
        db: Session used to pick the dialect
        model: Mapped class to insert into
        rows: Row dictionaries
        index_elements: Columns of the natural key unique constraint
        update_columns: Columns overwritten on conflict
        only_if_changed: Skip the update when every update column already matches,
            so re-running with the same values leaves the row untouched

    Returns:
        Executable insert statement
    """
    name = dialect_name(db)
    if name == "postgresql":
        stmt = postgresql.insert(model).values(rows)
    elif name == "sqlite":
        stmt = sqlite.insert(model).values(rows)
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect {name}")

    update_columns = list(update_columns)
    set_ = {col: getattr(stmt.excluded, col) for col in update_columns}

    where = None
    if only_if_changed:
        value_columns = [c for c in update_columns if c not in ("updated_at", "last_updated", "calculated_at")]
        where = or_(
            *[
                getattr(model.__table__.c, col).is_distinct_from(getattr(stmt.excluded, col))
                for col in value_columns
            ]
        )

    return stmt.on_conflict_do_update(index_elements=list(index_elements), set_=set_, where=where)


async def acquire_date_lock(db: AsyncSession, settlement_date: date) -> None:
    """
    Serialize writers for one settlement date across processes.

    On PostgreSQL this takes a transaction-scoped advisory lock that is released
    on commit or rollback. Other dialects rely on the in-process lock only.
    """
    if dialect_name(db) == "postgresql":
        await db.execute(
            text("SELECT pg_advisory_xact_lock(:namespace, :key)"),
            {"namespace": ADVISORY_LOCK_NAMESPACE, "key": settlement_date.toordinal()},
        )


def local_date_lock(settlement_date: date) -> asyncio.Lock:
    """In-process lock for one settlement date."""
    key = (id(asyncio.get_running_loop()), settlement_date)
    lock = _date_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _date_locks[key] = lock
    return lock

