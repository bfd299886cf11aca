"""
gatekeeper.database.engine — Database Connection & Async Helper
=================================================================

Discord bots and FastAPI handlers run on an ``asyncio`` event loop, while
SQLAlchemy + psycopg2 is synchronous.  Every database call from async code
goes through :func:`run_db`, which ships the synchronous function to the
default thread pool via ``asyncio.to_thread()``:

    1. A /verify command or portal request arrives  (async world).
    2. The handler calls ``await run_db(some_function, engine, arg1)``.
    3. The DB work happens on a background thread; the event loop stays free.
    4. The result is awaited back in the handler.

Usage::

    from gatekeeper.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    rules = await run_db(list_rules_by_guild, engine, guild_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from gatekeeper.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    The pool is sized for one bot process plus one API process:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`gatekeeper.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(GuildRule(...))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware UTC datetime.

    PostgreSQL hands back aware datetimes; SQLite (tests) drops the tzinfo.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Parameters
    ----------
    func:
        Any sync callable (typically a function that opens a session and
        runs queries).
    *args, **kwargs:
        Forwarded to *func*.

    Returns
    -------
    T
        Whatever *func* returns.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
