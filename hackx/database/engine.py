"""
hackx.database.engine — Database Connection, Atomic Units & Async Helper
========================================================================

**Why this file exists:**
Every ledger and governance mutation must be one atomic transaction against
the store.  This module owns the three pieces that make that true:

    1. :func:`create_db_engine` — a pooled engine with bounded pool,
       statement and lock timeouts, so no caller blocks indefinitely.
    2. :func:`run_in_transaction` — runs ``fn(session)`` inside exactly one
       transaction.  Business-rule errors roll it back and propagate
       untouched; transient storage failures (dropped connection, deadlock,
       serialization conflict) roll it back and re-run the **whole** unit
       with exponential backoff + jitter.
    3. :func:`run_db` — ships a synchronous service call to a worker thread
       so FastAPI's event loop is never blocked.  A cancelled request does
       not interrupt the thread; its unit either commits or rolls back whole.

Usage::

    from hackx.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async route:
    receipt = await run_db(staking_service.stake, engine, user_id, amount)
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from hackx.database.models import Base
from hackx.engine.errors import StorageUnavailable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# PostgreSQL SQLSTATEs that mean "re-run the transaction".
_RETRYABLE_PGCODES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available (lock_timeout)
})

DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_BASE_DELAY = 0.05
MAX_RETRY_DELAY = 2.0

_retry_attempts = DEFAULT_RETRY_ATTEMPTS
_retry_base_delay = DEFAULT_RETRY_BASE_DELAY


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(statement_timeout_ms: int = 5000) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    The connection pool is sized for a request-per-thread API:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    On PostgreSQL every session also gets ``statement_timeout`` and
    ``lock_timeout`` so a row lock is never waited on forever.

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

    connect_args: dict = {}
    if url.startswith("postgresql"):
        connect_args["options"] = (
            f"-c statement_timeout={statement_timeout_ms} "
            f"-c lock_timeout={statement_timeout_ms}"
        )

    engine = create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,    # Recycle connections after 1 hour
        connect_args=connect_args,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`hackx.database.models`.

    Safe to call on every startup — ``CREATE TABLE IF NOT EXISTS`` under
    the hood — and seeds default governance settings (idempotent).

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from hackx.database.seed import seed_default_settings

    seed_default_settings(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Setting(key="dao.quorum_voting_power", value_json="5"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Atomic units with transient-failure retry
# ---------------------------------------------------------------------------
def configure_retries(*, attempts: int, base_delay: float) -> None:
    """Set the process-wide retry budget used by :func:`run_in_transaction`."""
    global _retry_attempts, _retry_base_delay
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    _retry_attempts = attempts
    _retry_base_delay = base_delay


def is_transient(exc: BaseException) -> bool:
    """True if *exc* is an infrastructure hiccup worth re-running the unit for."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    pgcode = getattr(getattr(exc, "orig", None), "pgcode", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    return isinstance(exc, OperationalError)


def _backoff(attempt: int, base_delay: float) -> float:
    delay = min(base_delay * (2 ** (attempt - 1)), MAX_RETRY_DELAY)
    return delay + random.uniform(0, delay * 0.5)


def run_in_transaction(
    engine: Engine,
    fn: Callable[[Session], T],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
) -> T:
    """Run ``fn(session)`` as one atomic unit and return its result.

    The unit commits only if *fn* returns normally.  Any exception rolls the
    whole unit back.  Transient storage errors (see :func:`is_transient`)
    re-run *fn* from scratch in a fresh session, up to *attempts* times,
    sleeping with exponential backoff + jitter between tries; when the
    budget is exhausted :class:`StorageUnavailable` is raised.  Everything
    else (including every :class:`GovernanceError`) propagates unchanged.
    """
    max_attempts = attempts if attempts is not None else _retry_attempts
    delay = base_delay if base_delay is not None else _retry_base_delay
    attempt = 0
    while True:
        attempt += 1
        session = Session(engine, expire_on_commit=False)
        try:
            result = fn(session)
            session.commit()
            return result
        except DBAPIError as exc:
            session.rollback()
            if not is_transient(exc):
                raise
            if attempt >= max_attempts:
                logger.error(
                    "Atomic unit %s failed after %d attempts: %s",
                    getattr(fn, "__name__", fn), attempt, exc,
                )
                raise StorageUnavailable(
                    "Storage is temporarily unavailable; try again."
                ) from exc
            wait = _backoff(attempt, delay)
            logger.warning(
                "Transient storage error in %s (attempt %d/%d), retrying in %.2fs: %s",
                getattr(fn, "__name__", fn), attempt, max_attempts, wait, exc,
            )
            time.sleep(wait)
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every service call made from an async route goes through this wrapper::

        result = await run_db(my_sync_service_function, engine, user_id)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is
    never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
