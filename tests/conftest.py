"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of hackx.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from hackx.database.models import Base  # noqa: E402
from hackx.database.seed import seed_default_settings  # noqa: E402

_jsonb_sqlite_registered = False

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all HackX tables and default settings.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).

    pysqlite defers BEGIN until the first DML statement, which makes a
    SAVEPOINT the outermost transaction; BEGIN is emitted explicitly so
    ``session.begin_nested()`` nests the way it does on PostgreSQL.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_token(
    sub: str = "1001",
    username: str = "Alice",
    *,
    is_admin: bool = False,
    reputation_score: int = 0,
    capabilities: list[str] | None = None,
) -> str:
    """Create a signed JWT.  Usable as a factory function in any test."""
    import jwt

    from hackx.api.deps import JWT_ALGORITHM, JWT_SECRET

    claims: dict = {
        "sub": sub,
        "username": username,
        "is_admin": is_admin,
        "reputation_score": reputation_score,
    }
    if capabilities is not None:
        claims["capabilities"] = capabilities
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_token(sub="99999", username="FixtureAdmin", is_admin=True)


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient bound to the in-memory database.

    The client is not used as a context manager, so the lifespan hook (which
    needs DATABASE_URL) never runs.
    """
    from fastapi.testclient import TestClient

    from hackx.api.main import app
    from hackx.api.routes import dao, staking

    # Routes hold the get_engine bound at their import; test_jwt_startup
    # reloads hackx.api.deps, which would otherwise leave a stale key here.
    app.dependency_overrides[staking.get_engine] = lambda: db_engine
    app.dependency_overrides[dao.get_engine] = lambda: db_engine
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
