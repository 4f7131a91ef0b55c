"""Pytest configuration and fixtures.

Environment variables must be set BEFORE importing app code, since settings
are read once at import time. App imports are deferred to inside fixtures.
"""

import os
import shutil
import tempfile

import httpx
import pytest
import pytest_asyncio
from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

_test_base_dir = tempfile.mkdtemp(prefix="multigestor_test_")
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_base_dir}/unused.db"
os.environ["LOG_DIR"] = f"{_test_base_dir}/logs"
os.environ["PBKDF2_ITERS"] = "1000"
os.environ["LOCKOUT_THRESHOLD"] = "5"
os.environ["LOCKOUT_SECONDS"] = "1800"
os.environ["SIGNUP_REJECT_MIN_SECONDS"] = "0"
os.environ["SIGNUP_REJECT_JITTER_SECONDS"] = "0"
os.environ["NOTES_PAGE_SIZE"] = "10"
os.environ["SESSION_SECRET"] = "test-session-secret"

PASSWORD = "Secreto123"


@pytest_asyncio.fixture
async def session_factory():
    """Fresh SQLite file per test, swapped into the app's db module."""
    from multigestor import auth_sessions  # noqa: F401
    from multigestor import db as database
    from multigestor.models import Base

    temp_dir = tempfile.mkdtemp()
    engine = create_async_engine(f"sqlite+aiosqlite:///{temp_dir}/test.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    original = (database.engine, database.async_session)
    database.engine, database.async_session = engine, factory

    yield factory

    database.engine, database.async_session = original
    await engine.dispose()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def make_user(db):
    from multigestor import users

    async def _make(email="ana@example.com", password=PASSWORD, name="Ana", admin=False):
        if admin:
            return await users.ensure_bootstrap_admin(db, email, password)
        return await users.signup(db, name, email, password, password)

    return _make


@pytest_asyncio.fixture
async def client_factory(session_factory):
    from multigestor.main import app

    clients = []

    async def _client() -> httpx.AsyncClient:
        c = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
        clients.append(c)
        return c

    yield _client

    for c in clients:
        await c.aclose()


@pytest_asyncio.fixture
async def client(client_factory):
    return await client_factory()


@pytest.fixture
def ctx():
    from multigestor.session_deps import RequestContext

    return RequestContext(correlation_id="test-cid", client_ip="127.0.0.1", user_agent="pytest", method="POST")


@pytest.fixture
def audit_lines():
    lines: list[str] = []
    sink_id = logger.add(lambda m: lines.append(m.record["message"]), filter=lambda r: bool(r["extra"].get("audit")))
    yield lines
    logger.remove(sink_id)
