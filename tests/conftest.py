"""pytest fixtures shared across all tests."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fakes import FakeControlPlane, FakeSshHost
from vscan.core.config import Settings
from vscan.models.base import Base

# Use SQLite in-memory for tests — no PostgreSQL required.
# Each test function gets its own fresh DB to avoid cross-test pollution.
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ── Database & app fixtures ──────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DB_URL,
        app_debug=True,
        publish_initial_wait=0,
        verify_interval=0,
        publish_retry_delay=0,
        ssh_keepalive_interval=3600,
        ssh_sweep_interval=3600,
    )


@pytest_asyncio.fixture
async def engine():
    """Create a fresh in-memory SQLite engine per test function."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Yield an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def ssh_host() -> FakeSshHost:
    return FakeSshHost()


@pytest_asyncio.fixture
async def services(settings, session_factory, control_plane, ssh_host):
    from vscan.core.services import build_services

    svc = build_services(settings, session_factory, connector=ssh_host, runner_factory=control_plane.factory)
    yield svc
    await svc.pool.close()
    await svc.gateway.close()


@pytest_asyncio.fixture
async def client(session_factory, services):
    """HTTPX async test client wired to the FastAPI app with a test DB and fake remotes."""
    from vscan.api.app import create_app
    from vscan.api.dependencies import get_db

    app = create_app()
    app.state.services = services

    async def override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
