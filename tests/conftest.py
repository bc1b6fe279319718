"""Pytest configuration and shared fixtures."""

import os
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

# Set required environment variables for testing BEFORE importing app
os.environ.setdefault("YDMS_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("YDMS_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("YDMS_NDR_BASE_URL", "http://ndr.test")
os.environ.setdefault("YDMS_NDR_API_KEY", "test-ndr-key")
os.environ.setdefault("YDMS_PREFECT_BASE_URL", "")
os.environ.setdefault("YDMS_PUBLIC_BASE_URL", "http://ydms.test")

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base
from app.core.ndr_client import NDRClient, RequestMeta
from app.core.prefect_client import PrefectClient
from app.database import models  # noqa: F401
from app.main import app


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so background sessions see the same data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ydms_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def meta() -> RequestMeta:
    return RequestMeta(api_key="test-ndr-key", user_id="user-1", user_role="course_admin", request_id="req-1")


@pytest.fixture
def mock_ndr() -> AsyncMock:
    """NDR client whose every call is an AsyncMock."""
    return AsyncMock(spec=NDRClient)


@pytest.fixture
def disabled_prefect() -> PrefectClient:
    """Scheduler client with no base URL; services keep runs local."""
    return PrefectClient(base_url="")


@pytest.fixture
def mock_prefect() -> AsyncMock:
    """Enabled scheduler client with mocked calls."""
    prefect = AsyncMock(spec=PrefectClient)
    prefect.enabled = True
    return prefect
