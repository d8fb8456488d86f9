"""
Pytest configuration and fixtures for Tessera tests.

This module provides:
- Settings pointing at a throwaway SQLite database per test
- Engine, connection and shared-services fixtures
- An async HTTP client over the ASGI app
- User fixtures and authentication headers
"""

# Set environment variables BEFORE importing anything from tessera
import os

os.environ["JWT_SECRET"] = "test-secret-key-for-tessera-tests-0123456789"
os.environ["RATE_LIMIT_AUTH"] = "10000/hour"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tessera.app.models import UserModel
from tessera.app.schema import metadata
from tessera.core.config import Settings
from tessera.core.database import Database, create_database_engine
from tessera.core.security import configure_password_hasher
from tessera.main import create_app
from tessera.records.schema import forget_table_columns
from tessera.services import Services, build_services

TEST_SECRET = "test-secret-key-for-tessera-tests-0123456789"
TEST_PASSWORD = "TestPass123!"


def make_settings(**overrides: Any) -> Settings:
    """Settings with cheap hashing and no .env file."""
    values: dict[str, Any] = {
        "environment": "testing",
        "jwt_secret": TEST_SECRET,
        "argon2_time_cost": 1,
        "argon2_memory_cost": 8192,
        "argon2_parallelism": 1,
        "rate_limit_auth": "10000/hour",
        "queue_backoff_seconds": 10,
        "queue_max_attempts": 3,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings


@pytest.fixture(autouse=True, scope="session")
def cheap_password_hashing():
    """Argon2 with minimal cost so hashing does not dominate test time."""
    configure_password_hasher(make_settings())


# ============================================================================
# Database Fixtures
# ============================================================================
@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'tessera.db'}")


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh database with every table of the reference application."""
    engine = create_database_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    # The columns cache is process-wide; every test gets a new database
    forget_table_columns()

    yield engine

    await engine.dispose()
    forget_table_columns()


@pytest.fixture
def database(engine: AsyncEngine) -> Database:
    return Database(engine)


@pytest_asyncio.fixture
async def conn(engine: AsyncEngine) -> AsyncGenerator[AsyncConnection, None]:
    async with engine.connect() as connection:
        yield connection


@pytest_asyncio.fixture
async def services(settings: Settings, engine: AsyncEngine) -> AsyncGenerator[Services, None]:
    services = build_services(settings, engine=engine)
    yield services
    await services.cache.close()


# ============================================================================
# HTTP Client Fixtures
# ============================================================================
@pytest_asyncio.fixture
async def async_client(settings: Settings, services: Services) -> AsyncGenerator[AsyncClient, None]:
    """Async client over the ASGI app, sharing the test's services."""
    app = create_app(settings, services=services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ============================================================================
# User Fixtures
# ============================================================================
@pytest.fixture
def make_user(services: Services) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory inserting a user through the mapper (password hashed on save)."""

    async def _make_user(**overrides: Any) -> dict[str, Any]:
        data = {
            "name": "Test User",
            "email": "testuser@example.com",
            "password": TEST_PASSWORD,
            "role": "user",
            "status": "active",
        }
        data.update(overrides)
        async with services.database.connect() as connection:
            users = UserModel(connection, cache=services.cache, timestamp_format="unix")
            user_id = await users.create(data)
            return await users.find(user_id)

    return _make_user


@pytest_asyncio.fixture
async def test_user(make_user) -> dict[str, Any]:
    return await make_user()


@pytest_asyncio.fixture
async def admin_user(make_user) -> dict[str, Any]:
    return await make_user(name="Admin User", email="admin@example.com", role="admin")


def token_for(services: Services, user: dict[str, Any]) -> str:
    return services.token_auth.generate_token(
        {"user_id": user["id"], "email": user["email"], "role": user["role"], "status": user["status"]}
    )


@pytest.fixture
def issue_token(services: Services) -> Callable[[dict[str, Any]], str]:
    return lambda user: token_for(services, user)


@pytest.fixture
def auth_headers(services: Services, test_user: dict[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(services, test_user)}"}


@pytest.fixture
def admin_headers(services: Services, admin_user: dict[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(services, admin_user)}"}
