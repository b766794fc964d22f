"""
Main pytest configuration for all PDV tests.

Environment variables are set before any ``pdv`` import so the cached
settings object sees the test configuration.
"""

import os

# Set test environment variables before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["RATE_LIMIT_MAX"] = "1000"

import httpx
import pytest
import pytest_asyncio

from pdv.core.database import database_manager
from pdv.infrastructure.cache import MemoryStore
from pdv.main import app, rate_limiter
from pdv.models import User
from pdv.services.cache import cache


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "redis: marks tests as Redis-related")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "security: marks tests as security tests")


@pytest_asyncio.fixture
async def memory_cache():
    """Attach a fresh in-memory store to the global cache service."""
    await cache.attach(MemoryStore(sweep_interval=3600))
    yield cache
    await cache.close()


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory SQLite schema for one test."""
    await database_manager.create_tables()
    yield database_manager
    await database_manager.drop_tables()
    await database_manager.close()


@pytest_asyncio.fixture
async def users(database):
    """Two regular users and one admin."""
    async with database.session_factory() as session:
        seeded = {
            "alice": User(username="alice", name="Alice", email="alice@example.com"),
            "bob": User(username="bob", name="Bob", email="bob@example.com"),
            "admin": User(
                username="admin", name="Admin", email="admin@example.com", is_admin=True
            ),
        }
        session.add_all(seeded.values())
        await session.commit()
    return seeded


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Rate limiter state is process-wide; start every test clean."""
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest_asyncio.fixture
async def client(memory_cache, users):
    """HTTP client bound to the app. The lifespan is not run; fixtures own setup."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def login(client):
    """Return a callable that presents a session cookie for a username."""

    def _login(username: str) -> None:
        client.cookies.set("auth_token", f"{username}_1700000000000")

    return _login
