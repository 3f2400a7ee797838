"""
Pytest configuration and fixtures for ProjectShelf analytics tests
"""

import os
import sys
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./projectshelf.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ANALYTICS_TIMEZONE", "Asia/Kolkata")

from projectshelf.auth import create_access_token  # noqa: E402
from projectshelf.database import Database  # noqa: E402
from projectshelf.models.user import User  # noqa: E402
from projectshelf.services.container import AnalyticsServices, build_analytics_services  # noqa: E402

from utils.mock_utils import create_test_project, create_test_user  # noqa: E402

REFERENCE_TIMEZONE = "Asia/Kolkata"


# Tests run against TEST_DATABASE_URL when it is set (PostgreSQL, as in
# production) and otherwise against a throwaway SQLite file per test.
def get_test_database_url(tmp_path) -> str:
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url
    return f"sqlite+aiosqlite:///{tmp_path / 'projectshelf_test.db'}"


@pytest.fixture(scope="function")
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """
    Fresh schema for each test function.
    """
    db = Database(get_test_database_url(tmp_path), environment="test")
    db.connect()
    await db.drop_all()
    await db.create_all()

    yield db

    try:
        await db.drop_all()
    finally:
        await db.dispose()


@pytest.fixture
async def test_db(database: Database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def services(database: Database) -> AnalyticsServices:
    return build_analytics_services(database, REFERENCE_TIMEZONE)


@pytest.fixture
async def owner(test_db) -> User:
    return await create_test_user(test_db, username="owner", email="owner@example.com")


@pytest.fixture
async def viewer(test_db) -> User:
    return await create_test_user(test_db, username="viewer", email="viewer@example.com")


@pytest.fixture
async def second_viewer(test_db) -> User:
    return await create_test_user(test_db, username="viewer2", email="viewer2@example.com")


@pytest.fixture
async def project(test_db, owner: User):
    return await create_test_project(test_db, owner_id=owner.id, title="Case Study")


@pytest.fixture
async def client(database: Database) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app that uses the per-test database."""
    from main import attach_services, create_app

    app = create_app(database)
    attach_services(app, database)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def owner_headers(owner: User) -> dict:
    return auth_headers_for(owner)


@pytest.fixture
def viewer_headers(viewer: User) -> dict:
    return auth_headers_for(viewer)
