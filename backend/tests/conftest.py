import os
import warnings

import pytest
from sqlalchemy import create_engine

# Set environment variables BEFORE importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-32-chars-minimum!!"
os.environ["ENVIRONMENT"] = "local"
os.environ["APP_URL"] = ""
os.environ["SMTP_HOST"] = ""

warnings.filterwarnings("ignore", category=DeprecationWarning)

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from deseo.core.config import settings
from deseo.core.security import create_session_token
from deseo.db.session import Base, get_db
from deseo.main import app


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)


@pytest.fixture(scope="session", autouse=True)
def disable_rate_limiting():
    """Disable rate limiting for all tests."""
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original


@pytest.fixture
def db_path(tmp_path):
    """SQLite file backing the app for one test."""
    return tmp_path / "sync-test.db"


@pytest.fixture(autouse=True)
def sync_db_override(db_path):
    from deseo.models import models as models_module
    _ = models_module
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    async_session = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield
    app.dependency_overrides.clear()
    engine.sync_engine.dispose()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def sign_in():
    """Attach a session cookie for ``email`` to a client."""

    def _sign_in(test_client: TestClient, email: str) -> None:
        test_client.cookies.set("token", create_session_token(email))

    return _sign_in
