import os
from typing import AsyncGenerator

# Load .env.test when present, then fall back to an on-disk SQLite database
# and the signing fake gateway so tests never reach a real provider.
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), "..", ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./store_test.db")
os.environ.setdefault("PAYMENT_GATEWAY", "fake")

import email_validator
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.common.config import get_settings
from libs.db.base import Base

# Import models so metadata includes every store table
from services.store_service import models as _store_models  # noqa: F401
from services.store_service.gateway import FakeGateway
from services.store_service.services.webhook_processor import WebhookProcessor

# Clear cached settings to reload with the env vars above
get_settings.cache_clear()
settings = get_settings()

# Test fixtures use addresses on the reserved ".test" domain, which
# email-validator only accepts in its test environment mode.
email_validator.TEST_ENVIRONMENT = True

TEST_GATEWAY_SECRET = "test-gateway-secret"


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    Fresh SQLite database per test.

    A file (not :memory:) so several sessions can share it, which the
    webhook processor and the concurrency tests rely on.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test database, configured like production."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway(TEST_GATEWAY_SECRET)


@pytest.fixture
def processor(session_factory, fake_gateway) -> WebhookProcessor:
    return WebhookProcessor(session_factory, fake_gateway, settings=settings)


@pytest_asyncio.fixture
async def client(session_factory, fake_gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the store app with database, gateway and auth overridden.

    Callers are admins by default; checkout and order lookups run as guests
    unless a test overrides ``get_optional_user``.
    """
    from libs.auth.dependencies import get_current_user, get_optional_user
    from libs.db.session import get_async_db, get_session_factory
    from services.store_service.app.main import app
    from services.store_service.gateway import get_payment_gateway
    from tests.factories import make_admin_user

    async def _db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_current_user] = lambda: make_admin_user()
    app.dependency_overrides[get_optional_user] = lambda: None

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
