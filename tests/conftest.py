from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import vidsum.models  # noqa: F401
from vidsum.config import Settings, get_settings
from vidsum.database import Base, get_db
from vidsum.dependencies import get_billing_provider, get_catalog
from vidsum.services.plans import build_catalog
from vidsum.services.subscription_store import SubscriptionStore
from tests.helpers import ADMIN_TOKEN, JWT_SECRET, WEBHOOK_SECRET, FakeProvider


# -------------------------
# Fixtures
# -------------------------
@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite://",
        jwt_secret=JWT_SECRET,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        admin_token=ADMIN_TOKEN,
        site_url="https://vidsum.test",
        summarizer_url=None,
    )


@pytest.fixture
def catalog(settings):
    return build_catalog(settings)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def store(session) -> SubscriptionStore:
    return SubscriptionStore(session)


@pytest.fixture
def app(settings, provider, catalog, session_maker):
    from vidsum.main import app as fastapi_app

    async def _override_get_db():
        async with session_maker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    fastapi_app.dependency_overrides[get_billing_provider] = lambda: provider
    fastapi_app.dependency_overrides[get_catalog] = lambda: catalog
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
