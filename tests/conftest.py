"""
Shared fixtures.

Every test gets its own Settings, SQLite cache file and fake backend, so
tests never share state through get_settings() or a global engine.
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from chatsync.core.config import Settings
from chatsync.infrastructure.http.chat_api import HttpChatApi
from chatsync.infrastructure.local.cache_repository import SqliteCacheRepository
from chatsync.infrastructure.local.database import get_engine, get_session_factory, init_db
from chatsync.models.session import SessionCredentials
from chatsync.utils.datetime_utils import now_utc
from fake_backend import FakeBackend


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        CACHE_DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}",
        RECONNECT_DELAY_SECONDS=0.01,
        POLL_INTERVAL_SECONDS=0.05,
        KEEPALIVE_TIMEOUT_SECONDS=2.0,
        DISPLAY_TIMEZONE="UTC",
    )


@pytest.fixture
def test_user_id():
    return "user-self"


@pytest.fixture
def other_user_id():
    return "user-other"


@pytest.fixture
def access_token(test_user_id):
    claims = {"sub": test_user_id, "exp": int((now_utc() + timedelta(hours=1)).timestamp())}
    return jwt.encode(claims, "test-secret", algorithm="HS256")


@pytest.fixture
def credentials(access_token):
    return SessionCredentials.from_access_token(access_token)


# ============================================
# Local cache
# ============================================


@pytest_asyncio.fixture
async def db_engine(settings):
    engine = get_engine(settings.CACHE_DATABASE_URL, echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory(db_engine)


@pytest.fixture
def cache(session_factory):
    return SqliteCacheRepository(session_factory=session_factory)


# ============================================
# Fake backend
# ============================================


@pytest.fixture
def backend(test_user_id, other_user_id):
    fake = FakeBackend(test_user_id)
    fake.add_user(other_user_id, "Other User")
    return fake


@pytest_asyncio.fixture
async def api_client(backend):
    transport = ASGITransport(app=backend.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def chat_api(settings, credentials, api_client):
    return HttpChatApi(settings, credentials, client=api_client)
