"""Pytest configuration and fixtures for Glass tests.

Test isolation strategy:
- Every test gets a fresh in-memory SQLite database (StaticPool engine)
- The remote store is a FakeDocumentStore, so no network is needed
- A deterministic master key is installed through the environment
- Settings and master key caches are cleared around each test
"""

import base64
from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine

from glass.app import create_app
from glass.config import clear_settings_cache
from glass.container import Container, build_container
from glass.db.engine import create_db_engine, init_local_schema
from glass.db.local_store import LocalStore
from glass.db.session import create_session_factory
from glass.services.crypto import EncryptionService, clear_master_key_cache
from glass.storage.client import FakeDocumentStore
from tests.helpers import StaticAuth

TEST_MASTER_KEY = b"test_master_key_for_encryption!!"


@pytest.fixture(autouse=True)
def test_environment(monkeypatch) -> Generator[None, None, None]:
    """Offline environment with a deterministic master key."""
    monkeypatch.setenv("GLASS_ENV", "test")
    monkeypatch.setenv("LOCAL_DATABASE_URL", "sqlite://")
    monkeypatch.setenv("GLASS_KEY_ENCRYPTION_KEY", base64.b64encode(TEST_MASTER_KEY).decode("ascii"))
    monkeypatch.delenv("REMOTE_STORE_URL", raising=False)
    monkeypatch.delenv("REMOTE_STORE_API_KEY", raising=False)
    monkeypatch.delenv("DEFAULT_LOCAL_USER_ID", raising=False)
    monkeypatch.delenv("REMOTE_TIMEOUT_S", raising=False)
    clear_settings_cache()
    clear_master_key_cache()
    yield
    clear_settings_cache()
    clear_master_key_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with the local schema."""
    engine = create_db_engine("sqlite://")
    init_local_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def local_store(engine: Engine) -> LocalStore:
    return LocalStore(create_session_factory(engine))


@pytest.fixture
def remote_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
async def encryption() -> EncryptionService:
    """Encryption service with the default local user's key active."""
    service = EncryptionService()
    await service.initialize_key("default_user")
    return service


@pytest.fixture
def auth() -> StaticAuth:
    """Settable auth snapshot for repository-level tests (starts signed out)."""
    return StaticAuth()


@pytest.fixture
async def container(
    engine: Engine, remote_store: FakeDocumentStore
) -> AsyncGenerator[Container, None]:
    """Fully wired application container, started as the local default user."""
    container = build_container(engine=engine, remote_store=remote_store)
    await container.start()
    yield container
    await container.aclose()


@pytest.fixture
def app_container(engine: Engine, remote_store: FakeDocumentStore) -> Container:
    """Container for bridge tests; the app lifespan starts and closes it."""
    return build_container(engine=engine, remote_store=remote_store)


@pytest.fixture
def client(app_container: Container) -> Generator[TestClient, None, None]:
    """TestClient running the bridge app (lifespan included).

    Use client.portal.call(...) to await container coroutines on the app's loop.
    """
    app = create_app(container=app_container, log_requests=False)
    with TestClient(app) as client:
        yield client
