import os
import tempfile

# Settings are read at import time, so the test environment goes first
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_URL", "memory://")
os.environ.setdefault("NOTIFICATION_QUEUE_URL", "memory://")
os.environ.setdefault("API_KEY_GATEWAY", "test-gateway-key")
os.environ.setdefault("API_KEY_USER_SERVICE", "test-user-service-key")
os.environ.setdefault("API_KEY_NOTIFICATION_SERVICE", "test-notification-key")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "auth-service-test-logs"))

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from main import app
from core.cache import InMemoryStore
from core.database import Base
from core.exceptions import UnauthorizedError
from core.queue import InMemoryNotificationQueue
from models.users import User, UserRole
from services.identity_providers import (ExternalIdentityAssertion, ExternalIdentityProvider,
    IdentityProviderRegistry)
from services.rate_limiter import RequestQuota
from utils.deps import get_db
from utils.hashing import get_password_hash

# SYNC SQLite for testing (matches sync service layer)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

TEST_PASSWORD = "TestPassword123"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


class FakeIdentityProvider(ExternalIdentityProvider):
    """
    Accepts provider tokens of the form "<subject>:<email>" and rejects
    anything else.
    """

    name = "fake"

    def resolve_external_identity(self, provider_token: str) -> ExternalIdentityAssertion:
        subject_id, sep, email = provider_token.partition(":")
        if not sep or not subject_id or not email:
            raise UnauthorizedError("Provider rejected the token")
        return ExternalIdentityAssertion(
            provider=self.name,
            subject_id=subject_id,
            email=email,
            display_name="Federated User"
        )


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    Uses SYNC SQLAlchemy to match the service layer.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def cache() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def redis_client() -> fakeredis.FakeRedis:
    """In-process Redis server, private to one test."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def queue() -> InMemoryNotificationQueue:
    return InMemoryNotificationQueue(max_length=100)


@pytest.fixture
def identity_providers() -> IdentityProviderRegistry:
    registry = IdentityProviderRegistry()
    registry.register(FakeIdentityProvider())
    return registry


@pytest.fixture
async def client(session: Session, cache, queue, identity_providers):
    """
    Yields an HTTP client that interacts with the app using the test database.

    ASGITransport does not run the lifespan, so the store handles and the
    request quota the lifespan would create are put on app.state here.
    """
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache = cache
    app.state.quota = RequestQuota("memory://")
    app.state.notifications = queue
    app.state.identity_providers = identity_providers

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def create_user(session: Session, email: str, name: str = "Test User", password: str = TEST_PASSWORD,
                **fields) -> User:
    user = User(
        email=email,
        name=name,
        hashed_password=get_password_hash(password),
        **fields
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def user(session: Session) -> User:
    """Registered but not yet verified."""
    return create_user(session, "unverified@example.com", is_email_verified=False)


@pytest.fixture
def verified_user(session: Session) -> User:
    return create_user(session, "testuser@example.com", is_email_verified=True)


@pytest.fixture
def admin_user(session: Session) -> User:
    return create_user(session, "admin@example.com", name="Admin", role=UserRole.ADMIN.value,
                       is_email_verified=True)


async def login(client: AsyncClient, email: str, password: str = TEST_PASSWORD):
    return await client.post("/auth/token", data={"username": email, "password": password})


def auth_header(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}
