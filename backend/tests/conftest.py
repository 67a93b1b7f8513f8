"""Shared test fixtures."""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stride_push.database.base import Base
from stride_push.directory.models import DeviceToken, User
from stride_push.integrations.cache import NullCacheService
from stride_push.notifications.models import NotificationRecord
from stride_push.queue.models import DeliveryQueueItem

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [User, DeviceToken, NotificationRecord, DeliveryQueueItem]


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every session of a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


_token_seq = iter(range(1, 1_000_000))


def make_token() -> str:
    return f"ExponentPushToken[test-{next(_token_seq)}]"


@pytest.fixture
def make_user(db_session):
    """Factory: create a user with `tokens` device tokens (count or explicit list)."""

    def _make(
        email: str | None = None,
        school_domain: str = "campus.edu",
        push_enabled: bool = True,
        tokens: int | Sequence[str] = 0,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:8]}@{school_domain or 'example.com'}",
            school_domain=school_domain,
            push_enabled=push_enabled,
        )
        db_session.add(user)
        token_values = [make_token() for _ in range(tokens)] if isinstance(tokens, int) else list(tokens)
        base = datetime.now(UTC)
        for i, value in enumerate(token_values):
            db_session.add(
                DeviceToken(user_id=user.id, token=value, platform="ios", created_at=base + timedelta(seconds=i))
            )
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_queue_item(db_session):
    """Factory: insert a pending queue row with a distinct, increasing created_at."""
    base = datetime.now(UTC) - timedelta(minutes=10)
    counter = iter(range(100_000))

    def _make(token: str | None = None, attempts: int = 0, status=None, **fields) -> DeliveryQueueItem:
        from stride_push.queue.models import DeliveryStatus

        item = DeliveryQueueItem(
            notification_id=fields.pop("notification_id", uuid.uuid4()),
            device_token=token or make_token(),
            notification_payload=fields.pop(
                "payload", {"title": "Hello", "body": "World", "data": {"k": "v"}, "channelId": "default"}
            ),
            status=status or DeliveryStatus.PENDING,
            attempts=attempts,
            created_at=fields.pop("created_at", base + timedelta(seconds=next(counter))),
            **fields,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture
def null_cache():
    """No-op cache for testing."""
    return NullCacheService()


@pytest.fixture
def app(monkeypatch, session_factory, null_cache):
    """Application wired to the in-memory database, without migrations or the queue processor."""
    from contextlib import asynccontextmanager

    from stride_push import main
    from stride_push.database.base import get_db
    from stride_push.rate_limit import limiter
    from stride_push.realtime.notifier import RealtimeNotifier, install_insert_listener

    @asynccontextmanager
    async def test_lifespan(application):
        application.state.cache = null_cache
        application.state.session_factory = session_factory
        application.state.notifier = RealtimeNotifier()
        application.state.processor = None
        remove_listener = install_insert_listener(session_factory, application.state.notifier)
        try:
            yield
        finally:
            remove_listener()

    monkeypatch.setattr(main, "lifespan", test_lifespan)
    application = main.create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    limiter.reset()
    return application


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
