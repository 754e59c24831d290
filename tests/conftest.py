"""
Pytest configuration and fixtures for birthday scheduling tests.

Provides:
- A file-backed SQLite database per test (real locking for concurrent claims)
- Test client for API testing
- Factory fixtures for users and pending messages
- A delivery engine wired to an in-process mock email service
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import uuid  # noqa: E402
from collections.abc import AsyncGenerator, Callable  # noqa: E402
from datetime import date, datetime  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from birthdays.core.database import build_engine, get_db  # noqa: E402
from birthdays.main import app  # noqa: E402
from birthdays.models import (  # noqa: E402
    Base,
    MessageStatus,
    MessageTemplate,
    PendingMessage,
    User,
)
from birthdays.models.message import BIRTHDAY_TEMPLATE_CONTENT, BIRTHDAY_TEMPLATE_ID  # noqa: E402
from birthdays.services.delivery import DeliveryConfig, DeliveryEngine  # noqa: E402
from birthdays.services.schedule_store import SqlScheduleStore  # noqa: E402

TEST_EMAIL_SERVICE_URL = "http://email-service.test/send"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create an async engine on a fresh SQLite file with the schema and template seeded."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(
            MessageTemplate(
                id=BIRTHDAY_TEMPLATE_ID,
                name="birthday",
                content=BIRTHDAY_TEMPLATE_CONTENT,
            )
        )
        await session.commit()

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory for tests that need several independent sessions."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(db_session: AsyncSession) -> SqlScheduleStore:
    """Schedule store on the test session."""
    return SqlScheduleStore(db_session)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating committed test users."""

    async def _create_user(
        email: str | None = None,
        first_name: str = "Ada",
        last_name: str = "Lovelace",
        birth_date: date = date(1990, 1, 1),
        location: str = "Europe/London",
    ) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            location=location,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def pending_message_factory(db_session: AsyncSession, user_factory):
    """Factory for creating committed pending messages."""

    async def _create_message(
        dispatch_at: datetime,
        user: User | None = None,
        status: MessageStatus = MessageStatus.PENDING,
        claimed_at: datetime | None = None,
    ) -> PendingMessage:
        if user is None:
            user = await user_factory()

        message = PendingMessage(
            user_id=user.id,
            template_id=BIRTHDAY_TEMPLATE_ID,
            dispatch_at=dispatch_at,
            status=status,
            claimed_at=claimed_at,
        )
        db_session.add(message)
        await db_session.commit()
        return message

    return _create_message


@pytest.fixture
def fetch_messages(db_session: AsyncSession):
    """Read every pending message row fresh from the database."""

    async def _fetch() -> list[PendingMessage]:
        result = await db_session.execute(
            select(PendingMessage)
            .order_by(PendingMessage.id)
            .execution_options(populate_existing=True)
        )
        messages = list(result.scalars().all())
        await db_session.commit()
        return messages

    return _fetch


# ============================================================================
# Delivery Fixtures
# ============================================================================


def sent_response(request: httpx.Request) -> httpx.Response:
    """Email service reply for an accepted message."""
    return httpx.Response(200, json={"status": "sent"})


@pytest_asyncio.fixture
async def delivery_engine_factory():
    """Build a DeliveryEngine whose HTTP client talks to a mock handler.

    Clients are closed when the test finishes.
    """
    clients: list[httpx.AsyncClient] = []

    def _create_engine(
        handler: Callable[[httpx.Request], httpx.Response] = sent_response,
        timeout_seconds: float = 1.0,
        max_attempts: int = 3,
        concurrency: int = 10,
    ) -> DeliveryEngine:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        config = DeliveryConfig(
            url=TEST_EMAIL_SERVICE_URL,
            timeout_seconds=timeout_seconds,
            max_attempts=max_attempts,
            retry_delay_seconds=0.0,
            concurrency=concurrency,
        )
        return DeliveryEngine(client, config)

    yield _create_engine

    for client in clients:
        await client.aclose()
