"""
Pytest configuration and fixtures for dosepush tests.
"""

import asyncio
import base64
import os
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Tuple
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from dosepush.config.settings import Settings
from dosepush.domain.results import TransportResult
from dosepush.domain.schedule import Base, RecurringSchedule
from dosepush.domain.subscription import SubscriptionCreate
from dosepush.infrastructure.database import create_engine_for, create_session_factory
from dosepush.infrastructure.vapid import VapidSigner, generate_vapid_keys
from dosepush.usecases.dispatch_ledger import DispatchLedger
from dosepush.usecases.push_delivery import PushDeliveryService
from dosepush.usecases.reminder_resolver import ReminderResolver
from dosepush.usecases.subscription_registry import SubscriptionRegistry


# Use a separate in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_ZONE = ZoneInfo("Europe/Berlin")
TEST_SUBJECT = "mailto:ops@example.com"


class FakePushTransport:
    """Records push requests and answers with preset status codes."""

    def __init__(self, statuses: Dict[str, int] = None, default_status: int = 201, delays: Dict[str, float] = None):
        self.statuses = statuses or {}
        self.delays = delays or {}
        self.default_status = default_status
        self.calls: List[Tuple[str, Dict[str, str]]] = []

    async def post(self, url: str, headers: Dict[str, str]) -> TransportResult:
        self.calls.append((url, headers))
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        status = self.statuses.get(url, self.default_status)
        if isinstance(status, Exception):
            raise status
        ok = 200 <= status < 300
        return TransportResult(
            ok=ok,
            status_code=status,
            error=None if ok else f"Push request failed with status {status}.",
            transport="fake",
        )


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed engine where every session gets its own connection."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path}/dispatch.db")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    """Session factory injected into the components under test."""
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="session")
def vapid_keys() -> Tuple[str, str]:
    """A throwaway VAPID key pair (public base64url, private PEM)."""
    return generate_vapid_keys()


@pytest.fixture
def signer(vapid_keys) -> VapidSigner:
    public_key, private_pem = vapid_keys
    return VapidSigner(public_key=public_key, private_key_pem=private_pem, subject=TEST_SUBJECT)


@pytest.fixture
def fake_transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture
def registry(session_factory) -> SubscriptionRegistry:
    return SubscriptionRegistry(session_factory)


@pytest.fixture
def ledger(session_factory) -> DispatchLedger:
    return DispatchLedger(session_factory)


@pytest.fixture
def delivery(registry, signer, fake_transport) -> PushDeliveryService:
    return PushDeliveryService(registry, signer, fake_transport, ttl=60)


@pytest.fixture
def resolver(session_factory, ledger, delivery) -> ReminderResolver:
    return ReminderResolver(session_factory, ledger, delivery, TEST_ZONE)


@pytest.fixture
def subscription_payload():
    """Build a valid browser subscription for an endpoint."""
    def _build(endpoint: str = "https://fcm.googleapis.com/fcm/send/abc123") -> SubscriptionCreate:
        browser_key = ec.generate_private_key(ec.SECP256R1()).public_key()
        p256dh = browser_key.public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )
        return SubscriptionCreate(
            endpoint=endpoint,
            keys={"p256dh": _b64url(p256dh), "auth": _b64url(os.urandom(16))},
            user_agent="pytest-browser/1.0",
        )
    return _build


@pytest.fixture
def add_schedule(session_factory):
    """Insert a recurring schedule and return it."""
    async def _add(
        time_of_day: str = "08:00:00",
        workspace_id: int = 1,
        user_id: int = 1,
        is_active: bool = True,
        medicine_name: str = "Metformin",
        reminder_message: str = None,
    ) -> RecurringSchedule:
        schedule = RecurringSchedule(
            workspace_id=workspace_id,
            user_id=user_id,
            medicine_name=medicine_name,
            dosage_value=Decimal("500"),
            dosage_unit="mg",
            time_of_day=time_of_day,
            reminder_message=reminder_message,
            is_active=is_active,
            created_at=datetime.utcnow(),
        )
        async with session_factory() as session:
            session.add(schedule)
            await session.commit()
        return schedule
    return _add


@pytest.fixture
def test_settings(vapid_keys) -> Settings:
    """Application settings for route tests, isolated from any .env file."""
    public_key, private_pem = vapid_keys
    return Settings(
        _env_file=None,
        push_vapid_public_key=public_key,
        push_vapid_private_key=private_pem.replace("\n", "\\n"),
        push_vapid_subject=TEST_SUBJECT,
        reminder_cron_token="cron-secret",
        db_url=TEST_DATABASE_URL,
        app_timezone="Europe/Berlin",
        scheduler_enabled=False,
        batch_deadline_seconds=None,
    )
