"""Pytest configuration and fixtures for async testing."""
import base64
import os
from typing import AsyncGenerator

# Keep tests off real infrastructure; must run before settlement is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.test")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import settlement.models  # noqa: F401  (registers tables)
from settlement.database import Base
from settlement.services.payment_store import PaymentRecordStore
from settlement.services.settlement_service import SettlementService
from settlement.utils.crypto import CryptoVault

from tests.utils.fakes import FakePayPalGateway, RecordingLogger, SequentialIds, StepClock

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Create a fresh in-memory database for each test.

    Yields:
        Session factory bound to the test database
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def encryption_key() -> str:
    """Fresh base64 256-bit key."""
    return base64.b64encode(os.urandom(32)).decode("ascii")


@pytest.fixture(scope="function")
def vault(encryption_key: str) -> CryptoVault:
    """Vault bound to the test key."""
    return CryptoVault(encryption_key)


@pytest.fixture(scope="function")
def store(session_factory: async_sessionmaker[AsyncSession]) -> PaymentRecordStore:
    """Payment store with a strictly increasing clock."""
    return PaymentRecordStore(session_factory, clock=StepClock())


@pytest.fixture(scope="function")
def gateway() -> FakePayPalGateway:
    """In-memory PayPal gateway."""
    return FakePayPalGateway()


@pytest.fixture(scope="function")
def recording_logger() -> RecordingLogger:
    """Logger that records events for assertions."""
    return RecordingLogger()


@pytest.fixture(scope="function")
def service(
    store: PaymentRecordStore,
    gateway: FakePayPalGateway,
    vault: CryptoVault,
    recording_logger: RecordingLogger,
) -> SettlementService:
    """Settlement service wired to the test store, fake gateway and vault."""
    return SettlementService(
        store=store,
        gateway=gateway,
        vault=vault,
        id_generator=SequentialIds(),
        logger=recording_logger,
    )
