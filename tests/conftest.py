"""Shared test fixtures."""

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from creator_payouts.config import settings
from creator_payouts.models.payout import Base, CreatorBalance, CreatorBankAccount, CreatorProfile
from creator_payouts.providers.mock_provider import MockTransferProvider
from creator_payouts.security.encryption import FieldCipher


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No real sleeping between provider retries."""
    monkeypatch.setattr(settings, "retry_base_delay", 0.0)
    monkeypatch.setattr(settings, "retry_max_delay", 0.0)


@pytest.fixture
def webhook_secret() -> str:
    return "whsec_test_0123456789abcdef0123456789abcdef"


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher(FieldCipher.generate_key())


@pytest.fixture
def provider() -> MockTransferProvider:
    return MockTransferProvider(failure_rate=0.0, latency_ms=0)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    File-backed database, fresh per test.

    A file (rather than ``:memory:``) lets concurrent batch workers each
    hold their own connection.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payouts.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_creator(db_session: AsyncSession, cipher: FieldCipher):
    """Add a creator profile, optional verified bank account and USD balance (not committed)."""

    def _make(
        creator_id: str,
        country_code: str | None,
        balance: str | None = "100.00",
        account_number: str | None = "0123456789",
        routing: str | None = "044",
        bank_currency: str | None = "NGN",
        verified: bool = True,
        key: FieldCipher | None = None,
    ) -> None:
        db_session.add(CreatorProfile(id=creator_id, username=creator_id.lower(), country_code=country_code))
        if account_number is not None:
            enc = key or cipher
            db_session.add(CreatorBankAccount(
                creator_id=creator_id,
                account_number_encrypted=enc.encrypt(account_number),
                routing_number_encrypted=enc.encrypt(routing) if routing else None,
                account_holder_name=f"Holder {creator_id}",
                currency=bank_currency,
                is_verified=verified,
            ))
        if balance is not None:
            db_session.add(CreatorBalance(creator_id=creator_id, currency="USD", available_amount=Decimal(balance)))

    return _make


@pytest_asyncio.fixture
async def seeded_session(db_session: AsyncSession, make_creator):
    """
    Database session pre-loaded with creators.

    CR-NG: Nigerian creator, Access Bank NGN account, 100 USD balance
    CR-LOW: Nigerian creator with only 10 USD available
    CR-NOBANK: Ghanaian creator without a verified bank account
    CR-US: US creator (routes to Stripe Connect)
    """
    make_creator("CR-NG", "NG")
    make_creator("CR-LOW", "NG", balance="10.00", account_number="0987654321")
    make_creator("CR-NOBANK", "GH", account_number=None)
    make_creator("CR-US", "US", account_number="000123456789", routing="021000021", bank_currency="USD")
    await db_session.commit()
    yield db_session


@pytest_asyncio.fixture
async def client(seeded_session, session_factory, provider, cipher, webhook_secret, monkeypatch):
    """API client wired to the test database, mock provider and cipher."""
    from creator_payouts.database import get_session, get_session_factory
    from creator_payouts.main import app
    from creator_payouts.providers.factory import get_provider
    from creator_payouts.security.encryption import get_field_cipher

    async def override_session():
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(settings, "wise_webhook_secret", webhook_secret)
    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_field_cipher] = lambda: cipher

    # ASGITransport skips the lifespan; tables already exist in the test database
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()
