"""Integration tests for the payout orchestrator."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from creator_payouts.creators.store import CreatorStore
from creator_payouts.engine.bank_accounts import ADD_BANK_ACCOUNT_MESSAGE
from creator_payouts.engine.orchestrator import (
    cancel_payout,
    delete_payout,
    get_creator_payout_stats,
    get_payout_status,
    list_payout_history,
    request_payout,
)
from creator_payouts.ledger import PayoutNotFound
from creator_payouts.models.enums import ErrorCode, PayoutMethod
from creator_payouts.models.payout import AuditLog, Payout
from creator_payouts.providers.mock_provider import MockTransferProvider
from creator_payouts.security.encryption import FieldCipher


async def _balance(session, creator_id: str) -> Decimal:
    return await CreatorStore(session).get_available_balance(creator_id, "USD")


async def _payout_count(session) -> int:
    return (await session.execute(select(func.count(Payout.id)))).scalar_one()


@pytest.mark.asyncio
async def test_payout_to_nigerian_bank(seeded_session, provider, cipher):
    """50 USD to a creator with a verified NGN account."""
    result = await request_payout(seeded_session, provider, "CR-NG", Decimal("50.00"), "USD", cipher=cipher)

    assert result.success
    payout = result.payout
    assert payout.status == "processing"
    assert payout.currency == "NGN"
    assert payout.amount == Decimal("80000.00")
    assert payout.source_amount == Decimal("50.00")
    assert payout.source_currency == "USD"
    assert payout.balance_deducted is True
    assert payout.payout_metadata["country_code"] == "NG"
    assert payout.payout_metadata["resolved_from"] == "profile"
    assert await _balance(seeded_session, "CR-NG") == Decimal("50.00")


@pytest.mark.asyncio
async def test_insufficient_creator_balance(seeded_session, provider, cipher):
    result = await request_payout(seeded_session, provider, "CR-LOW", Decimal("50.00"), cipher=cipher)

    assert not result.success
    assert result.code == ErrorCode.INSUFFICIENT_BALANCE
    assert result.retryable is False
    assert result.payout is None
    assert await _payout_count(seeded_session) == 0
    assert provider.quote_calls == 0
    assert await _balance(seeded_session, "CR-LOW") == Decimal("10.00")

    rejected = (await seeded_session.execute(
        select(AuditLog).where(AuditLog.action == "payout_rejected")
    )).scalars().all()
    assert len(rejected) == 1
    assert rejected[0].payout_id is None


@pytest.mark.asyncio
async def test_unknown_creator(seeded_session, provider, cipher):
    result = await request_payout(seeded_session, provider, "CR-GHOST", Decimal("5"), cipher=cipher)
    assert result.code == ErrorCode.CREATOR_NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10"), Decimal("NaN")])
async def test_invalid_amount(seeded_session, provider, cipher, amount):
    result = await request_payout(seeded_session, provider, "CR-NG", amount, cipher=cipher)
    assert result.code == ErrorCode.INVALID_AMOUNT
    assert await _payout_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_missing_bank_account(seeded_session, provider, cipher):
    result = await request_payout(seeded_session, provider, "CR-NOBANK", Decimal("5"), cipher=cipher)

    assert result.code == ErrorCode.INVALID_BANK_ACCOUNT
    assert result.error == ADD_BANK_ACCOUNT_MESSAGE
    assert await _payout_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_bank_details_encrypted_with_another_key(seeded_session, provider):
    result = await request_payout(
        seeded_session, provider, "CR-NG", Decimal("5"), cipher=FieldCipher(FieldCipher.generate_key()),
    )
    assert result.code == ErrorCode.INVALID_BANK_ACCOUNT
    assert await _payout_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_country_served_by_other_provider(seeded_session, provider, cipher):
    result = await request_payout(seeded_session, provider, "CR-US", Decimal("5"), cipher=cipher)

    assert result.code == ErrorCode.UNSUPPORTED_COUNTRY
    assert provider.create_calls == 0


@pytest.mark.asyncio
async def test_stripe_connect_provider_pays_us_creator(seeded_session, cipher):
    provider = MockTransferProvider(failure_rate=0.0, latency_ms=0, method=PayoutMethod.STRIPE_CONNECT)

    result = await request_payout(seeded_session, provider, "CR-US", Decimal("20.00"), cipher=cipher)

    assert result.success
    assert result.payout.provider == "stripe_connect"
    assert result.payout.amount == Decimal("20.00")
    assert result.payout.currency == "USD"


@pytest.mark.asyncio
async def test_same_reference_pays_once(seeded_session, provider, cipher):
    first = await request_payout(
        seeded_session, provider, "CR-NG", Decimal("30.00"), cipher=cipher, reference="sbp_once",
    )
    second = await request_payout(
        seeded_session, provider, "CR-NG", Decimal("30.00"), cipher=cipher, reference="sbp_once",
    )

    assert first.success and second.success
    assert second.payout.id == first.payout.id
    assert provider.create_calls == 1
    assert await _balance(seeded_session, "CR-NG") == Decimal("70.00")


@pytest.mark.asyncio
async def test_timeout_then_retry_creates_one_transfer(seeded_session, provider, cipher):
    provider.timeout_after_create()

    first = await request_payout(
        seeded_session, provider, "CR-NG", Decimal("50.00"), cipher=cipher, reference="sbp_lost",
    )
    assert first.code == ErrorCode.TIMEOUT
    assert first.retryable is True
    assert first.payout.status == "pending"
    assert await _balance(seeded_session, "CR-NG") == Decimal("100.00")

    second = await request_payout(
        seeded_session, provider, "CR-NG", Decimal("50.00"), cipher=cipher, reference="sbp_lost",
    )

    assert second.success
    assert second.payout.id == first.payout.id
    assert second.payout.status == "processing"
    assert provider.create_calls == 1
    assert await _balance(seeded_session, "CR-NG") == Decimal("50.00")


@pytest.mark.asyncio
async def test_balance_race_cancels_transfer(seeded_session, provider, cipher, monkeypatch):
    async def drained(self, creator_id, currency, amount):
        return False

    monkeypatch.setattr(CreatorStore, "deduct_balance", drained)

    result = await request_payout(seeded_session, provider, "CR-NG", Decimal("50.00"), cipher=cipher)

    assert not result.success
    assert result.code == ErrorCode.INSUFFICIENT_BALANCE
    assert result.payout.status == "cancelled"
    assert result.payout.balance_deducted is False
    assert provider.transfers[0].status == "cancelled"


@pytest.mark.asyncio
async def test_cancel_processing_payout(seeded_session, provider, cipher):
    paid = await request_payout(seeded_session, provider, "CR-NG", Decimal("10.00"), cipher=cipher)

    result = await cancel_payout(seeded_session, provider, paid.payout.id)

    assert result.success
    assert result.payout.status == "cancelled"
    assert provider.transfers[0].status == "cancelled"


@pytest.mark.asyncio
async def test_cancel_settled_transfer_is_refused(seeded_session, provider, cipher):
    paid = await request_payout(seeded_session, provider, "CR-NG", Decimal("10.00"), cipher=cipher)
    provider.set_transfer_state(paid.payout.provider_transfer_id, "outgoing_payment_sent")

    result = await cancel_payout(seeded_session, provider, paid.payout.id)

    assert not result.success
    assert result.payout.status == "processing"


@pytest.mark.asyncio
async def test_cancel_terminal_payout(seeded_session, provider, cipher):
    paid = await request_payout(seeded_session, provider, "CR-NG", Decimal("10.00"), cipher=cipher)
    await cancel_payout(seeded_session, provider, paid.payout.id)

    again = await cancel_payout(seeded_session, provider, paid.payout.id)

    assert again.code == ErrorCode.INVALID_REQUEST


@pytest.mark.asyncio
async def test_status_history_and_soft_delete(seeded_session, provider, cipher):
    first = await request_payout(seeded_session, provider, "CR-NG", Decimal("10.00"), cipher=cipher)
    await request_payout(seeded_session, provider, "CR-NG", Decimal("15.00"), cipher=cipher)

    fetched = await get_payout_status(seeded_session, first.payout.id)
    assert [h["status"] for h in fetched.status_history] == ["pending", "processing"]
    assert len(await list_payout_history(seeded_session, "CR-NG")) == 2

    await delete_payout(seeded_session, first.payout.id)

    with pytest.raises(PayoutNotFound):
        await get_payout_status(seeded_session, first.payout.id)
    assert len(await list_payout_history(seeded_session, "CR-NG")) == 1
    stats = await get_creator_payout_stats(seeded_session, "CR-NG")
    assert stats["by_status"] == {"processing": 1}
