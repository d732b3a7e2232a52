"""Tests for the transfer initiator."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from creator_payouts.engine.bank_accounts import BankDetails
from creator_payouts.engine.retry import PermanentError, ProviderError, RateLimitError
from creator_payouts.engine.transfers import compute_fee_split, payout_to_creator
from creator_payouts.models.enums import ErrorCode
from creator_payouts.models.payout import Payout
from creator_payouts.providers.mock_provider import MockTransferProvider

BANK = BankDetails(
    account_number="0123456789",
    routing_identifier="044",
    account_holder_name="Holder CR-NG",
    currency="NGN",
    country="NG",
)


async def _pay(session, provider, amount="50.00", **kwargs):
    return await payout_to_creator(
        session,
        provider,
        "CR-NG",
        Decimal(amount),
        kwargs.pop("currency", "NGN"),
        kwargs.pop("bank_details", BANK),
        "March streaming earnings",
        source_currency="USD",
        **kwargs,
    )


async def _payout_count(session) -> int:
    return (await session.execute(select(func.count(Payout.id)))).scalar_one()


class TestFeeSplit:
    def test_pass_through_by_default(self):
        split = compute_fee_split(Decimal("50.00"), Decimal("0"))
        assert split.platform_fee == Decimal("0.00")
        assert split.creator_amount == Decimal("50.00")

    def test_percentage_is_rounded_to_cents(self):
        split = compute_fee_split(Decimal("33.33"), Decimal("2.5"))
        assert split.platform_fee == Decimal("0.83")
        assert split.creator_amount == Decimal("32.50")
        assert split.platform_fee + split.creator_amount == split.gross

    @pytest.mark.parametrize("percent", [Decimal("-1"), Decimal("100"), Decimal("150")])
    def test_out_of_range_percentage(self, percent):
        with pytest.raises(ValueError):
            compute_fee_split(Decimal("10"), percent)


@pytest.mark.asyncio
async def test_successful_transfer(seeded_session, provider):
    result = await _pay(seeded_session, provider)

    assert result.success
    payout = result.payout
    assert payout.status == "processing"
    assert payout.amount == Decimal("80000.00")
    assert payout.currency == "NGN"
    assert payout.source_amount == Decimal("50.00")
    assert payout.exchange_rate == Decimal("1600")
    assert payout.provider == "wise"
    assert payout.provider_transfer_id is not None
    assert payout.recipient_account_mask == "******6789"
    assert [h["status"] for h in payout.status_history] == ["pending", "processing"]
    assert provider.balances["USD"] == Decimal("1000000") - Decimal("50.00")


@pytest.mark.asyncio
async def test_reference_is_passed_as_customer_transaction_id(seeded_session, provider):
    result = await _pay(seeded_session, provider, reference="sbp_fixed")

    assert result.reference == "sbp_fixed"
    assert provider.transfers[0].customer_transaction_id == "sbp_fixed"


@pytest.mark.asyncio
async def test_platform_fee_is_withheld(seeded_session, provider):
    result = await _pay(seeded_session, provider, platform_fee_percent=Decimal("10"))

    assert result.payout.platform_fee == Decimal("5.00")
    assert result.payout.source_amount == Decimal("50.00")
    assert result.payout.amount == Decimal("72000.00")


@pytest.mark.asyncio
async def test_provider_fee_reduces_converted_amount(seeded_session):
    provider = MockTransferProvider(failure_rate=0.0, latency_ms=0, fee=Decimal("1.00"))

    result = await _pay(seeded_session, provider)

    assert result.payout.provider_fee == Decimal("1.00")
    assert result.payout.amount == Decimal("78400.00")


@pytest.mark.asyncio
async def test_amount_not_covering_fee_is_rejected(seeded_session):
    provider = MockTransferProvider(failure_rate=0.0, latency_ms=0, fee=Decimal("1.00"))

    result = await _pay(seeded_session, provider, amount="1.00")

    assert result.code == ErrorCode.INVALID_AMOUNT
    assert await _payout_count(seeded_session) == 0
    assert provider.create_calls == 0


@pytest.mark.asyncio
async def test_same_currency_skips_conversion(seeded_session):
    provider = MockTransferProvider(failure_rate=0.0, latency_ms=0)
    usd_bank = BankDetails("000123456789", "021000021", "Holder CR-NG", "USD", "US")

    result = await _pay(seeded_session, provider, currency="USD", bank_details=usd_bank)

    assert result.success
    assert provider.quote_calls == 0
    assert result.payout.amount == Decimal("50.00")
    assert result.payout.exchange_rate == Decimal("1")


@pytest.mark.asyncio
async def test_quote_close_to_expiry_is_refreshed(seeded_session):
    provider = MockTransferProvider(failure_rate=0.0, latency_ms=0, quote_ttl_s=5)

    result = await _pay(seeded_session, provider)

    assert result.success
    assert provider.quote_calls == 2


@pytest.mark.asyncio
async def test_validation_failure_writes_no_row(seeded_session, provider):
    result = await _pay(seeded_session, provider, bank_details=None)

    assert not result.success
    assert result.code == ErrorCode.INVALID_BANK_ACCOUNT
    assert result.retryable is False
    assert await _payout_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_unsupported_target_currency(seeded_session, provider):
    result = await _pay(seeded_session, provider, currency="XOF")

    assert result.code == ErrorCode.UNSUPPORTED_CURRENCY
    assert await _payout_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_low_provider_balance_is_fatal(seeded_session):
    provider = MockTransferProvider(failure_rate=0.0, latency_ms=0, balances={"USD": Decimal("10")})

    result = await _pay(seeded_session, provider)

    assert result.code == ErrorCode.INSUFFICIENT_BALANCE
    assert result.retryable is False
    assert await _payout_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_permanent_rejection_marks_failed(seeded_session, provider):
    provider.fail_next("create_transfer", PermanentError("Recipient account is closed", status_code=422))

    result = await _pay(seeded_session, provider)

    assert not result.success
    assert result.code == ErrorCode.INVALID_BANK_ACCOUNT
    assert result.retryable is False
    assert result.payout.status == "failed"
    assert result.payout.error_code == "INVALID_BANK_ACCOUNT"
    assert result.payout.failed_at is not None


@pytest.mark.asyncio
async def test_rate_limit_leaves_row_pending_then_retry_succeeds(seeded_session, provider):
    provider.fail_next("create_transfer", RateLimitError("Too many requests"))

    first = await _pay(seeded_session, provider, reference="sbp_rl")

    assert first.code == ErrorCode.RATE_LIMIT_EXCEEDED
    assert first.retryable is True
    assert first.payout.status == "pending"
    assert first.payout.provider_transfer_id is None

    second = await _pay(seeded_session, provider, reference="sbp_rl")

    assert second.success
    assert second.payout.id == first.payout.id
    assert provider.create_calls == 1
    assert await _payout_count(seeded_session) == 1


@pytest.mark.asyncio
async def test_timeout_is_resolved_by_reference_lookup(seeded_session, provider):
    provider.timeout_after_create()

    first = await _pay(seeded_session, provider, reference="sbp_timeout")
    assert first.code == ErrorCode.TIMEOUT
    assert first.retryable is True
    assert first.payout.status == "pending"

    second = await _pay(seeded_session, provider, reference="sbp_timeout")

    assert second.success
    assert second.payout.id == first.payout.id
    assert second.payout.provider_transfer_id == provider.transfers[0].transfer_id
    assert provider.create_calls == 1


@pytest.mark.asyncio
async def test_existing_transfer_is_returned_without_provider_calls(seeded_session, provider):
    first = await _pay(seeded_session, provider, reference="sbp_dup")
    quotes = provider.quote_calls

    second = await _pay(seeded_session, provider, reference="sbp_dup")

    assert second.success
    assert second.payout.id == first.payout.id
    assert provider.create_calls == 1
    assert provider.quote_calls == quotes


@pytest.mark.asyncio
async def test_transient_balance_errors_are_retried(seeded_session, provider):
    provider.fail_next("get_balance", ProviderError("Service unavailable", status_code=503), times=2)

    result = await _pay(seeded_session, provider)

    assert result.success
