"""
Transfer initiator: move one creator payout through the provider.

The flow for a single payout:

  1. Idempotency: a reference already carrying a provider transfer is
     returned as-is; a pending row left by an earlier timeout is resolved by
     asking the provider for a transfer with that reference first
  2. Validation (amount, currency, bank details, creator)
  3. Platform balance check at the provider (fatal if short)
  4. Fee split and quote
  5. Recipient registration
  6. ``pending`` row persisted and committed
  7. Create transfer (single attempt, reference as customer transaction id)
  8. Fund from balance, then ``pending -> processing`` with provider linkage

Expected business failures never raise; they come back as a
``PayoutResult`` with ``success=False``, an ``ErrorCode`` and a retryable
flag. A timeout leaves the row ``pending`` so a retry with the same
reference (or the reconciliation job) can resolve it without creating a
second transfer.

The ``pending`` row is committed before the provider is called. Every
later write is flushed only; the caller commits.
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.audit.logger import log_event
from creator_payouts.config import settings
from creator_payouts.creators.store import CreatorStore
from creator_payouts.engine.bank_accounts import BankDetails
from creator_payouts.engine.eligibility import check_eligibility
from creator_payouts.engine.quotes import ensure_fresh, get_quote
from creator_payouts.engine.retry import ProviderError, classify_provider_error, with_retry
from creator_payouts.ledger.repository import PayoutLedger, TransitionListener
from creator_payouts.models.enums import ErrorCode, PayoutStatus
from creator_payouts.models.payout import Payout
from creator_payouts.providers.base import RecipientRequest, TransferProvider, TransferRequest

logger = logging.getLogger("creator_payouts.transfers")

CENT = Decimal("0.01")
STATEMENT_REFERENCE_MAX = 35


@dataclass
class PayoutResult:
    success: bool
    payout: Optional[Payout] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    retryable: bool = False
    reference: Optional[str] = None


@dataclass(frozen=True)
class FeeSplit:
    """Gross amount split between the platform and the creator (source currency)."""

    gross: Decimal
    platform_fee: Decimal
    creator_amount: Decimal


def new_reference() -> str:
    return f"sbp_{uuid.uuid4().hex}"


def compute_fee_split(gross: Decimal, platform_fee_percent: Optional[Decimal] = None) -> FeeSplit:
    """
    Split ``gross`` by ``platform_fee_percent`` (0 means pass-through).

    Raises:
        ValueError: If the percentage is outside [0, 100).
    """
    percent = settings.platform_fee_percent if platform_fee_percent is None else Decimal(str(platform_fee_percent))
    if percent < 0 or percent >= 100:
        raise ValueError(f"platform_fee_percent must be in [0, 100), got {percent}")
    platform_fee = (gross * percent / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    return FeeSplit(gross=gross, platform_fee=platform_fee, creator_amount=gross - platform_fee)


def _failure(
    code: ErrorCode,
    message: str,
    *,
    retryable: bool = False,
    payout: Optional[Payout] = None,
    reference: Optional[str] = None,
) -> PayoutResult:
    return PayoutResult(
        success=False,
        payout=payout,
        error=message,
        code=code,
        retryable=retryable,
        reference=reference,
    )


async def _reject(session: AsyncSession, creator_id: str, reference: str, code: ErrorCode, message: str) -> PayoutResult:
    """Failure before any row exists. Only the audit trail records it."""
    logger.info("Payout for creator %s rejected (%s): %s", creator_id, code.value, message)
    await log_event(session, "payout_rejected", details={
        "creator_id": creator_id,
        "reference": reference,
        "code": code.value,
        "message": message,
    })
    return _failure(code, message, reference=reference)


async def _provider_failure(
    ledger: PayoutLedger,
    payout: Payout,
    exc: Exception,
    stage: str,
) -> PayoutResult:
    """
    Classify a provider failure for an existing row.

    Retryable outcomes (timeouts, rate limits, 5xx) leave the row
    ``pending``; definitive rejections move it to ``failed``.
    """
    code, retryable, message = classify_provider_error(exc)
    await log_event(ledger.session, "transfer_failed", payout_id=payout.id, details={
        "stage": stage,
        "code": code.value,
        "retryable": retryable,
        "error": message,
    })
    if retryable:
        logger.warning(
            "Payout %s: %s failed with retryable %s, left %s: %s",
            payout.id, stage, code.value, payout.status, message,
        )
    else:
        logger.error("Payout %s: %s failed with %s: %s", payout.id, stage, code.value, message)
        await ledger.apply_transition(
            payout,
            PayoutStatus.FAILED,
            error_code=code.value,
            error_message=message,
        )
    return _failure(code, message, retryable=retryable, payout=payout, reference=payout.reference)


async def _fund_and_mark_processing(
    ledger: PayoutLedger,
    provider: TransferProvider,
    payout: Payout,
    **linkage: Any,
) -> PayoutResult:
    """Fund a linked transfer and move the payout to ``processing``."""
    try:
        state = await provider.fund_transfer(payout.provider_transfer_id)
    except ProviderError as e:
        return await _provider_failure(ledger, payout, e, "fund_transfer")

    if payout.status == PayoutStatus.PENDING.value:
        await ledger.apply_transition(payout, PayoutStatus.PROCESSING, **linkage)
    await log_event(ledger.session, "transfer_created", payout_id=payout.id, details={
        "provider": payout.provider,
        "provider_transfer_id": payout.provider_transfer_id,
        "provider_state": state,
        "amount": payout.amount,
        "currency": payout.currency,
        "source_amount": payout.source_amount,
        "source_currency": payout.source_currency,
    })
    logger.info(
        "Payout %s processing: transfer %s, %s %s -> %s %s",
        payout.id,
        payout.provider_transfer_id,
        payout.source_amount,
        payout.source_currency,
        payout.amount,
        payout.currency,
    )
    return PayoutResult(success=True, payout=payout, reference=payout.reference)


async def _resume_pending(
    ledger: PayoutLedger,
    provider: TransferProvider,
    payout: Payout,
) -> Optional[PayoutResult]:
    """
    Resolve a pending row left by an earlier attempt whose outcome is unknown.

    Returns None when the provider has no transfer for the reference, in
    which case the caller may create one.
    """
    try:
        found = await with_retry(provider.find_transfer_by_reference, payout.reference)
    except ProviderError as e:
        code, retryable, message = classify_provider_error(e)
        logger.warning("Payout %s: could not look up reference %s: %s", payout.id, payout.reference, message)
        return _failure(code, message, retryable=retryable, payout=payout, reference=payout.reference)

    if found is None:
        logger.info("Payout %s: no transfer exists for reference %s, creating one", payout.id, payout.reference)
        return None

    logger.info("Payout %s: found transfer %s for reference %s", payout.id, found.transfer_id, payout.reference)
    await ledger.link_provider_transfer(payout, found.transfer_id)
    linkage = {}
    if found.target_amount is not None:
        linkage["amount"] = found.target_amount
    if found.rate is not None:
        linkage["exchange_rate"] = found.rate
    return await _fund_and_mark_processing(ledger, provider, payout, **linkage)


async def payout_to_creator(
    session: AsyncSession,
    provider: TransferProvider,
    creator_id: str,
    amount: Decimal,
    currency: str,
    bank_details: Optional[BankDetails],
    reason: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
    *,
    reference: Optional[str] = None,
    source_currency: Optional[str] = None,
    platform_fee_percent: Optional[Decimal] = None,
    listeners: Sequence[TransitionListener] = (),
) -> PayoutResult:
    """
    Create (at most) one provider transfer paying ``creator_id``.

    Args:
        session: Database session. Committed once the pending row exists.
        provider: Transfer provider.
        creator_id: The beneficiary.
        amount: Gross amount in ``source_currency``.
        currency: Currency the creator receives.
        bank_details: Decrypted verified destination.
        reason: Shown on the creator's statement and stored on the row.
        metadata: Free-form context stored on the row.
        reference: Idempotency reference. Generated when omitted; reuse the
            one on the result to retry.
        source_currency: Platform currency debited. Defaults to ``currency``.
        platform_fee_percent: Platform share of ``amount``. Defaults to
            the configured value.
        listeners: Ledger transition listeners.
    """
    ledger = PayoutLedger(session, listeners)
    reference = reference or new_reference()
    target_currency = (currency or "").strip().upper()
    source = (source_currency or target_currency).strip().upper()

    existing = await ledger.find_open_by_reference(reference)
    if existing is not None and existing.provider_transfer_id:
        if existing.status == PayoutStatus.PENDING.value:
            return await _fund_and_mark_processing(ledger, provider, existing)
        logger.info(
            "Reference %s already has transfer %s (payout %s, %s)",
            reference, existing.provider_transfer_id, existing.id, existing.status,
        )
        return PayoutResult(success=True, payout=existing, reference=reference)

    if existing is not None:
        resumed = await _resume_pending(ledger, provider, existing)
        if resumed is not None:
            return resumed

    profile = await CreatorStore(session).get_profile(creator_id)
    check = check_eligibility(
        amount,
        target_currency,
        bank_details,
        creator_exists=profile is not None,
        supported_currency=provider.supports_currency(target_currency),
    )
    if not check.eligible:
        return await _reject(session, creator_id, reference, check.code, check.message)

    try:
        split = compute_fee_split(Decimal(str(amount)), platform_fee_percent)
    except ValueError as e:
        return await _reject(session, creator_id, reference, ErrorCode.INVALID_REQUEST, str(e))

    # Platform balance at the provider; a shortfall needs an operator top-up
    try:
        balance = await with_retry(provider.get_balance, source)
    except ProviderError as e:
        code, retryable, message = classify_provider_error(e)
        return _failure(code, message, retryable=retryable, payout=existing, reference=reference)
    if balance.amount < split.creator_amount:
        logger.error(
            "Provider balance %s %s cannot cover payout of %s %s",
            balance.amount, source, split.creator_amount, source,
        )
        return await _reject(
            session,
            creator_id,
            reference,
            ErrorCode.INSUFFICIENT_BALANCE,
            "Platform payout balance is insufficient. An operator must top up the provider account.",
        )

    try:
        quote = await get_quote(provider, source, target_currency, split.creator_amount)
    except ProviderError as e:
        code, retryable, message = classify_provider_error(e)
        return _failure(code, message, retryable=retryable, payout=existing, reference=reference)

    creator_net = quote.source_amount - quote.fee
    if creator_net <= 0:
        return await _reject(
            session, creator_id, reference, ErrorCode.INVALID_AMOUNT,
            f"Amount {split.creator_amount} {source} does not cover the provider fee of {quote.fee}",
        )
    if quote.fee + creator_net > split.gross - split.platform_fee:
        return await _reject(
            session, creator_id, reference, ErrorCode.PROVIDER_ERROR,
            "Quote exceeds the creator share of the payout",
        )

    recipient_id = existing.provider_recipient_id if existing is not None else None
    if recipient_id is None:
        try:
            recipient_id = await provider.create_recipient(RecipientRequest(
                account_holder_name=bank_details.account_holder_name,
                currency=target_currency,
                account_number=bank_details.account_number,
                routing_identifier=bank_details.routing_identifier,
                country=bank_details.country,
                creator_id=creator_id,
            ))
        except ProviderError as e:
            if existing is not None:
                return await _provider_failure(ledger, existing, e, "create_recipient")
            code, retryable, message = classify_provider_error(e)
            if retryable:
                return _failure(code, message, retryable=True, reference=reference)
            return await _reject(session, creator_id, reference, code, message)

    if existing is None:
        payout = await ledger.create_payout(
            creator_id=creator_id,
            amount=quote.target_amount,
            currency=target_currency,
            reference=reference,
            source_amount=split.gross,
            source_currency=source,
            exchange_rate=quote.rate,
            provider_fee=quote.fee,
            platform_fee=split.platform_fee,
            provider=provider.method.value,
            provider_quote_id=quote.quote_id,
            provider_recipient_id=recipient_id,
            recipient_account_mask=bank_details.masked_account,
            recipient_account_name=bank_details.account_holder_name,
            recipient_bank_code=bank_details.routing_identifier,
            reason=reason,
            payout_metadata=metadata,
        )
        await log_event(session, "payout_requested", payout_id=payout.id, details={
            "creator_id": creator_id,
            "reference": reference,
            "source_amount": split.gross,
            "source_currency": source,
            "platform_fee": split.platform_fee,
            "target_amount": quote.target_amount,
            "target_currency": target_currency,
            "account": bank_details.masked_account,
        })
    else:
        payout = existing

    # The row must be durable before money can move
    await session.commit()

    try:
        quote = await ensure_fresh(provider, quote)
    except ProviderError as e:
        return await _provider_failure(ledger, payout, e, "refresh_quote")

    request = TransferRequest(
        recipient_id=recipient_id,
        quote_id=quote.quote_id,
        customer_transaction_id=reference,
        source_currency=source,
        source_amount=quote.source_amount,
        target_currency=target_currency,
        target_amount=quote.target_amount,
        reference=(reason or "Creator payout")[:STATEMENT_REFERENCE_MAX],
        metadata={"creator_id": creator_id, "payout_id": payout.id},
    )
    try:
        transfer = await provider.create_transfer(request)
    except ProviderError as e:
        return await _provider_failure(ledger, payout, e, "create_transfer")

    await ledger.link_provider_transfer(payout, transfer.transfer_id)
    return await _fund_and_mark_processing(
        ledger,
        provider,
        payout,
        amount=quote.target_amount,
        exchange_rate=quote.rate,
        provider_fee=quote.fee,
        provider_quote_id=quote.quote_id,
    )
