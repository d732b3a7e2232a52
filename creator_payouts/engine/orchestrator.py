"""
Payout orchestrator: the outbound entry points.

``request_payout`` takes a creator withdrawal from request to an initiated
transfer:

  1. Creator exists and has enough platform balance
  2. Country/currency resolution (profile → bank currency → bank code → default)
  3. Verified bank account lookup and decryption
  4. Route check: the provider must serve the resolved payout method
  5. Transfer initiation (quote, pending row, transfer, processing)
  6. Atomic balance deduction, committed with the processing transition

It returns once the transfer is *initiated*; completion arrives later via
webhook or the reconciliation job.

Idempotency guarantees:
  - A reference whose payout already debited the creator returns that payout
  - A reference with an open payout never creates a second provider transfer
  - A balance is debited at most once per payout, and never below zero
"""

import logging
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.audit.logger import append_note, log_event
from creator_payouts.config import settings
from creator_payouts.creators.store import CreatorStore
from creator_payouts.engine.bank_accounts import ADD_BANK_ACCOUNT_MESSAGE, get_verified_bank_account
from creator_payouts.engine.retry import ProviderError, classify_provider_error
from creator_payouts.engine.transfers import PayoutResult, new_reference, payout_to_creator
from creator_payouts.ledger.repository import PayoutLedger, TransitionListener
from creator_payouts.models.enums import ErrorCode, PayoutStatus
from creator_payouts.models.payout import Payout
from creator_payouts.providers.base import TransferProvider, status_for_provider_state
from creator_payouts.routing.resolver import resolve_country_currency
from creator_payouts.security.encryption import DecryptionError, FieldCipher

logger = logging.getLogger("creator_payouts.orchestrator")


async def _rejected(
    session: AsyncSession,
    creator_id: str,
    reference: str,
    code: ErrorCode,
    message: str,
) -> PayoutResult:
    logger.info("Payout request for creator %s rejected (%s): %s", creator_id, code.value, message)
    await log_event(session, "payout_rejected", details={
        "creator_id": creator_id,
        "reference": reference,
        "code": code.value,
        "message": message,
    })
    await session.commit()
    return PayoutResult(success=False, error=message, code=code, retryable=False, reference=reference)


async def request_payout(
    session: AsyncSession,
    provider: TransferProvider,
    creator_id: str,
    amount: Decimal,
    source_currency: Optional[str] = None,
    *,
    cipher: FieldCipher,
    reference: Optional[str] = None,
    reason: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    listeners: Sequence[TransitionListener] = (),
) -> PayoutResult:
    """
    Pay ``amount`` of the creator's ``source_currency`` balance to their bank.

    Returns:
        PayoutResult. ``success`` means the transfer was initiated and the
        creator balance debited; the payout is then ``processing``.
    """
    source = (source_currency or settings.default_source_currency).strip().upper()
    reference = reference or new_reference()
    creators = CreatorStore(session)
    ledger = PayoutLedger(session, listeners)

    existing = await ledger.find_open_by_reference(reference)
    if existing is not None and existing.balance_deducted:
        logger.info("Reference %s already paid out as %s (%s)", reference, existing.id, existing.status)
        return PayoutResult(success=True, payout=existing, reference=reference)

    if await creators.get_profile(creator_id) is None:
        return await _rejected(session, creator_id, reference, ErrorCode.CREATOR_NOT_FOUND, "Creator not found")

    try:
        gross = Decimal(str(amount))
    except InvalidOperation:
        gross = None
    if gross is None or not gross.is_finite() or gross <= 0:
        return await _rejected(session, creator_id, reference, ErrorCode.INVALID_AMOUNT, f"Invalid amount: {amount}")

    available = await creators.get_available_balance(creator_id, source)
    if available < gross:
        return await _rejected(
            session, creator_id, reference, ErrorCode.INSUFFICIENT_BALANCE,
            f"Available balance {available} {source} is less than the requested {gross} {source}",
        )

    destination = await resolve_country_currency(creators, creator_id, cipher)
    if destination.payout_method != provider.method:
        return await _rejected(
            session, creator_id, reference, ErrorCode.UNSUPPORTED_COUNTRY,
            f"Payout method {destination.payout_method.value} for {destination.country_code} "
            f"is not supported by {provider.name}",
        )

    try:
        bank_details = await get_verified_bank_account(creators, creator_id, cipher)
    except DecryptionError:
        logger.error("Stored bank details for creator %s could not be decrypted", creator_id)
        return await _rejected(
            session, creator_id, reference, ErrorCode.INVALID_BANK_ACCOUNT,
            "Stored bank details could not be read. Please re-add your bank account.",
        )
    if bank_details is None:
        return await _rejected(session, creator_id, reference, ErrorCode.INVALID_BANK_ACCOUNT, ADD_BANK_ACCOUNT_MESSAGE)

    result = await payout_to_creator(
        session,
        provider,
        creator_id,
        gross,
        destination.currency,
        bank_details,
        reason or "SoundBridge creator payout",
        {
            **(metadata or {}),
            "country_code": destination.country_code,
            "resolved_from": destination.source.value,
        },
        reference=reference,
        source_currency=source,
        listeners=listeners,
    )

    if result.success and result.payout is not None and not result.payout.balance_deducted:
        result = await _deduct_balance(ledger, creators, provider, result)

    await session.commit()
    return result


async def _deduct_balance(
    ledger: PayoutLedger,
    creators: CreatorStore,
    provider: TransferProvider,
    result: PayoutResult,
) -> PayoutResult:
    """Debit the creator; cancel the transfer if the balance moved since the check."""
    payout = result.payout
    if await creators.deduct_balance(payout.creator_id, payout.source_currency, payout.source_amount):
        await ledger.mark_balance_deducted(payout)
        return result

    logger.error(
        "Balance for creator %s dropped below %s %s after transfer %s was created, cancelling",
        payout.creator_id, payout.source_amount, payout.source_currency, payout.provider_transfer_id,
    )
    try:
        await provider.cancel_transfer(payout.provider_transfer_id)
    except ProviderError:
        logger.exception("Could not cancel transfer %s for payout %s", payout.provider_transfer_id, payout.id)
    payout.notes = append_note(payout.notes, "Cancelled: creator balance changed during payout")
    await ledger.apply_transition(payout, PayoutStatus.CANCELLED)
    return PayoutResult(
        success=False,
        payout=payout,
        error="Available balance changed during the payout. Please try again.",
        code=ErrorCode.INSUFFICIENT_BALANCE,
        retryable=False,
        reference=result.reference,
    )


async def get_payout_status(session: AsyncSession, payout_id: str) -> Payout:
    """
    Point read of a payout, including its full status history.

    Raises:
        PayoutNotFound: If no live payout has this id.
    """
    return await PayoutLedger(session).get(payout_id)


async def list_payout_history(
    session: AsyncSession,
    creator_id: str,
    limit: int = 20,
    offset: int = 0,
) -> list[Payout]:
    """Most recent first, soft-deleted payouts excluded."""
    return await PayoutLedger(session).list_for_creator(creator_id, limit=limit, offset=offset)


async def cancel_payout(
    session: AsyncSession,
    provider: TransferProvider,
    payout_id: str,
    listeners: Sequence[TransitionListener] = (),
) -> PayoutResult:
    """
    Cancel a payout that has not settled.

    The provider transfer is cancelled first; the ledger only moves to
    ``cancelled`` once the provider agrees.
    """
    ledger = PayoutLedger(session, listeners)
    payout = await ledger.get(payout_id)

    if payout.status not in (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value):
        return PayoutResult(
            success=False,
            payout=payout,
            error=f"Payout is {payout.status} and can no longer be cancelled",
            code=ErrorCode.INVALID_REQUEST,
            reference=payout.reference,
        )

    if payout.provider_transfer_id:
        try:
            transfer = await provider.cancel_transfer(payout.provider_transfer_id)
        except ProviderError as e:
            code, retryable, message = classify_provider_error(e)
            logger.warning("Provider refused to cancel transfer %s: %s", payout.provider_transfer_id, message)
            return PayoutResult(
                success=False, payout=payout, error=message, code=code, retryable=retryable, reference=payout.reference,
            )
        if status_for_provider_state(transfer.status) != PayoutStatus.CANCELLED:
            logger.warning("Transfer %s is %s after cancel request", transfer.transfer_id, transfer.status)

    await ledger.apply_transition(payout, PayoutStatus.CANCELLED)
    await session.commit()
    return PayoutResult(success=True, payout=payout, reference=payout.reference)


async def delete_payout(session: AsyncSession, payout_id: str) -> Payout:
    """Soft delete; the row and its history are kept for audit."""
    ledger = PayoutLedger(session)
    payout = await ledger.soft_delete(await ledger.get(payout_id))
    await session.commit()
    return payout


async def get_creator_payout_stats(session: AsyncSession, creator_id: str) -> dict[str, Any]:
    return await PayoutLedger(session).creator_stats(creator_id)


async def get_pending_payouts_summary(session: AsyncSession) -> list[dict[str, Any]]:
    return await PayoutLedger(session).pending_summary()
