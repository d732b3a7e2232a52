"""
Batch coordinator: many independent payouts with bounded concurrency.

Items go onto a queue drained by at most ``max_concurrent`` workers, each
item on its own database session. With ``stop_on_error`` the workers stop
picking up new items after the first failure; in-flight items finish and
the rest are reported as skipped.

Every item carries a stable idempotency reference from construction, so
``retry_failed_payouts`` re-submits the *same* logical payout and can never
create a second provider transfer.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creator_payouts.audit.logger import latest_event_details, log_event
from creator_payouts.config import settings
from creator_payouts.engine.orchestrator import request_payout
from creator_payouts.engine.retry import backoff_delay
from creator_payouts.engine.transfers import PayoutResult, new_reference
from creator_payouts.ledger.repository import PayoutLedger, TransitionListener
from creator_payouts.models.enums import RETRYABLE_CODES, ErrorCode, PayoutStatus
from creator_payouts.models.payout import Payout
from creator_payouts.providers.base import TransferProvider
from creator_payouts.security.encryption import FieldCipher

logger = logging.getLogger("creator_payouts.batch")


@dataclass
class PayoutRequest:
    creator_id: str
    amount: Decimal
    source_currency: Optional[str] = None
    reason: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    reference: str = field(default_factory=new_reference)

    @property
    def currency(self) -> str:
        return (self.source_currency or settings.default_source_currency).upper()


@dataclass
class FailedPayout:
    request: PayoutRequest
    error: Optional[str]
    code: Optional[ErrorCode]
    retryable: bool
    payout_id: Optional[str] = None
    attempts: int = 1


@dataclass
class BatchSummary:
    success_count: int = 0
    failure_count: int = 0
    total_amount: dict[str, Decimal] = field(default_factory=dict)
    successful_amount: dict[str, Decimal] = field(default_factory=dict)
    failed_amount: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class BatchPayoutResult:
    batch_id: str
    total: int
    successful: list[Payout] = field(default_factory=list)
    failed: list[FailedPayout] = field(default_factory=list)
    skipped: list[PayoutRequest] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)

    @property
    def success(self) -> bool:
        return not self.failed and not self.skipped


def _build_result(
    batch_id: str,
    items: Sequence[PayoutRequest],
    outcomes: Sequence[Optional[PayoutResult]],
    attempts: Optional[Sequence[int]] = None,
) -> BatchPayoutResult:
    result = BatchPayoutResult(batch_id=batch_id, total=len(items))
    total: dict[str, Decimal] = defaultdict(Decimal)
    succeeded: dict[str, Decimal] = defaultdict(Decimal)
    failed: dict[str, Decimal] = defaultdict(Decimal)

    for index, (item, outcome) in enumerate(zip(items, outcomes)):
        amount = Decimal(str(item.amount))
        total[item.currency] += amount
        if outcome is None:
            result.skipped.append(item)
        elif outcome.success:
            result.successful.append(outcome.payout)
            succeeded[item.currency] += amount
        else:
            result.failed.append(FailedPayout(
                request=item,
                error=outcome.error,
                code=outcome.code,
                retryable=outcome.retryable,
                payout_id=outcome.payout.id if outcome.payout is not None else None,
                attempts=attempts[index] if attempts else 1,
            ))
            failed[item.currency] += amount

    result.summary = BatchSummary(
        success_count=len(result.successful),
        failure_count=len(result.failed),
        total_amount=dict(total),
        successful_amount=dict(succeeded),
        failed_amount=dict(failed),
    )
    return result


async def _run_item(
    session_factory: async_sessionmaker[AsyncSession],
    provider: TransferProvider,
    item: PayoutRequest,
    cipher: FieldCipher,
    batch_id: str,
    listeners: Sequence[TransitionListener],
) -> PayoutResult:
    async with session_factory() as session:
        try:
            return await request_payout(
                session,
                provider,
                item.creator_id,
                item.amount,
                item.source_currency,
                cipher=cipher,
                reference=item.reference,
                reason=item.reason,
                metadata={**(item.metadata or {}), "batch_id": batch_id},
                listeners=listeners,
            )
        except Exception as e:
            logger.exception("Batch %s: payout for creator %s raised", batch_id, item.creator_id)
            await session.rollback()
            return PayoutResult(
                success=False,
                error=f"Unexpected error: {e}",
                code=ErrorCode.UNEXPECTED_ERROR,
                retryable=False,
                reference=item.reference,
            )


async def _audit(session_factory: async_sessionmaker[AsyncSession], action: str, batch_id: str, details: dict) -> None:
    async with session_factory() as session:
        await log_event(session, action, batch_id=batch_id, details=details)
        await session.commit()


async def batch_payout(
    session_factory: async_sessionmaker[AsyncSession],
    provider: TransferProvider,
    items: Sequence[PayoutRequest],
    *,
    cipher: FieldCipher,
    max_concurrent: Optional[int] = None,
    stop_on_error: bool = False,
    listeners: Sequence[TransitionListener] = (),
) -> BatchPayoutResult:
    """
    Run ``items`` through ``request_payout`` with at most ``max_concurrent`` in flight.

    Never raises for individual item failures; unexpected exceptions are
    logged and reported as ``UNEXPECTED_ERROR``.
    """
    batch_id = str(uuid.uuid4())
    concurrency = max(1, max_concurrent or settings.batch_max_concurrent)
    outcomes: list[Optional[PayoutResult]] = [None] * len(items)
    stop = asyncio.Event()

    queue: asyncio.Queue[int] = asyncio.Queue()
    for index in range(len(items)):
        queue.put_nowait(index)

    await _audit(session_factory, "batch_started", batch_id, {
        "items": len(items),
        "max_concurrent": concurrency,
        "stop_on_error": stop_on_error,
    })
    logger.info("Batch %s: %d payouts, concurrency=%d", batch_id[:8], len(items), concurrency)

    async def worker() -> None:
        while not stop.is_set():
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await _run_item(session_factory, provider, items[index], cipher, batch_id, listeners)
            outcomes[index] = outcome
            if not outcome.success and stop_on_error:
                logger.warning("Batch %s: stopping after failure for creator %s", batch_id[:8], items[index].creator_id)
                stop.set()

    await asyncio.gather(*(worker() for _ in range(min(concurrency, len(items)))))

    result = _build_result(batch_id, items, outcomes)
    await _audit(session_factory, "batch_completed", batch_id, {
        "successful": result.summary.success_count,
        "failed": result.summary.failure_count,
        "skipped": len(result.skipped),
        "total_amount": result.summary.total_amount,
    })
    logger.info(
        "Batch %s summary: successful=%d, failed=%d, skipped=%d",
        batch_id[:8],
        result.summary.success_count,
        result.summary.failure_count,
        len(result.skipped),
    )
    return result


def _error_code(value: Optional[str]) -> Optional[ErrorCode]:
    try:
        return ErrorCode(value) if value else None
    except ValueError:
        return None


async def _recheck(session: AsyncSession, ledger: PayoutLedger, entry: FailedPayout) -> FailedPayout:
    request = entry.request
    payout = await ledger.latest_by_reference(request.reference)

    if payout is None:
        rejection = await latest_event_details(session, "payout_rejected", reference=request.reference)
        if rejection is not None:
            return replace(
                entry,
                code=_error_code(rejection.get("code")) or ErrorCode.INVALID_REQUEST,
                error=rejection.get("message"),
                retryable=False,
                payout_id=None,
            )
        return replace(entry, retryable=entry.code in RETRYABLE_CODES, payout_id=None)

    if payout.creator_id != request.creator_id:
        return replace(
            entry,
            code=ErrorCode.INVALID_REQUEST,
            error=f"Reference {request.reference} belongs to another creator",
            retryable=False,
            payout_id=None,
        )

    if payout.status == PayoutStatus.PENDING.value:
        last = await latest_event_details(session, "transfer_failed", payout_id=payout.id)
        code = _error_code(last.get("code")) if last else None
        return replace(entry, code=code or entry.code, retryable=True, payout_id=payout.id)

    if payout.status == PayoutStatus.FAILED.value:
        code = _error_code(payout.error_code) or ErrorCode.PROVIDER_ERROR
        return replace(
            entry,
            code=code,
            error=payout.error_message,
            retryable=code in RETRYABLE_CODES,
            payout_id=payout.id,
        )

    if payout.status in (PayoutStatus.CANCELLED.value, PayoutStatus.REFUNDED.value):
        return replace(
            entry,
            code=ErrorCode.INVALID_REQUEST,
            error=f"Payout {payout.id} is {payout.status}",
            retryable=False,
            payout_id=payout.id,
        )

    # processing or completed: resubmitting returns the existing payout
    return replace(entry, retryable=True, payout_id=payout.id)


async def recheck_failed_payouts(session: AsyncSession, failed: Sequence[FailedPayout]) -> list[FailedPayout]:
    """
    Rebuild the code and ``retryable`` flag of reported failures from stored state.

    The payout row for each reference decides, then a ``payout_rejected``
    audit entry. Only when neither exists is the reported code used, and
    then just to tell transient failures from the rest.
    """
    ledger = PayoutLedger(session)
    return [await _recheck(session, ledger, entry) for entry in failed]


async def retry_failed_payouts(
    session_factory: async_sessionmaker[AsyncSession],
    provider: TransferProvider,
    failed: Sequence[FailedPayout],
    *,
    cipher: FieldCipher,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    listeners: Sequence[TransitionListener] = (),
) -> BatchPayoutResult:
    """
    Retry the retryable entries of a previous batch with exponential backoff.

    Each entry is re-submitted with its original reference, waiting
    ``base_delay``, ``2*base_delay``, ``4*base_delay`` ... before attempts,
    up to ``max_attempts``. Non-retryable entries are reported as failed
    without being re-run.
    """
    attempts_allowed = max_attempts or settings.retry_max_attempts
    delay = settings.retry_base_delay if base_delay is None else base_delay
    batch_id = str(uuid.uuid4())
    semaphore = asyncio.Semaphore(settings.batch_max_concurrent)

    items = [entry.request for entry in failed]
    outcomes: list[Optional[PayoutResult]] = [None] * len(failed)
    attempts = [entry.attempts for entry in failed]

    async def retry_one(index: int, entry: FailedPayout) -> None:
        if not entry.retryable:
            outcomes[index] = PayoutResult(
                success=False, error=entry.error, code=entry.code, retryable=False, reference=entry.request.reference,
            )
            return

        async with semaphore:
            for attempt in range(1, attempts_allowed + 1):
                wait = backoff_delay(attempt, delay)
                logger.info(
                    "Retrying payout for creator %s (attempt %d/%d) in %.1fs",
                    entry.request.creator_id, attempt, attempts_allowed, wait,
                )
                await asyncio.sleep(wait)
                outcome = await _run_item(session_factory, provider, entry.request, cipher, batch_id, listeners)
                outcomes[index] = outcome
                attempts[index] += 1
                if outcome.success or not outcome.retryable:
                    return

    await asyncio.gather(*(retry_one(i, entry) for i, entry in enumerate(failed)))

    result = _build_result(batch_id, items, outcomes, attempts)
    logger.info(
        "Retry batch %s: recovered=%d, still failing=%d",
        batch_id[:8],
        result.summary.success_count,
        result.summary.failure_count,
    )
    return result


def format_batch_summary(result: BatchPayoutResult) -> str:
    """Plain-text report of a batch run for operators."""
    rule = "=" * 60
    lines = [
        rule,
        "BATCH PAYOUT SUMMARY",
        rule,
        f"Batch:              {result.batch_id}",
        f"Total Payouts:      {result.total}",
        f"Successful:         {result.summary.success_count}",
        f"Failed:             {result.summary.failure_count}",
    ]
    if result.skipped:
        lines.append(f"Skipped:            {len(result.skipped)}")
    lines.append("")

    lines.append("TOTAL AMOUNTS:")
    for currency, amount in sorted(result.summary.total_amount.items()):
        lines.append(f"  {currency}: {amount:,.2f}")
    lines.append("")

    if result.summary.success_count:
        lines.append("SUCCESSFUL AMOUNTS:")
        for currency, amount in sorted(result.summary.successful_amount.items()):
            lines.append(f"  {currency}: {amount:,.2f}")
        lines.append("")

    if result.summary.failure_count:
        lines.append("FAILED AMOUNTS:")
        for currency, amount in sorted(result.summary.failed_amount.items()):
            lines.append(f"  {currency}: {amount:,.2f}")
        lines.append("")

        lines.append("FAILED PAYOUTS:")
        for failure in result.failed:
            lines.append(f"  Creator:   {failure.request.creator_id}")
            lines.append(f"  Amount:    {failure.request.currency} {Decimal(str(failure.request.amount)):,.2f}")
            lines.append(f"  Error:     {failure.error}")
            lines.append(f"  Code:      {failure.code.value if failure.code else 'N/A'}")
            lines.append(f"  Retryable: {'Yes' if failure.retryable else 'No'}")
            lines.append("  " + "-" * 56)

    lines.append(rule)
    return "\n".join(lines)
