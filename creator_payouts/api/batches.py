"""
Batch payout endpoints.

POST /batches        Pay many creators with bounded concurrency.
POST /batches/retry  Retry the retryable failures of a previous batch.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creator_payouts.api.payouts import PayoutDetail, payout_to_detail
from creator_payouts.database import get_session, get_session_factory
from creator_payouts.engine.batch import (
    BatchPayoutResult,
    FailedPayout,
    PayoutRequest,
    batch_payout,
    format_batch_summary,
    recheck_failed_payouts,
    retry_failed_payouts,
)
from creator_payouts.models.enums import ErrorCode
from creator_payouts.providers.base import TransferProvider
from creator_payouts.providers.factory import get_provider
from creator_payouts.security.encryption import FieldCipher, get_field_cipher

router = APIRouter(prefix="/batches", tags=["batches"])


class BatchItem(BaseModel):
    creator_id: str
    amount: Decimal
    source_currency: Optional[str] = None
    reason: Optional[str] = None
    reference: Optional[str] = None


class BatchCreate(BaseModel):
    items: list[BatchItem] = Field(..., min_length=1)
    max_concurrent: Optional[int] = Field(None, ge=1, le=50)
    stop_on_error: bool = False


class FailedItem(BaseModel):
    creator_id: str
    amount: Decimal
    source_currency: Optional[str] = None
    reason: Optional[str] = None
    reference: str
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    retryable: bool = False
    payout_id: Optional[str] = None
    attempts: int = 1


class BatchRetry(BaseModel):
    failed: list[FailedItem]
    max_attempts: Optional[int] = Field(None, ge=1, le=10)
    base_delay: Optional[float] = Field(None, ge=0, le=60)


class BatchSummaryResponse(BaseModel):
    success_count: int
    failure_count: int
    total_amount: dict[str, Decimal]
    successful_amount: dict[str, Decimal]
    failed_amount: dict[str, Decimal]


class BatchResponse(BaseModel):
    batch_id: str
    success: bool
    total: int
    successful: list[PayoutDetail]
    failed: list[FailedItem]
    skipped: list[BatchItem]
    summary: BatchSummaryResponse
    report: str


def _to_request(item: BatchItem | FailedItem) -> PayoutRequest:
    request = PayoutRequest(
        creator_id=item.creator_id,
        amount=item.amount,
        source_currency=item.source_currency,
        reason=item.reason,
    )
    if item.reference:
        request.reference = item.reference
    return request


def _batch_to_response(result: BatchPayoutResult) -> BatchResponse:
    return BatchResponse(
        batch_id=result.batch_id,
        success=result.success,
        total=result.total,
        successful=[payout_to_detail(p) for p in result.successful],
        failed=[
            FailedItem(
                creator_id=f.request.creator_id,
                amount=f.request.amount,
                source_currency=f.request.source_currency,
                reason=f.request.reason,
                reference=f.request.reference,
                error=f.error,
                code=f.code,
                retryable=f.retryable,
                payout_id=f.payout_id,
                attempts=f.attempts,
            )
            for f in result.failed
        ],
        skipped=[
            BatchItem(
                creator_id=r.creator_id,
                amount=r.amount,
                source_currency=r.source_currency,
                reason=r.reason,
                reference=r.reference,
            )
            for r in result.skipped
        ],
        summary=BatchSummaryResponse(
            success_count=result.summary.success_count,
            failure_count=result.summary.failure_count,
            total_amount=result.summary.total_amount,
            successful_amount=result.summary.successful_amount,
            failed_amount=result.summary.failed_amount,
        ),
        report=format_batch_summary(result),
    )


@router.post("", response_model=BatchResponse, status_code=201)
async def create_batch(
    body: BatchCreate,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    provider: TransferProvider = Depends(get_provider),
    cipher: FieldCipher = Depends(get_field_cipher),
):
    """
    Pay every item with at most ``max_concurrent`` transfers in flight.

    Each item keeps a stable reference; failed entries can be posted back
    to ``/batches/retry`` unchanged.
    """
    result = await batch_payout(
        session_factory,
        provider,
        [_to_request(item) for item in body.items],
        cipher=cipher,
        max_concurrent=body.max_concurrent,
        stop_on_error=body.stop_on_error,
    )
    return _batch_to_response(result)


@router.post("/retry", response_model=BatchResponse)
async def retry_batch(
    body: BatchRetry,
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    provider: TransferProvider = Depends(get_provider),
    cipher: FieldCipher = Depends(get_field_cipher),
):
    """
    Re-run the retryable entries of a previous batch with their references.

    ``code`` and ``retryable`` are recomputed from the stored payouts and
    rejection audit entries, not taken from the request.
    """
    reported = [
        FailedPayout(
            request=_to_request(item),
            error=item.error,
            code=item.code,
            retryable=item.retryable,
            payout_id=item.payout_id,
            attempts=item.attempts,
        )
        for item in body.failed
    ]
    failed = await recheck_failed_payouts(session, reported)
    result = await retry_failed_payouts(
        session_factory,
        provider,
        failed,
        cipher=cipher,
        max_attempts=body.max_attempts,
        base_delay=body.base_delay,
    )
    return _batch_to_response(result)
