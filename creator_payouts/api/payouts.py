"""
Payout endpoints.

POST   /payouts                  Request a creator payout.
POST   /payouts/reconcile        Sync stale in-flight payouts with the provider.
GET    /payouts/pending/summary  In-flight totals per currency.
GET    /payouts/{id}             Payout with full status history.
GET    /payouts/{id}/trace       Full audit trail for a payout.
POST   /payouts/{id}/cancel      Cancel an unsettled payout.
DELETE /payouts/{id}             Soft delete.
"""

import json
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.config import settings
from creator_payouts.database import get_session
from creator_payouts.engine.orchestrator import (
    cancel_payout,
    delete_payout,
    get_payout_status,
    get_pending_payouts_summary,
    request_payout,
)
from creator_payouts.engine.reconciliation import reconcile_stale_payouts
from creator_payouts.engine.transfers import PayoutResult
from creator_payouts.models.enums import ErrorCode
from creator_payouts.models.payout import AuditLog, Payout
from creator_payouts.providers.base import TransferProvider
from creator_payouts.providers.factory import get_provider
from creator_payouts.routing.country_currency import bank_name
from creator_payouts.security.encryption import FieldCipher, get_field_cipher

router = APIRouter(prefix="/payouts", tags=["payouts"])

ERROR_STATUS = {
    ErrorCode.CREATOR_NOT_FOUND: 404,
    ErrorCode.INSUFFICIENT_BALANCE: 409,
    ErrorCode.INVALID_BANK_ACCOUNT: 422,
    ErrorCode.UNSUPPORTED_COUNTRY: 422,
    ErrorCode.UNSUPPORTED_CURRENCY: 422,
    ErrorCode.INVALID_AMOUNT: 422,
    ErrorCode.INVALID_REQUEST: 409,
    ErrorCode.RATE_LIMIT_EXCEEDED: 503,
    ErrorCode.TIMEOUT: 503,
    ErrorCode.NETWORK_ERROR: 503,
    ErrorCode.SERVER_ERROR: 502,
    ErrorCode.PROVIDER_ERROR: 502,
    ErrorCode.UNEXPECTED_ERROR: 500,
}


class PayoutCreate(BaseModel):
    creator_id: str
    amount: Decimal
    source_currency: Optional[str] = None
    reference: Optional[str] = None
    reason: Optional[str] = None


class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: str
    from_status: Optional[str] = None
    error_message: Optional[str] = None


class PayoutDetail(BaseModel):
    id: str
    creator_id: str
    amount: Decimal
    currency: str
    source_amount: Optional[Decimal]
    source_currency: Optional[str]
    exchange_rate: Optional[Decimal]
    provider_fee: Optional[Decimal]
    platform_fee: Optional[Decimal]
    recipient_account_mask: Optional[str]
    recipient_account_name: Optional[str]
    recipient_bank_name: Optional[str]
    provider: Optional[str]
    provider_transfer_id: Optional[str]
    reference: str
    status: str
    status_history: list[StatusHistoryEntry]
    error_code: Optional[str]
    error_message: Optional[str]
    has_active_issues: bool
    reason: Optional[str]
    notes: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    completed_at: Optional[str]
    failed_at: Optional[str]

    model_config = {"from_attributes": True}


class PayoutResultResponse(BaseModel):
    success: bool
    payout: Optional[PayoutDetail] = None
    error: Optional[str] = None
    code: Optional[str] = None
    retryable: bool = False
    reference: Optional[str] = None


class AuditEntry(BaseModel):
    id: int
    action: str
    details: Optional[dict] = None
    timestamp: Optional[str]

    model_config = {"from_attributes": True}


class PayoutTrace(BaseModel):
    payout: PayoutDetail
    audit_trail: list[AuditEntry]


class PendingSummaryRow(BaseModel):
    currency: str
    status: str
    count: int
    total_amount: Decimal


class ReconcileSummary(BaseModel):
    updated: int
    unchanged: int
    linked: int
    skipped: int
    errors: int


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def payout_to_detail(p: Payout) -> PayoutDetail:
    return PayoutDetail(
        id=p.id,
        creator_id=p.creator_id,
        amount=p.amount,
        currency=p.currency,
        source_amount=p.source_amount,
        source_currency=p.source_currency,
        exchange_rate=p.exchange_rate,
        provider_fee=p.provider_fee,
        platform_fee=p.platform_fee,
        recipient_account_mask=p.recipient_account_mask,
        recipient_account_name=p.recipient_account_name,
        recipient_bank_name=bank_name(p.recipient_bank_code) or None,
        provider=p.provider,
        provider_transfer_id=p.provider_transfer_id,
        reference=p.reference,
        status=p.status,
        status_history=[StatusHistoryEntry(**entry) for entry in (p.status_history or [])],
        error_code=p.error_code,
        error_message=p.error_message,
        has_active_issues=bool(p.has_active_issues),
        reason=p.reason,
        notes=p.notes,
        created_at=_iso(p.created_at),
        updated_at=_iso(p.updated_at),
        completed_at=_iso(p.completed_at),
        failed_at=_iso(p.failed_at),
    )


def result_to_response(result: PayoutResult, response: Response, success_status: int = 200) -> PayoutResultResponse:
    response.status_code = success_status if result.success else ERROR_STATUS.get(result.code, 400)
    return PayoutResultResponse(
        success=result.success,
        payout=payout_to_detail(result.payout) if result.payout is not None else None,
        error=result.error,
        code=result.code.value if result.code else None,
        retryable=result.retryable,
        reference=result.reference,
    )


@router.post("", response_model=PayoutResultResponse, status_code=201)
async def create_payout(
    body: PayoutCreate,
    response: Response,
    session: AsyncSession = Depends(get_session),
    provider: TransferProvider = Depends(get_provider),
    cipher: FieldCipher = Depends(get_field_cipher),
):
    """
    Request a payout from the creator's platform balance.

    Returns once the transfer is initiated (``processing``). Pass the
    returned ``reference`` back to retry a retryable failure safely.
    """
    result = await request_payout(
        session,
        provider,
        body.creator_id,
        body.amount,
        body.source_currency,
        cipher=cipher,
        reference=body.reference,
        reason=body.reason,
    )
    return result_to_response(result, response, success_status=201)


@router.post("/reconcile", response_model=ReconcileSummary)
async def reconcile_payouts(
    older_than_minutes: Optional[int] = Query(None, ge=0),
    session: AsyncSession = Depends(get_session),
    provider: TransferProvider = Depends(get_provider),
):
    """
    Poll the provider for pending and processing payouts not updated in
    ``older_than_minutes`` (default from settings) and apply what it reports.
    """
    minutes = settings.reconcile_stale_after_minutes if older_than_minutes is None else older_than_minutes
    return ReconcileSummary(**await reconcile_stale_payouts(session, provider, older_than=timedelta(minutes=minutes)))


@router.get("/pending/summary", response_model=list[PendingSummaryRow])
async def pending_summary(session: AsyncSession = Depends(get_session)):
    """Pending and processing payouts grouped by currency."""
    return [PendingSummaryRow(**row) for row in await get_pending_payouts_summary(session)]


@router.get("/{payout_id}", response_model=PayoutDetail)
async def get_payout(payout_id: str, session: AsyncSession = Depends(get_session)):
    """Current payout state including the full status history."""
    return payout_to_detail(await get_payout_status(session, payout_id))


@router.get("/{payout_id}/trace", response_model=PayoutTrace)
async def get_payout_trace(payout_id: str, session: AsyncSession = Depends(get_session)):
    """
    Full audit trail for a payout.

    Returns the payout details plus every audit log entry, ordered
    chronologically. Useful for debugging bounced transfers and provider
    rejections.
    """
    payout = await get_payout_status(session, payout_id)

    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.payout_id == payout_id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    )

    audit_trail = []
    for log in result.scalars().all():
        details: Optional[dict[str, Any]] = None
        if log.details:
            try:
                details = json.loads(log.details)
            except (json.JSONDecodeError, TypeError):
                details = {"raw": log.details}

        audit_trail.append(AuditEntry(
            id=log.id,
            action=log.action,
            details=details,
            timestamp=_iso(log.timestamp),
        ))

    return PayoutTrace(payout=payout_to_detail(payout), audit_trail=audit_trail)


@router.post("/{payout_id}/cancel", response_model=PayoutResultResponse)
async def cancel_unsettled_payout(
    payout_id: str,
    response: Response,
    session: AsyncSession = Depends(get_session),
    provider: TransferProvider = Depends(get_provider),
):
    result = await cancel_payout(session, provider, payout_id)
    return result_to_response(result, response)


@router.delete("/{payout_id}", response_model=PayoutDetail)
async def soft_delete_payout(payout_id: str, session: AsyncSession = Depends(get_session)):
    """Soft delete. The row and its audit trail are kept."""
    return payout_to_detail(await delete_payout(session, payout_id))
