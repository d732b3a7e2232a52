"""
Creator-scoped payout queries.

GET /creators/{creator_id}/payouts        Paginated history, newest first.
GET /creators/{creator_id}/payouts/stats  Counts by status, completed totals.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.api.payouts import PayoutDetail, payout_to_detail
from creator_payouts.database import get_session
from creator_payouts.engine.orchestrator import get_creator_payout_stats, list_payout_history

router = APIRouter(prefix="/creators", tags=["creators"])


class CreatorPayoutStats(BaseModel):
    creator_id: str
    total_payouts: int
    by_status: dict[str, int]
    completed_amount: dict[str, Decimal]


@router.get("/{creator_id}/payouts", response_model=list[PayoutDetail])
async def payout_history(
    creator_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    payouts = await list_payout_history(session, creator_id, limit=limit, offset=offset)
    return [payout_to_detail(p) for p in payouts]


@router.get("/{creator_id}/payouts/stats", response_model=CreatorPayoutStats)
async def payout_stats(creator_id: str, session: AsyncSession = Depends(get_session)):
    return CreatorPayoutStats(**await get_creator_payout_stats(session, creator_id))
