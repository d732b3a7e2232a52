"""Liveness endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.config import settings
from creator_payouts.database import get_session
from creator_payouts.providers.base import TransferProvider
from creator_payouts.providers.factory import get_provider

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    session: AsyncSession = Depends(get_session),
    provider: TransferProvider = Depends(get_provider),
):
    await session.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "provider": provider.name,
        "environment": settings.wise_environment,
    }
