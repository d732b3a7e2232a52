"""
Provider webhook endpoint.

POST /webhooks/wise  Signed transfer callbacks from Wise.

Signature verification needs the exact bytes received, so the body is
read raw rather than through a pydantic model.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.config import settings
from creator_payouts.database import get_session
from creator_payouts.engine.webhooks import handle_provider_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/wise")
async def wise_webhook(request: Request, session: AsyncSession = Depends(get_session)):
    raw_body = await request.body()
    outcome = await handle_provider_webhook(
        session,
        raw_body,
        request.headers.get(settings.webhook_signature_header),
        settings.webhook_secret,
    )
    return JSONResponse(outcome.body, status_code=outcome.status_code)
