"""
Creator Payouts: payout orchestration API for SoundBridge creators.

Pays creator earnings to local bank accounts through Wise (Africa, Asia,
Latin America, Middle East) with idempotent transfer creation, signed
webhook reconciliation, bounded batch runs and an immutable audit trail.

Start the server:
    uvicorn creator_payouts.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from creator_payouts.api.batches import router as batches_router
from creator_payouts.api.creators import router as creators_router
from creator_payouts.api.health import router as health_router
from creator_payouts.api.payouts import router as payouts_router
from creator_payouts.api.webhooks import router as webhooks_router
from creator_payouts.config import settings
from creator_payouts.database import dispose_db, init_db
from creator_payouts.ledger.repository import PayoutNotFound
from creator_payouts.providers.factory import get_provider

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("creator_payouts.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; close provider and database connections on shutdown."""
    await init_db()
    yield
    await get_provider().aclose()
    await dispose_db()


app = FastAPI(
    title="Creator Payouts",
    description=(
        "Payout orchestration for creator earnings: country/currency routing, "
        "provider quotes and transfers, webhook-driven status reconciliation "
        "and bounded batch payouts."
    ),
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(PayoutNotFound)
async def payout_not_found_handler(request: Request, exc: PayoutNotFound):
    return JSONResponse(status_code=404, content={"detail": f"Payout not found: {exc}"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(health_router)
app.include_router(payouts_router, prefix="/api")
app.include_router(creators_router, prefix="/api")
app.include_router(batches_router, prefix="/api")
app.include_router(webhooks_router)
