"""
Reconciliation job: poll the provider for payouts that webhooks have not settled.

Two cases:
  - ``processing`` payouts: ask for the transfer by ``provider_transfer_id``
  - ``pending`` payouts without a transfer id (create timed out): ask for a
    transfer by reference and link it if one exists

The job never creates or funds transfers. A pending payout with no transfer
at the provider, or with one still awaiting funding, stays ``pending`` for
the caller to retry with the same reference.
"""

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.audit.logger import log_event
from creator_payouts.config import settings
from creator_payouts.engine.retry import ProviderError
from creator_payouts.ledger.repository import PayoutLedger, TransitionListener
from creator_payouts.ledger.state_machine import SETTLED_VIA_PROCESSING, InvalidTransition
from creator_payouts.models.enums import ErrorCode, PayoutStatus
from creator_payouts.models.payout import Payout
from creator_payouts.providers.base import (
    AWAITING_FUNDING,
    FAILED_STATE_CODES,
    TransferProvider,
    status_for_provider_state,
)

logger = logging.getLogger("creator_payouts.reconciliation")


async def _sync_status(ledger: PayoutLedger, payout: Payout, state: str) -> str:
    if payout.status == PayoutStatus.PENDING.value and state == AWAITING_FUNDING:
        return "unchanged"
    target = status_for_provider_state(state)
    error_code = error_message = None
    if target == PayoutStatus.FAILED:
        error_code = FAILED_STATE_CODES.get(state, ErrorCode.PROVIDER_ERROR).value
        error_message = f"Provider reported transfer {state}"
    try:
        if payout.status == PayoutStatus.PENDING.value and target in SETTLED_VIA_PROCESSING:
            # Settled without our processing step; record it on the way
            await ledger.apply_transition(payout, PayoutStatus.PROCESSING)
        outcome = await ledger.apply_transition(payout, target, error_code=error_code, error_message=error_message)
    except InvalidTransition as e:
        logger.warning("Payout %s: %s", payout.id, e)
        return "skipped"
    return "updated" if outcome.applied else "unchanged"


async def reconcile_stale_payouts(
    session: AsyncSession,
    provider: TransferProvider,
    older_than: Optional[timedelta] = None,
    listeners: Sequence[TransitionListener] = (),
) -> dict[str, int]:
    """
    Bring stale in-flight payouts in line with the provider.

    Returns:
        Counts by outcome: updated, unchanged, linked, skipped, errors.
    """
    age = older_than if older_than is not None else timedelta(minutes=settings.reconcile_stale_after_minutes)
    cutoff = datetime.now(timezone.utc) - age
    ledger = PayoutLedger(session, listeners)
    counts: Counter[str] = Counter()

    stale = await ledger.list_by_status(
        [PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value],
        updated_before=cutoff,
    )
    logger.info("Reconciling %d payouts last updated before %s", len(stale), cutoff.isoformat())

    for payout in stale:
        try:
            if payout.provider_transfer_id:
                transfer = await provider.get_transfer(payout.provider_transfer_id)
                counts[await _sync_status(ledger, payout, transfer.status)] += 1
            else:
                transfer = await provider.find_transfer_by_reference(payout.reference)
                if transfer is None:
                    counts["skipped"] += 1
                    continue
                await ledger.link_provider_transfer(payout, transfer.transfer_id)
                counts["linked"] += 1
                counts[await _sync_status(ledger, payout, transfer.status)] += 1
        except ProviderError as e:
            logger.warning("Payout %s: provider lookup failed: %s", payout.id, e)
            counts["errors"] += 1
            continue

        await log_event(session, "reconciled", payout_id=payout.id, details={
            "provider_transfer_id": payout.provider_transfer_id,
            "status": payout.status,
        })

    await session.commit()
    summary = {key: counts.get(key, 0) for key in ("updated", "unchanged", "linked", "skipped", "errors")}
    logger.info("Reconciliation summary: %s", summary)
    return summary
