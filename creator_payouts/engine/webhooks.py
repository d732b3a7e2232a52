"""
Provider webhook reconciler.

Wire contract:
  - Empty body, non-JSON, or no ``event_type``/``data``: validation ping,
    200 ``{"received": true}`` without a signature check
  - Missing or wrong ``X-Signature-SHA256`` (hex HMAC-SHA256 of the raw
    body): 401, nothing written
  - Anything else: 200, including unknown transfers and events we cannot
    apply, so the provider never enters a retry storm

Events handled:
  ``transfers#state-change``  data.resource.id + data.current_state → status
  ``transfers#active-cases``  data.resource.id + data.active_cases → hold flag
"""

import hashlib
import hmac
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.audit.logger import append_note, log_event
from creator_payouts.ledger.repository import PayoutLedger, TransitionListener
from creator_payouts.ledger.state_machine import SETTLED_VIA_PROCESSING, TERMINAL_STATUSES, InvalidTransition
from creator_payouts.models.enums import ErrorCode, PayoutStatus
from creator_payouts.providers.base import AWAITING_FUNDING, FAILED_STATE_CODES, status_for_provider_state

logger = logging.getLogger("creator_payouts.webhooks")

STATE_CHANGE = "transfers#state-change"
ACTIVE_CASES = "transfers#active-cases"


@dataclass
class WebhookOutcome:
    status_code: int
    body: dict[str, Any] = field(default_factory=lambda: {"received": True})


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time check of a hex HMAC-SHA256 digest of ``raw_body``."""
    if not secret or not signature or not signature.strip():
        return False

    sig = signature.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, sig.lower())


def _parse(raw_body: bytes) -> Optional[dict[str, Any]]:
    """Decoded event, or None for a validation ping."""
    if not raw_body or not raw_body.strip():
        return None
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or not payload.get("event_type") or "data" not in payload:
        return None
    return payload


def _transfer_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    resource = data.get("resource") or {}
    transfer_id = resource.get("id") if isinstance(resource, dict) else None
    return str(transfer_id) if transfer_id is not None else None


async def handle_provider_webhook(
    session: AsyncSession,
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    listeners: Sequence[TransitionListener] = (),
) -> WebhookOutcome:
    payload = _parse(raw_body)
    if payload is None:
        logger.info("Webhook validation request acknowledged")
        return WebhookOutcome(200)

    if not verify_signature(raw_body, signature, secret):
        logger.warning(
            "Rejected %s webhook: %s",
            payload.get("event_type"),
            "missing signature" if not signature else "invalid signature",
        )
        return WebhookOutcome(401, {"error": "Invalid signature"})

    event_type = payload["event_type"]
    data = payload["data"]
    try:
        await _apply_event(session, event_type, data, listeners)
        await session.commit()
    except Exception:
        # Acknowledge anyway; the reconciliation job will catch up
        logger.exception("Failed to process %s webhook", event_type)
        await session.rollback()
    return WebhookOutcome(200)


async def _ignore(session: AsyncSession, event_type: str, reason: str, **details: Any) -> None:
    logger.warning("Ignoring %s webhook: %s %s", event_type, reason, details or "")
    await log_event(session, "webhook_ignored", details={"event_type": event_type, "reason": reason, **details})


async def _apply_event(
    session: AsyncSession,
    event_type: str,
    data: Any,
    listeners: Sequence[TransitionListener],
) -> None:
    if event_type not in (STATE_CHANGE, ACTIVE_CASES):
        await _ignore(session, event_type, "unhandled event type")
        return

    transfer_id = _transfer_id(data)
    if transfer_id is None:
        await _ignore(session, event_type, "no transfer id")
        return

    ledger = PayoutLedger(session, listeners)
    payout = await ledger.get_by_provider_transfer_id(transfer_id, for_update=True)
    if payout is None:
        await _ignore(session, event_type, "unknown transfer", transfer_id=transfer_id)
        return

    await log_event(session, "webhook_received", payout_id=payout.id, details={
        "event_type": event_type,
        "transfer_id": transfer_id,
        "state": data.get("current_state"),
    })

    if event_type == ACTIVE_CASES:
        cases = data.get("active_cases") or []
        payout.has_active_issues = bool(cases)
        if cases:
            payout.notes = append_note(payout.notes, f"Active case: {', '.join(map(str, cases))}")
        else:
            payout.notes = append_note(payout.notes, "Active cases resolved")
        await log_event(session, "active_case", payout_id=payout.id, details={"cases": cases})
        await session.flush()
        return

    state = data.get("current_state")
    target = status_for_provider_state(state)

    # Funding happens on our side; the ledger moves to processing only after it
    if payout.status == PayoutStatus.PENDING.value and state == AWAITING_FUNDING:
        await _ignore(session, event_type, "awaiting funding", payout_id=payout.id)
        return

    # A late "processing" after settlement is a stale redelivery
    if PayoutStatus(payout.status) in TERMINAL_STATUSES and target == PayoutStatus.PROCESSING:
        await _ignore(session, event_type, "stale state", payout_id=payout.id, state=state, status=payout.status)
        return

    error_code = error_message = None
    if target == PayoutStatus.FAILED:
        error_code = FAILED_STATE_CODES.get(state, ErrorCode.PROVIDER_ERROR).value
        error_message = f"Provider reported transfer {state}"

    try:
        if payout.status == PayoutStatus.PENDING.value and target in SETTLED_VIA_PROCESSING:
            await ledger.apply_transition(payout, PayoutStatus.PROCESSING)
        outcome = await ledger.apply_transition(payout, target, error_code=error_code, error_message=error_message)
    except InvalidTransition as e:
        await _ignore(session, event_type, str(e), payout_id=payout.id, state=state)
        return

    if outcome.applied:
        logger.info("Payout %s: %s -> %s (provider state %s)", payout.id, outcome.from_status, target.value, state)
    else:
        logger.info("Payout %s: duplicate %s delivery, no change", payout.id, state)
