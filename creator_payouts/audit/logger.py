"""
Immutable audit trail for payout operations.

Every orchestration step gets an append-only audit log entry with:
  - Payout ID (which specific payout, if any)
  - Batch ID (which batch run triggered it, if any)
  - Action (what happened)
  - Details (context, error codes, provider identifiers)
  - Timestamp (UTC)

These records are never modified or deleted. Account numbers must be
masked by the caller before they reach ``details``.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.models.payout import AuditLog

logger = logging.getLogger("creator_payouts.audit")


def _dumps(details: dict[str, Any]) -> str:
    # Decimal and datetime values are stored as their string form
    return json.dumps(details, default=str)


async def log_event(
    session: AsyncSession,
    action: str,
    payout_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session.
        action: What happened (e.g. "payout_requested", "transfer_created", "status_changed").
        payout_id: The payout this event relates to.
        batch_id: The batch run that triggered this event.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        payout_id=payout_id,
        batch_id=batch_id,
        action=action,
        details=_dumps(details) if details else None,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | batch=%s payout=%s action=%s | %s",
        batch_id or "-",
        payout_id or "-",
        action,
        _dumps(details)[:200] if details else "",
    )
    return entry


async def latest_event_details(
    session: AsyncSession,
    action: str,
    payout_id: Optional[str] = None,
    reference: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """Details of the newest ``action`` entry for a payout or an idempotency reference."""
    stmt = select(AuditLog).where(AuditLog.action == action)
    if payout_id is not None:
        stmt = stmt.where(AuditLog.payout_id == payout_id)
    if reference is not None:
        stmt = stmt.where(AuditLog.details.contains(reference, autoescape=True))
    result = await session.execute(stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()))

    for entry in result.scalars():
        details = json.loads(entry.details) if entry.details else {}
        if reference is None or details.get("reference") == reference:
            return details
    return None


def append_note(existing_notes: Optional[str], message: str) -> str:
    """
    Append a timestamped note to a payout's notes field.

    Builds a running log of significant events (holds, manual actions) on
    each payout record for support visibility.
    """
    prefix = f"[{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}] "
    new_note = prefix + message
    if not existing_notes:
        return new_note
    return f"{existing_notes}\n{new_note}"
