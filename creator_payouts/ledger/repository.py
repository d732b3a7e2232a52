"""
Payout ledger: the durable record of every payout attempt.

All status mutations go through ``PayoutLedger.apply_transition``, which:
  1. Treats a transition to the status already held (or already last in
     history) as a successful no-op, so duplicate webhook deliveries never
     double-append.
  2. Validates the edge against the status graph.
  3. Appends exactly one ``status_history`` entry.
  4. Stamps ``completed_at`` / ``failed_at`` once.
  5. Writes an audit entry and notifies transition listeners (e.g. a
     creator notification service reacting to a bounced transfer).

Callers own the transaction: the ledger flushes, the caller commits.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_payouts.audit.logger import log_event
from creator_payouts.ledger.state_machine import assert_transition
from creator_payouts.models.enums import PayoutStatus
from creator_payouts.models.payout import Payout

logger = logging.getLogger("creator_payouts.ledger")

# Fields a transition may update alongside the status
LINKAGE_FIELDS = frozenset({
    "provider",
    "provider_transfer_id",
    "provider_recipient_id",
    "provider_quote_id",
    "provider_fee",
    "exchange_rate",
    "source_amount",
    "source_currency",
    "amount",
})

OPEN_STATUSES = (
    PayoutStatus.PENDING.value,
    PayoutStatus.PROCESSING.value,
    PayoutStatus.COMPLETED.value,
)


class PayoutNotFound(Exception):
    pass


@dataclass
class TransitionEvent:
    """A status change, as seen by transition listeners."""

    payout_id: str
    creator_id: str
    from_status: str
    to_status: str
    timestamp: datetime
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class TransitionOutcome:
    payout: Payout
    applied: bool
    from_status: str


TransitionListener = Callable[[TransitionEvent], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _history_entry(status: str, from_status: Optional[str], error_message: Optional[str]) -> dict[str, Any]:
    return {
        "status": status,
        "timestamp": _utcnow().isoformat(),
        "from_status": from_status,
        "error_message": error_message,
    }


class PayoutLedger:
    """Repository over ``Payout`` rows bound to one session."""

    def __init__(self, session: AsyncSession, listeners: Sequence[TransitionListener] = ()):
        self.session = session
        self._listeners = tuple(listeners)

    async def create_payout(
        self,
        *,
        creator_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
        **fields: Any,
    ) -> Payout:
        """Insert a new ``pending`` payout with its initial history entry."""
        payout = Payout(
            creator_id=creator_id,
            amount=amount,
            currency=currency,
            reference=reference,
            status=PayoutStatus.PENDING.value,
            status_history=[_history_entry(PayoutStatus.PENDING.value, None, None)],
            **fields,
        )
        self.session.add(payout)
        await self.session.flush()
        return payout

    async def get(self, payout_id: str, include_deleted: bool = False) -> Payout:
        payout = await self.session.get(Payout, payout_id)
        if payout is None or (payout.deleted_at is not None and not include_deleted):
            raise PayoutNotFound(payout_id)
        return payout

    async def get_by_provider_transfer_id(
        self,
        transfer_id: str,
        for_update: bool = False,
    ) -> Optional[Payout]:
        stmt = select(Payout).where(
            Payout.provider_transfer_id == str(transfer_id),
            Payout.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_open_by_reference(self, reference: str) -> Optional[Payout]:
        """Most recent non-failed attempt for an idempotency reference."""
        result = await self.session.execute(
            select(Payout)
            .where(
                Payout.reference == reference,
                Payout.deleted_at.is_(None),
                Payout.status.in_(OPEN_STATUSES),
            )
            .order_by(Payout.created_at.desc())
        )
        return result.scalars().first()

    async def latest_by_reference(self, reference: str) -> Optional[Payout]:
        """Most recent attempt for an idempotency reference, in any status."""
        result = await self.session.execute(
            select(Payout)
            .where(Payout.reference == reference, Payout.deleted_at.is_(None))
            .order_by(Payout.created_at.desc())
        )
        return result.scalars().first()

    async def list_for_creator(self, creator_id: str, limit: int = 20, offset: int = 0) -> list[Payout]:
        result = await self.session.execute(
            select(Payout)
            .where(Payout.creator_id == creator_id, Payout.deleted_at.is_(None))
            .order_by(Payout.created_at.desc(), Payout.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_by_status(self, statuses: Sequence[str], updated_before: Optional[datetime] = None) -> list[Payout]:
        stmt = select(Payout).where(Payout.status.in_(list(statuses)), Payout.deleted_at.is_(None))
        if updated_before is not None:
            stmt = stmt.where(Payout.updated_at < updated_before)
        result = await self.session.execute(stmt.order_by(Payout.created_at.asc()))
        return list(result.scalars().all())

    async def apply_transition(
        self,
        payout: Payout,
        new_status: PayoutStatus | str,
        *,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        **fields: Any,
    ) -> TransitionOutcome:
        """
        Move ``payout`` to ``new_status``.

        Raises:
            InvalidTransition: If the edge is not in the status graph.
            ValueError: If ``fields`` contains a non-linkage column.
        """
        target = PayoutStatus(new_status).value
        current = payout.status
        history = list(payout.status_history or [])

        if current == target or (history and history[-1].get("status") == target):
            logger.debug("Payout %s already %s, transition is a no-op", payout.id, target)
            return TransitionOutcome(payout=payout, applied=False, from_status=current)

        assert_transition(current, target)

        unknown = set(fields) - LINKAGE_FIELDS
        if unknown:
            raise ValueError(f"Cannot set {sorted(unknown)} through a status transition")
        for key, value in fields.items():
            setattr(payout, key, value)

        now = _utcnow()
        payout.status = target
        if target == PayoutStatus.COMPLETED.value and payout.completed_at is None:
            payout.completed_at = now
        if target == PayoutStatus.FAILED.value:
            if payout.failed_at is None:
                payout.failed_at = now
            payout.error_code = error_code
            payout.error_message = error_message
        else:
            payout.error_code = None
            payout.error_message = None

        # Reassign rather than mutate so the JSON column is flagged dirty
        payout.status_history = [*history, _history_entry(target, current, error_message)]

        await log_event(self.session, "status_changed", payout_id=payout.id, details={
            "from": current,
            "to": target,
            "error_code": error_code,
        })
        await self.session.flush()

        event = TransitionEvent(
            payout_id=payout.id,
            creator_id=payout.creator_id,
            from_status=current,
            to_status=target,
            timestamp=now,
            error_code=error_code,
            error_message=error_message,
        )
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                logger.exception("Transition listener failed for payout %s (%s -> %s)", payout.id, current, target)

        return TransitionOutcome(payout=payout, applied=True, from_status=current)

    async def link_provider_transfer(self, payout: Payout, transfer_id: str) -> Payout:
        """
        Record the provider transfer id as soon as it is known.

        Once set it never changes, and no further create-transfer call is
        made for this payout.
        """
        transfer_id = str(transfer_id)
        if payout.provider_transfer_id == transfer_id:
            return payout
        if payout.provider_transfer_id is not None:
            raise ValueError(
                f"Payout {payout.id} is already linked to transfer {payout.provider_transfer_id}"
            )
        payout.provider_transfer_id = transfer_id
        await log_event(self.session, "transfer_linked", payout_id=payout.id, details={
            "provider_transfer_id": transfer_id,
        })
        await self.session.flush()
        return payout

    async def mark_balance_deducted(self, payout: Payout) -> Payout:
        payout.balance_deducted = True
        await self.session.flush()
        return payout

    async def soft_delete(self, payout: Payout) -> Payout:
        if payout.deleted_at is None:
            payout.deleted_at = _utcnow()
            await log_event(self.session, "payout_deleted", payout_id=payout.id, details={
                "status": payout.status,
            })
            await self.session.flush()
        return payout

    async def creator_stats(self, creator_id: str) -> dict[str, Any]:
        """Per-status counts and per-currency completed totals for a creator."""
        counts_result = await self.session.execute(
            select(Payout.status, func.count(Payout.id))
            .where(Payout.creator_id == creator_id, Payout.deleted_at.is_(None))
            .group_by(Payout.status)
        )
        totals_result = await self.session.execute(
            select(Payout.currency, func.sum(Payout.amount))
            .where(
                Payout.creator_id == creator_id,
                Payout.deleted_at.is_(None),
                Payout.status == PayoutStatus.COMPLETED.value,
            )
            .group_by(Payout.currency)
        )
        by_status = {status: count for status, count in counts_result.all()}
        return {
            "creator_id": creator_id,
            "total_payouts": sum(by_status.values()),
            "by_status": by_status,
            "completed_amount": {cur: Decimal(str(total)) for cur, total in totals_result.all()},
        }

    async def pending_summary(self) -> list[dict[str, Any]]:
        """Per-currency count and total of payouts still in flight."""
        result = await self.session.execute(
            select(Payout.currency, Payout.status, func.count(Payout.id), func.sum(Payout.amount))
            .where(
                Payout.deleted_at.is_(None),
                Payout.status.in_([PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value]),
            )
            .group_by(Payout.currency, Payout.status)
            .order_by(Payout.currency, Payout.status)
        )
        return [
            {
                "currency": currency,
                "status": status,
                "count": count,
                "total_amount": Decimal(str(total or 0)),
            }
            for currency, status, count, total in result.all()
        ]
