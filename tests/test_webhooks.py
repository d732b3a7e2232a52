"""Tests for provider webhook reconciliation."""

import hashlib
import hmac
import json
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from creator_payouts.engine.orchestrator import get_payout_status, request_payout
from creator_payouts.engine.webhooks import handle_provider_webhook, verify_signature
from creator_payouts.ledger.repository import PayoutLedger
from creator_payouts.models.payout import AuditLog


def _sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _event(event_type: str, transfer_id, **data) -> bytes:
    return json.dumps({
        "event_type": event_type,
        "schema_version": "2.0.0",
        "sent_at": "2026-03-01T12:00:00Z",
        "data": {"resource": {"id": int(transfer_id), "type": "transfer", "profile_id": 4711}, **data},
    }).encode()


def _state_change(transfer_id, state: str) -> bytes:
    return _event("transfers#state-change", transfer_id, current_state=state, previous_state="processing")


async def _audit_count(session, action: str | None = None) -> int:
    stmt = select(func.count(AuditLog.id))
    if action:
        stmt = stmt.where(AuditLog.action == action)
    return (await session.execute(stmt)).scalar_one()


@pytest_asyncio.fixture
async def processing_payout(seeded_session, provider, cipher):
    result = await request_payout(seeded_session, provider, "CR-NG", Decimal("50.00"), cipher=cipher)
    assert result.success
    return result.payout


class TestSignature:
    def test_valid(self, webhook_secret):
        assert verify_signature(b"{}", _sign(b"{}", webhook_secret), webhook_secret)

    def test_prefixed_and_uppercase(self, webhook_secret):
        assert verify_signature(b"{}", "sha256=" + _sign(b"{}", webhook_secret).upper(), webhook_secret)

    def test_wrong_secret(self, webhook_secret):
        assert not verify_signature(b"{}", _sign(b"{}", "another-secret-another-secret-xx"), webhook_secret)

    def test_body_tampered(self, webhook_secret):
        assert not verify_signature(b'{"a":1}', _sign(b"{}", webhook_secret), webhook_secret)

    @pytest.mark.parametrize("signature", [None, "", "   "])
    def test_missing_signature(self, webhook_secret, signature):
        assert not verify_signature(b"{}", signature, webhook_secret)

    def test_unconfigured_secret(self):
        assert not verify_signature(b"{}", "abc", None)


@pytest.mark.asyncio
async def test_completion_webhook(seeded_session, processing_payout, webhook_secret):
    body = _state_change(processing_payout.provider_transfer_id, "outgoing_payment_sent")

    outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    assert outcome.status_code == 200
    assert outcome.body == {"received": True}
    payout = await get_payout_status(seeded_session, processing_payout.id)
    assert payout.status == "completed"
    assert payout.completed_at is not None
    assert [h["status"] for h in payout.status_history] == ["pending", "processing", "completed"]


@pytest.mark.asyncio
async def test_duplicate_delivery_changes_nothing(seeded_session, processing_payout, webhook_secret):
    body = _state_change(processing_payout.provider_transfer_id, "outgoing_payment_sent")
    await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)
    payout = await get_payout_status(seeded_session, processing_payout.id)
    completed_at = payout.completed_at

    outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    assert outcome.status_code == 200
    payout = await get_payout_status(seeded_session, processing_payout.id)
    assert len(payout.status_history) == 3
    assert payout.completed_at == completed_at


@pytest.mark.asyncio
async def test_invalid_signature_writes_nothing(seeded_session, processing_payout, webhook_secret):
    body = _state_change(processing_payout.provider_transfer_id, "outgoing_payment_sent")
    before = await _audit_count(seeded_session)

    outcome = await handle_provider_webhook(seeded_session, body, "deadbeef", webhook_secret)

    assert outcome.status_code == 401
    assert outcome.body == {"error": "Invalid signature"}
    assert await _audit_count(seeded_session) == before
    assert (await get_payout_status(seeded_session, processing_payout.id)).status == "processing"


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(seeded_session, processing_payout, webhook_secret):
    body = _state_change(processing_payout.provider_transfer_id, "outgoing_payment_sent")
    outcome = await handle_provider_webhook(seeded_session, body, None, webhook_secret)
    assert outcome.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"", b"   ", b"not json", b'{"ping": true}', b"[]"])
async def test_validation_ping_is_acknowledged(seeded_session, webhook_secret, body):
    outcome = await handle_provider_webhook(seeded_session, body, None, webhook_secret)

    assert outcome.status_code == 200
    assert await _audit_count(seeded_session) == 0


@pytest.mark.asyncio
async def test_unknown_transfer_is_acknowledged(seeded_session, webhook_secret):
    body = _state_change("99999999", "outgoing_payment_sent")

    outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    assert outcome.status_code == 200
    assert await _audit_count(seeded_session, "webhook_ignored") == 1


@pytest.mark.asyncio
async def test_unhandled_event_type_is_acknowledged(seeded_session, processing_payout, webhook_secret):
    body = _event("balances#credit", processing_payout.provider_transfer_id)

    outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    assert outcome.status_code == 200
    assert (await get_payout_status(seeded_session, processing_payout.id)).status == "processing"


@pytest.mark.asyncio
async def test_bounce_then_chargeback(seeded_session, processing_payout, webhook_secret):
    events = []

    async def listener(event):
        events.append(event)

    for state in ("bounced_back", "charged_back"):
        body = _state_change(processing_payout.provider_transfer_id, state)
        await handle_provider_webhook(
            seeded_session, body, _sign(body, webhook_secret), webhook_secret, listeners=[listener],
        )

    payout = await get_payout_status(seeded_session, processing_payout.id)
    assert payout.status == "refunded"
    assert payout.failed_at is not None
    assert payout.status_history[2]["status"] == "failed"
    assert [(e.from_status, e.to_status) for e in events] == [("processing", "failed"), ("failed", "refunded")]
    assert events[0].error_code == "INVALID_BANK_ACCOUNT"


@pytest.mark.asyncio
async def test_stale_processing_after_completion_is_ignored(seeded_session, processing_payout, webhook_secret):
    for state in ("outgoing_payment_sent", "processing"):
        body = _state_change(processing_payout.provider_transfer_id, state)
        outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)
        assert outcome.status_code == 200

    payout = await get_payout_status(seeded_session, processing_payout.id)
    assert payout.status == "completed"
    assert len(payout.status_history) == 3
    assert await _audit_count(seeded_session, "webhook_ignored") == 1


@pytest.mark.asyncio
async def test_illegal_transition_is_acknowledged(seeded_session, processing_payout, webhook_secret):
    for state in ("cancelled", "outgoing_payment_sent"):
        body = _state_change(processing_payout.provider_transfer_id, state)
        outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)
        assert outcome.status_code == 200

    payout = await get_payout_status(seeded_session, processing_payout.id)
    assert payout.status == "cancelled"
    assert payout.completed_at is None


@pytest.mark.asyncio
async def test_active_cases_flag_the_payout(seeded_session, processing_payout, webhook_secret):
    body = _event(
        "transfers#active-cases", processing_payout.provider_transfer_id, active_cases=["deposit_amount_less_invoice"],
    )
    await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    payout = await get_payout_status(seeded_session, processing_payout.id)
    assert payout.has_active_issues is True
    assert "deposit_amount_less_invoice" in payout.notes

    body = _event("transfers#active-cases", processing_payout.provider_transfer_id, active_cases=[])
    await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    assert (await get_payout_status(seeded_session, processing_payout.id)).has_active_issues is False


@pytest.mark.asyncio
async def test_processing_error_is_still_acknowledged(seeded_session, processing_payout, webhook_secret, monkeypatch):
    async def boom(self, *args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(PayoutLedger, "apply_transition", boom)
    body = _state_change(processing_payout.provider_transfer_id, "outgoing_payment_sent")

    outcome = await handle_provider_webhook(seeded_session, body, _sign(body, webhook_secret), webhook_secret)

    assert outcome.status_code == 200
    await seeded_session.refresh(processing_payout)
    assert processing_payout.status == "processing"
