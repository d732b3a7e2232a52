"""HTTP-level tests for the payout API."""

import hashlib
import hmac
import json

import pytest

from creator_payouts.engine.retry import RateLimitError


async def _create(client, creator_id="CR-NG", amount="50.00", **extra):
    return await client.post("/api/payouts", json={"creator_id": creator_id, "amount": amount, **extra})


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["provider"] == "mock_wise"


@pytest.mark.asyncio
async def test_create_and_fetch_payout(client):
    response = await _create(client, reason="March earnings")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    payout = body["payout"]
    assert payout["status"] == "processing"
    assert payout["currency"] == "NGN"
    assert float(payout["amount"]) == 80000.0
    assert payout["recipient_account_mask"] == "******6789"
    assert payout["recipient_bank_name"] == "Access Bank"

    fetched = await client.get(f"/api/payouts/{payout['id']}")
    assert fetched.status_code == 200
    assert [h["status"] for h in fetched.json()["status_history"]] == ["pending", "processing"]


@pytest.mark.asyncio
async def test_rejection_maps_to_status_code(client):
    low = await _create(client, "CR-LOW")
    missing = await _create(client, "CR-GHOST")
    no_bank = await _create(client, "CR-NOBANK", amount="5")

    assert low.status_code == 409
    assert low.json()["code"] == "INSUFFICIENT_BALANCE"
    assert low.json()["payout"] is None
    assert missing.status_code == 404
    assert no_bank.status_code == 422
    assert no_bank.json()["code"] == "INVALID_BANK_ACCOUNT"


@pytest.mark.asyncio
async def test_retryable_failure_returns_reference(client, provider):
    provider.fail_for_creator("CR-NG", RateLimitError("Too many requests"))

    first = await _create(client)

    assert first.status_code == 503
    assert first.json()["retryable"] is True
    reference = first.json()["reference"]

    second = await _create(client, reference=reference)

    assert second.status_code == 201
    assert second.json()["payout"]["id"] == first.json()["payout"]["id"]


@pytest.mark.asyncio
async def test_unknown_payout_is_404(client):
    response = await client.get("/api/payouts/does-not-exist")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_trace_lists_audit_trail(client):
    payout_id = (await _create(client)).json()["payout"]["id"]

    trace = await client.get(f"/api/payouts/{payout_id}/trace")

    assert trace.status_code == 200
    actions = [entry["action"] for entry in trace.json()["audit_trail"]]
    assert "payout_requested" in actions
    assert "transfer_created" in actions
    assert "status_changed" in actions


@pytest.mark.asyncio
async def test_reconcile_endpoint_settles_stale_payouts(client, provider):
    payout = (await _create(client)).json()["payout"]
    provider.set_transfer_state(payout["provider_transfer_id"], "outgoing_payment_sent")

    untouched = await client.post("/api/payouts/reconcile")
    response = await client.post("/api/payouts/reconcile", params={"older_than_minutes": 0})

    assert untouched.json()["updated"] == 0
    assert response.status_code == 200
    assert response.json() == {"updated": 1, "unchanged": 0, "linked": 0, "skipped": 0, "errors": 0}
    assert (await client.get(f"/api/payouts/{payout['id']}")).json()["status"] == "completed"


@pytest.mark.asyncio
async def test_cancel_and_delete(client):
    payout_id = (await _create(client, amount="10")).json()["payout"]["id"]

    cancelled = await client.post(f"/api/payouts/{payout_id}/cancel")
    again = await client.post(f"/api/payouts/{payout_id}/cancel")
    deleted = await client.delete(f"/api/payouts/{payout_id}")

    assert cancelled.status_code == 200
    assert cancelled.json()["payout"]["status"] == "cancelled"
    assert again.status_code == 409
    assert deleted.status_code == 200
    assert (await client.get(f"/api/payouts/{payout_id}")).status_code == 404


@pytest.mark.asyncio
async def test_creator_history_and_stats(client):
    await _create(client, amount="10")
    await _create(client, amount="20")

    history = await client.get("/api/creators/CR-NG/payouts", params={"limit": 1})
    stats = await client.get("/api/creators/CR-NG/payouts/stats")
    pending = await client.get("/api/payouts/pending/summary")

    assert len(history.json()) == 1
    assert stats.json()["total_payouts"] == 2
    assert stats.json()["by_status"] == {"processing": 2}
    assert pending.json()[0]["currency"] == "NGN"
    assert pending.json()[0]["count"] == 2


@pytest.mark.asyncio
async def test_history_limit_is_bounded(client):
    response = await client.get("/api/creators/CR-NG/payouts", params={"limit": 500})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_batch_endpoint(client, provider):
    provider.fail_for_creator("CR-NG", RateLimitError("Too many requests"))

    response = await client.post("/api/batches", json={
        "items": [
            {"creator_id": "CR-NG", "amount": "20.00"},
            {"creator_id": "CR-LOW", "amount": "5.00"},
        ],
        "max_concurrent": 2,
    })

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is False
    assert body["summary"]["success_count"] == 1
    assert body["failed"][0]["code"] == "RATE_LIMIT_EXCEEDED"
    assert "BATCH PAYOUT SUMMARY" in body["report"]

    retried = await client.post("/api/batches/retry", json={"failed": body["failed"], "base_delay": 0})

    assert retried.status_code == 200
    assert retried.json()["success"] is True
    assert retried.json()["successful"][0]["reference"] == body["failed"][0]["reference"]


@pytest.mark.asyncio
async def test_webhook_endpoint(client, webhook_secret):
    payout = (await _create(client)).json()["payout"]
    body = json.dumps({
        "event_type": "transfers#state-change",
        "data": {
            "resource": {"id": int(payout["provider_transfer_id"]), "type": "transfer"},
            "current_state": "outgoing_payment_sent",
        },
    }).encode()
    signature = hmac.new(webhook_secret.encode(), body, hashlib.sha256).hexdigest()

    forged = await client.post("/webhooks/wise", content=body, headers={"X-Signature-SHA256": "0" * 64})
    accepted = await client.post("/webhooks/wise", content=body, headers={"X-Signature-SHA256": signature})
    ping = await client.post("/webhooks/wise", content=b"")

    assert forged.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json() == {"received": True}
    assert ping.status_code == 200
    assert (await client.get(f"/api/payouts/{payout['id']}")).json()["status"] == "completed"


@pytest.mark.asyncio
async def test_batch_retry_recomputes_retryability(client, provider):
    response = await client.post("/api/batches", json={"items": [{"creator_id": "CR-LOW", "amount": "50.00"}]})
    failed = response.json()["failed"][0]
    assert failed["code"] == "INSUFFICIENT_BALANCE"

    forged = {**failed, "code": "RATE_LIMIT_EXCEEDED", "retryable": True}
    retried = await client.post("/api/batches/retry", json={"failed": [forged], "base_delay": 0})

    assert retried.status_code == 200
    assert retried.json()["failed"][0]["code"] == "INSUFFICIENT_BALANCE"
    assert retried.json()["failed"][0]["retryable"] is False
    assert retried.json()["failed"][0]["attempts"] == 1
    assert provider.create_calls == 0
