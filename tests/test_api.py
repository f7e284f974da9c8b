from datetime import datetime, timedelta, timezone

import pytest

import db

BASE = "/api/scheduled-payments"


def _new_schedule(**extra):
    return {
        "walletAddress": "0xwallet",
        "tokenSymbol": "USDC",
        "contractAddress": "0xusdc",
        "decimals": 6,
        "recipient": "0xbob",
        "amount": "10",
        "frequency": "weekly",
        "scheduledFor": "2024-01-01T00:00:00Z",
        **extra,
    }


@pytest.mark.asyncio
async def test_requires_authentication(client):
    resp = await client.get(BASE, headers={"Authorization": ""})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_auth_cookie_is_accepted(client, token):
    cookie = f"auth-token={token('carol')}"
    resp = await client.get(BASE, headers={"Authorization": "", "Cookie": cookie})
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_create_and_read_schedule(client):
    resp = await client.post(BASE, json=_new_schedule())
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "active"
    assert body["executedCount"] == 0
    assert body["username"] == "alice"

    resp = await client.get(f"{BASE}/{body['scheduleId']}")
    assert resp.status_code == 200
    assert resp.json()["recipient"] == "0xbob"

    listed = await client.get(BASE, params={"status": "active"})
    assert [s["scheduleId"] for s in listed.json()] == [body["scheduleId"]]


@pytest.mark.asyncio
async def test_create_rejects_bad_payload(client):
    resp = await client.post(BASE, json=_new_schedule(amount="-1"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_processing_conflict_and_completion(client):
    sid = (await client.post(BASE, json=_new_schedule())).json()["scheduleId"]

    first = await client.post(f"{BASE}/{sid}/process", json={"executorId": "exec-a"})
    assert first.status_code == 200
    assert first.json()["processingBy"] == "exec-a"

    second = await client.post(f"{BASE}/{sid}/process", json={"executorId": "exec-b"})
    assert second.status_code == 409
    assert second.json()["code"] == "already_processing"
    assert second.json()["success"] is False

    done = await client.post(
        f"{BASE}/{sid}/complete",
        json={"executorId": "exec-a", "transactionHash": "0xabc", "gasUsed": 21000},
    )
    assert done.status_code == 200
    assert done.json()["finalStatus"] == "active"
    assert done.json()["executionCount"] == 1

    replay = await client.post(
        f"{BASE}/{sid}/complete", json={"executorId": "exec-a", "transactionHash": "0xabc"}
    )
    assert replay.json()["replayed"] is True

    history = await client.get(f"{BASE}/{sid}/executions")
    assert [r["transactionHash"] for r in history.json()] == ["0xabc"]


@pytest.mark.asyncio
async def test_claim_rejects_blank_executor(client):
    sid = (await client.post(BASE, json=_new_schedule())).json()["scheduleId"]
    resp = await client.post(f"{BASE}/{sid}/claim", json={"executorId": "  "})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_fail_then_terminal(client, make_schedule):
    sid = await make_schedule(retry_count=2)
    resp = await client.post(f"{BASE}/{sid}/fail", json={"error": "reverted"})
    assert resp.status_code == 200
    assert resp.json()["willRetry"] is False

    resp = await client.post(f"{BASE}/{sid}/process", json={"executorId": "exec-a"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "failed"


@pytest.mark.asyncio
async def test_force_update_without_flag_is_bad_request(client, make_schedule):
    sid = await make_schedule()
    resp = await client.post(f"{BASE}/{sid}/force-update", json={"transactionHash": "0x1"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "force_flag_required"

    resp = await client.post(
        f"{BASE}/{sid}/force-update", json={"transactionHash": "0x1", "forceUpdate": True}
    )
    assert resp.status_code == 200
    assert resp.json()["wasForceUpdated"] is True


@pytest.mark.asyncio
async def test_other_owners_schedules_are_not_found(client, make_schedule):
    sid = await make_schedule(username="bob")
    resp = await client.get(f"{BASE}/{sid}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"

    resp = await client.post(f"{BASE}/{sid}/cancel")
    assert resp.status_code == 404
    assert (await db.get_schedule(sid)).status == "active"


@pytest.mark.asyncio
async def test_cancel(client, make_schedule):
    sid = await make_schedule()
    resp = await client.post(f"{BASE}/{sid}/cancel", json={"executorId": "dashboard"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_due_and_executor_stats(client, make_schedule):
    sid = await make_schedule()
    due = await client.get(f"{BASE}/due")
    assert [s["scheduleId"] for s in due.json()] == [sid]

    stats = await client.get(f"{BASE}/executor")
    assert stats.status_code == 200
    assert stats.json()["active"] == 1
    assert stats.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_fix_stuck_preview_and_repair(client, make_schedule):
    started = datetime.now(timezone.utc) - timedelta(minutes=20)
    sid = await make_schedule(status="processing", processing_by="exec-a", processing_started=started)

    preview = await client.get(f"{BASE}/fix-stuck")
    assert preview.json()["stuckPaymentsCount"] == 1

    fixed = await client.post(f"{BASE}/fix-stuck")
    assert fixed.status_code == 200
    assert fixed.json()["fixedPayments"][0]["action"] == "marked_as_completed"
    assert (await db.get_schedule(sid)).status == "completed"


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_list_filters_by_wallet(client, make_schedule):
    mine = await make_schedule(wallet_address="0xhot")
    await make_schedule(wallet_address="0xcold")

    resp = await client.get(BASE, params={"walletAddress": "0xhot"})

    assert resp.status_code == 200
    assert [s["scheduleId"] for s in resp.json()] == [mine]
    assert len((await client.get(BASE)).json()) == 2
