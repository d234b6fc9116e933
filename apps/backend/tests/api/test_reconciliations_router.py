"""Reconciliation ledger and outbox API tests."""

from fastapi import status
from httpx import AsyncClient

from bankrec.services.collaborators import ClientBalance
from tests.fakes import make_record


async def _confirmed_account(client: AsyncClient, record_source, *, is_trust: bool = False) -> str:
    """An account holding one confirmed 100.00 credit dated mid-March."""
    record_source.add(make_record("INV-1", reference="INV-001"))
    body = {"name": "Trust" if is_trust else "Operating", "is_trust": is_trust}
    account = (await client.post("/accounts", json=body)).json()
    imported = await client.post(
        "/transactions/import",
        json={
            "account_id": account["id"],
            "rows": [{"date": "2024-03-15", "direction": "credit", "amount": 10000, "reference": "INV-001"}],
        },
    )
    txn_id = imported.json()["transactions"][0]["id"]
    await client.post(f"/matching/transactions/{txn_id}/resolve")
    return account["id"]


async def _open(client: AsyncClient, account_id: str, statement: int = 10000) -> dict:
    created = await client.post(
        "/reconciliations",
        json={
            "account_id": account_id,
            "period_start": "2024-03-01",
            "period_end": "2024-03-31",
            "opening_balance": 0,
            "statement_balance": statement,
        },
    )
    assert created.status_code == status.HTTP_201_CREATED
    started = await client.post(f"/reconciliations/{created.json()['id']}/start")
    return started.json()


async def test_balanced_period_completes(client: AsyncClient, record_source, publisher):
    # GIVEN: A started reconciliation whose statement matches the book
    account_id = await _confirmed_account(client, record_source)
    recon = await _open(client, account_id)
    assert recon["difference"] == 0

    # WHEN: It is completed
    response = await client.post(f"/reconciliations/{recon['id']}/complete")

    # THEN: The period closes and a GL posting is queued
    assert response.json()["status"] == "completed"
    report = await client.get(f"/reconciliations/{recon['id']}/report")
    [line] = report.json()["cleared"]
    assert line["transaction"]["status"] == "reconciled"

    pending = await client.get("/events/pending")
    assert [e["kind"] for e in pending.json()] == ["gl_posting"]

    dispatched = await client.post("/events/dispatch")
    assert dispatched.json() == {"sent": 1, "failed": 0, "abandoned": 0}
    assert publisher.published[0][0] == "gl_posting"
    assert (await client.get("/events/pending")).json() == []


async def test_duplicate_open_period_conflicts(client: AsyncClient, record_source):
    account_id = await _confirmed_account(client, record_source)
    await _open(client, account_id)

    response = await client.post(
        "/reconciliations",
        json={
            "account_id": account_id,
            "period_start": "2024-03-01",
            "period_end": "2024-03-31",
            "opening_balance": 0,
            "statement_balance": 0,
        },
    )

    assert response.status_code == status.HTTP_409_CONFLICT


async def test_inverted_period_rejected(client: AsyncClient, record_source):
    account_id = await _confirmed_account(client, record_source)
    response = await client.post(
        "/reconciliations",
        json={
            "account_id": account_id,
            "period_start": "2024-03-31",
            "period_end": "2024-03-01",
            "opening_balance": 0,
            "statement_balance": 0,
        },
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_three_way_read_and_start(client: AsyncClient, record_source, trust_ledger):
    # GIVEN: A pending reconciliation on a trust account
    trust_ledger.balances = [ClientBalance("C-1", "Alpha", 10000)]
    account_id = await _confirmed_account(client, record_source, is_trust=True)
    created = await client.post(
        "/reconciliations",
        json={
            "account_id": account_id,
            "period_start": "2024-03-01",
            "period_end": "2024-03-31",
            "opening_balance": 0,
            "statement_balance": 10000,
        },
    )
    recon_id = created.json()["id"]

    # WHEN: It is read back, started and listed
    fetched = await client.get(f"/reconciliations/{recon_id}")
    started = await client.post(f"/reconciliations/{recon_id}/start")
    listed = await client.get("/reconciliations", params={"account_id": account_id})

    # THEN: Every response carries the three-way fields
    assert fetched.status_code == status.HTTP_200_OK
    assert fetched.json()["kind"] == "three_way"
    assert fetched.json()["client_ledger_balance"] is None
    assert started.status_code == status.HTTP_200_OK
    assert started.json()["status"] == "in_progress"
    assert started.json()["cleared_credits"] == 10000
    assert [item["kind"] for item in listed.json()["items"]] == ["three_way"]


async def test_trust_breach(client: AsyncClient, record_source, trust_ledger):
    # GIVEN: Clients are owed 98.00 while the trust book holds 100.00
    trust_ledger.balances = [ClientBalance("C-1", "Alpha", 9800)]
    account_id = await _confirmed_account(client, record_source, is_trust=True)
    recon = await _open(client, account_id)

    # WHEN: Completion is attempted
    response = await client.post(f"/reconciliations/{recon['id']}/complete")

    # THEN: The period is held in exception with a book-to-client finding
    data = response.json()
    assert data["status"] == "exception"
    assert data["kind"] == "three_way"
    assert data["client_ledger_balance"] == 9800
    [finding] = data["discrepancies"]
    assert finding["kind"] == "book_to_client"
    assert finding["amount"] == 200

    kinds = [e["kind"] for e in (await client.get("/events/pending")).json()]
    assert "breach_alert" in kinds

    resolved = await client.post(
        f"/reconciliations/{recon['id']}/discrepancies/{finding['id']}/resolve",
        json={"note": "Deposit posted to the wrong client", "category": "error"},
    )
    assert resolved.json()["category"] == "error"
    assert resolved.json()["is_resolved"] is True


async def test_unlock_requires_reason(client: AsyncClient, record_source):
    account_id = await _confirmed_account(client, record_source)
    recon = await _open(client, account_id)
    await client.post(f"/reconciliations/{recon['id']}/complete")

    missing = await client.post(f"/reconciliations/{recon['id']}/unlock", json={"reason": ""})
    assert missing.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    response = await client.post(f"/reconciliations/{recon['id']}/unlock", json={"reason": "Late bank correction"})

    assert response.json()["status"] == "in_progress"
    assert response.json()["reopen_count"] == 1
    listed = await client.get("/reconciliations", params={"status": "in_progress"})
    assert listed.json()["total"] == 1


async def test_cancel_pending(client: AsyncClient, record_source):
    account_id = await _confirmed_account(client, record_source)
    created = await client.post(
        "/reconciliations",
        json={
            "account_id": account_id,
            "period_start": "2024-03-01",
            "period_end": "2024-03-31",
            "opening_balance": 0,
            "statement_balance": 0,
        },
    )
    recon_id = created.json()["id"]

    cancelled = await client.post(f"/reconciliations/{recon_id}/cancel")
    assert cancelled.json()["status"] == "cancelled"

    complete = await client.post(f"/reconciliations/{recon_id}/complete")
    assert complete.status_code == status.HTTP_409_CONFLICT
