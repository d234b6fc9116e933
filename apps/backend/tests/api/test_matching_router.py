"""Match resolution API tests."""

from datetime import date

from fastapi import status
from httpx import AsyncClient

from tests.fakes import make_record


async def _import_line(client: AsyncClient, **row) -> str:
    account = await client.post("/accounts", json={"name": "Operating"})
    line = {"date": "2024-03-15", "direction": "credit", "amount": 10000, "description": "ACH ACME CORP"} | row
    imported = await client.post("/transactions/import", json={"account_id": account.json()["id"], "rows": [line]})
    return imported.json()["transactions"][0]["id"]


async def test_unique_reference_auto_confirms(client: AsyncClient, record_source):
    # GIVEN: One open invoice carrying the line's reference
    record_source.add(make_record("INV-1", reference="INV-001"))
    txn_id = await _import_line(client, reference="INV-001")

    # WHEN: The line is resolved
    response = await client.post(f"/matching/transactions/{txn_id}/resolve")

    # THEN: It is confirmed without review and the invoice is updated
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["transaction_status"] == "confirmed"
    assert data["auto_match"]["status"] == "auto_confirmed"
    assert data["auto_match"]["sources"] == ["reference"]
    assert record_source.applied == [("invoice", "INV-1", 10000)]


async def test_review_flow(client: AsyncClient, record_source):
    # GIVEN: Two equally good candidates
    record_source.add(
        make_record("INV-1", reference="INV-001"),
        make_record("INV-2", reference="INV-001", record_date=date(2024, 3, 1)),
    )
    txn_id = await _import_line(client, reference="INV-001")

    resolved = await client.post(f"/matching/transactions/{txn_id}/resolve")
    suggestions = resolved.json()["suggestions"]
    assert [s["record_id"] for s in suggestions] == ["INV-1", "INV-2"]

    queue = await client.get("/matching/suggestions")
    assert queue.json()["total"] == 2

    # WHEN: The reviewer rejects the first and confirms the second
    rejected = await client.post(f"/matching/matches/{suggestions[0]['id']}/reject", json={"reason": "wrong invoice"})
    assert rejected.json()["status"] == "rejected"
    confirmed = await client.post(f"/matching/matches/{suggestions[1]['id']}/confirm")

    # THEN: The second record is applied
    assert confirmed.status_code == status.HTTP_200_OK
    assert confirmed.json()["status"] == "confirmed"
    assert record_source.applied == [("invoice", "INV-2", 10000)]

    stats = await client.get("/matching/stats")
    assert stats.json()["by_status"] == {"rejected": 1, "confirmed": 1}

    patterns = await client.get("/matching/patterns")
    assert patterns.json()["total"] == 1


async def test_confirm_with_record_service_down(client: AsyncClient, record_source):
    record_source.add(make_record("INV-1", reference="INV-001"), make_record("INV-2", reference="INV-001"))
    txn_id = await _import_line(client, reference="INV-001")
    suggestions = (await client.post(f"/matching/transactions/{txn_id}/resolve")).json()["suggestions"]
    record_source.fail_apply = True

    response = await client.post(f"/matching/matches/{suggestions[0]['id']}/confirm")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    listed = await client.get("/matching/matches", params={"status": "suggested"})
    assert listed.json()["total"] == 2


async def test_unmatch(client: AsyncClient, record_source):
    record_source.add(make_record("INV-1", reference="INV-001"))
    txn_id = await _import_line(client, reference="INV-001")
    match_id = (await client.post(f"/matching/transactions/{txn_id}/resolve")).json()["auto_match"]["id"]

    missing_reason = await client.post(f"/matching/matches/{match_id}/unmatch", json={})
    assert missing_reason.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    response = await client.post(f"/matching/matches/{match_id}/unmatch", json={"reason": "paid by other entity"})

    assert response.json()["status"] == "unmatched"
    txn = await client.get(f"/transactions/{txn_id}")
    assert txn.json()["status"] == "unmatched"
    assert record_source.reverted == [("invoice", "INV-1", 10000)]


async def test_split_flow(client: AsyncClient, record_source):
    txn_id = await _import_line(client)

    bad = await client.post(
        "/matching/splits",
        json={
            "transaction_id": txn_id,
            "allocations": [
                {"record_type": "invoice", "record_id": "INV-1", "amount": 6000},
                {"record_type": "invoice", "record_id": "INV-2", "amount": 3000},
            ],
        },
    )
    assert bad.status_code == status.HTTP_400_BAD_REQUEST

    created = await client.post(
        "/matching/splits",
        json={
            "transaction_id": txn_id,
            "allocations": [
                {"record_type": "invoice", "record_id": "INV-1", "amount": 6000},
                {"record_type": "bill", "record_id": "BILL-9", "amount": 4000, "note": "fee offset"},
            ],
        },
    )
    assert created.status_code == status.HTTP_201_CREATED
    split = created.json()
    assert split["is_split"] is True
    assert split["record_type"] == "split"
    assert [s["record_id"] for s in split["splits"]] == ["INV-1", "BILL-9"]

    confirmed = await client.post(f"/matching/matches/{split['id']}/confirm")
    assert confirmed.json()["status"] == "confirmed"
    assert record_source.applied == [("invoice", "INV-1", 6000), ("bill", "BILL-9", 4000)]


async def test_batch_resolve(client: AsyncClient, record_source):
    record_source.add(make_record("INV-1", reference="INV-001"))
    account = await client.post("/accounts", json={"name": "Operating"})
    rows = [
        {"date": "2024-03-15", "direction": "credit", "amount": 10000, "reference": "INV-001"},
        {"date": "2024-03-16", "direction": "credit", "amount": 777, "description": "Interest"},
    ]
    await client.post("/transactions/import", json={"account_id": account.json()["id"], "rows": rows})

    response = await client.post("/matching/resolve", json={"account_id": account.json()["id"]})

    assert response.json() == {"processed": 2, "auto_matched": 1, "suggested": 0, "unmatched": 1}
