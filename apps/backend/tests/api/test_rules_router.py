"""Match rule API tests."""

from fastapi import status
from httpx import AsyncClient

RULE = {
    "name": "Exact amount within 3 days",
    "priority": 10,
    "criteria": [
        {"kind": "amount", "mode": "exact"},
        {"kind": "date", "mode": "range", "days_tolerance": 3},
    ],
    "record_types": ["invoice"],
    "action": "require_confirmation",
}


async def test_rule_crud(client: AsyncClient):
    # WHEN: A rule is created
    created = await client.post("/rules", json=RULE)

    # THEN: Criteria are stored with defaults filled in
    assert created.status_code == status.HTTP_201_CREATED
    rule = created.json()
    assert rule["criteria"][1] == {"kind": "date", "mode": "range", "days_tolerance": 3}
    assert rule["times_matched"] == 0

    updated = await client.patch(f"/rules/{rule['id']}", json={"priority": 5})
    assert updated.json()["priority"] == 5

    deactivated = await client.post(f"/rules/{rule['id']}/deactivate")
    assert deactivated.json()["is_active"] is False

    listed = await client.get("/rules")
    assert listed.json()["total"] == 1

    deleted = await client.delete(f"/rules/{rule['id']}")
    assert deleted.status_code == status.HTTP_204_NO_CONTENT
    assert (await client.get(f"/rules/{rule['id']}")).status_code == status.HTTP_404_NOT_FOUND


async def test_unknown_criterion_kind_rejected(client: AsyncClient):
    body = RULE | {"criteria": [{"kind": "sentiment"}]}
    response = await client.post("/rules", json=body)
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_bad_regex_rejected(client: AsyncClient):
    body = RULE | {"criteria": [{"kind": "description", "mode": "regex", "pattern": "(["}]}
    response = await client.post("/rules", json=body)
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_rule_stats(client: AsyncClient):
    await client.post("/rules", json=RULE)

    response = await client.get("/rules/stats")

    assert response.status_code == status.HTTP_200_OK
    [stats] = response.json()
    assert stats["name"] == RULE["name"]
    assert stats["confirmed_matches"] == 0
