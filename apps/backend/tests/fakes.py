"""In-memory stand-ins for the record, trust and event services."""

import asyncio
from datetime import date
from typing import Any

from bankrec.services.collaborators import CandidateRecord, ClientBalance
from bankrec.services.errors import DownstreamError, RecordUnavailableError


def make_record(
    record_id: str = "INV-1",
    *,
    record_type: str = "invoice",
    amount: int = 10000,
    record_date: date = date(2024, 3, 15),
    description: str = "",
    reference: str | None = None,
    counterparty: str | None = "Acme Corp",
) -> CandidateRecord:
    return CandidateRecord(
        record_type=record_type,
        record_id=record_id,
        amount=amount,
        record_date=record_date,
        description=description,
        reference=reference,
        counterparty=counterparty,
    )


class InMemoryRecordSource:
    """Record service double.

    ``missing`` keys raise RecordUnavailableError; ``fail_apply`` makes every
    apply raise DownstreamError; ``fail_lookup`` / ``lookup_delay`` affect
    candidate fetches.
    """

    name = "in-memory"

    def __init__(self, records: list[CandidateRecord] | None = None) -> None:
        self.records: dict[tuple[str, str], CandidateRecord] = {r.key: r for r in records or []}
        self.applied: list[tuple[str, str, int]] = []
        self.reverted: list[tuple[str, str, int]] = []
        self.missing: set[tuple[str, str]] = set()
        self.fail_apply = False
        self.fail_apply_after: int | None = None
        self.fail_lookup = False
        self.lookup_delay = 0.0

    def add(self, *records: CandidateRecord) -> None:
        for record in records:
            self.records[record.key] = record

    async def fetch_candidates(self, transaction) -> list[CandidateRecord]:
        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        if self.fail_lookup:
            raise DownstreamError("record service down")
        return list(self.records.values())

    async def apply_match(self, record_type: str, record_id: str, *, amount: int, transaction_reference: str) -> None:
        if (record_type, record_id) in self.missing:
            raise RecordUnavailableError(f"{record_type}/{record_id} deleted")
        if self.fail_apply or (self.fail_apply_after is not None and len(self.applied) >= self.fail_apply_after):
            raise DownstreamError("record service rejected the update")
        self.applied.append((record_type, record_id, amount))

    async def revert_match(self, record_type: str, record_id: str, *, amount: int, transaction_reference: str) -> None:
        if (record_type, record_id) in self.missing:
            raise RecordUnavailableError(f"{record_type}/{record_id} deleted")
        self.reverted.append((record_type, record_id, amount))


class StaticTrustLedger:
    def __init__(self, balances: list[ClientBalance] | None = None) -> None:
        self.balances = balances or []

    async def client_balances(self, account_id: str) -> list[ClientBalance]:
        return list(self.balances)


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, kind: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise DownstreamError("webhook unavailable")
        self.published.append((kind, payload))
