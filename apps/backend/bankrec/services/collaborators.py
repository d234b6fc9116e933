"""Interfaces to the services this core depends on, plus their HTTP clients.

Record services (invoices, bills, payments, transfers, journal entries) supply
candidate records and receive the mutation when a match is confirmed. The trust
service supplies client sub-ledger balances; the event publisher delivers
outbox events to the general ledger, compliance and audit services.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

import httpx

from bankrec.config import settings
from bankrec.logger import get_logger, log_external_api
from bankrec.models import BankTransaction
from bankrec.services.errors import DownstreamError, RecordUnavailableError

logger = get_logger(__name__)

RECORD_TYPES = ("invoice", "bill", "payment", "transfer", "journal_entry")


@dataclass(frozen=True)
class CandidateRecord:
    """An open accounting record that a transaction could settle."""

    record_type: str
    record_id: str
    amount: int
    record_date: date
    description: str = ""
    reference: str | None = None
    counterparty: str | None = None
    account_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.record_type, self.record_id)

    @property
    def label(self) -> str:
        return self.counterparty or self.description


@dataclass(frozen=True)
class ClientBalance:
    client_id: str
    name: str
    balance: int


class RecordSource(Protocol):
    """A service owning one or more accounting record types."""

    name: str

    async def fetch_candidates(self, transaction: BankTransaction) -> list[CandidateRecord]: ...

    async def apply_match(
        self,
        record_type: str,
        record_id: str,
        *,
        amount: int,
        transaction_reference: str,
    ) -> None: ...

    async def revert_match(
        self,
        record_type: str,
        record_id: str,
        *,
        amount: int,
        transaction_reference: str,
    ) -> None: ...


class TrustLedger(Protocol):
    async def client_balances(self, account_id: str) -> list[ClientBalance]: ...


class EventPublisher(Protocol):
    async def publish(self, kind: str, payload: dict[str, Any]) -> None: ...


def find_source(sources: list[RecordSource], record_type: str) -> RecordSource:
    """Pick the source responsible for a record type."""
    for source in sources:
        handled = getattr(source, "record_types", None)
        if handled is None or record_type in handled:
            return source
    raise DownstreamError(f"No record service handles {record_type}")


def _candidate_from_json(item: dict[str, Any]) -> CandidateRecord:
    return CandidateRecord(
        record_type=item["record_type"],
        record_id=str(item["record_id"]),
        amount=int(item["amount"]),
        record_date=date.fromisoformat(item["record_date"]),
        description=item.get("description") or "",
        reference=item.get("reference"),
        counterparty=item.get("counterparty"),
        account_id=item.get("account_id"),
    )


class HttpRecordSource:
    """Record service reached over HTTP.

    GET  {base}/records/open?account_id=&amount=&date=&direction=
    POST {base}/records/{type}/{id}/apply | /revert
    """

    name = "record-service"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        record_types: tuple[str, ...] = RECORD_TYPES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.record_service_timeout_seconds
        self.record_types = record_types
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    @log_external_api("record-service")
    async def fetch_candidates(self, transaction: BankTransaction) -> list[CandidateRecord]:
        params = {
            "account_id": str(transaction.account_id),
            "amount": transaction.amount,
            "date": transaction.txn_date.isoformat(),
            "direction": transaction.direction.value,
        }
        try:
            async with self._client() as client:
                response = await client.get("/records/open", params=params)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DownstreamError(f"Record lookup failed: {exc}") from exc
        try:
            return [_candidate_from_json(item) for item in response.json().get("items", [])]
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            raise DownstreamError(f"Record service sent a malformed candidate list: {exc!r}") from exc

    async def _post(self, path: str, body: dict[str, Any]) -> None:
        try:
            async with self._client() as client:
                response = await client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise DownstreamError(f"Record service unreachable: {exc}") from exc
        if response.status_code in (404, 410):
            raise RecordUnavailableError(f"Record {path} no longer exists")
        if response.is_error:
            raise DownstreamError(f"Record service returned {response.status_code} for {path}")

    @log_external_api("record-service")
    async def apply_match(
        self,
        record_type: str,
        record_id: str,
        *,
        amount: int,
        transaction_reference: str,
    ) -> None:
        await self._post(
            f"/records/{record_type}/{record_id}/apply",
            {"amount": amount, "transaction_reference": transaction_reference},
        )

    @log_external_api("record-service")
    async def revert_match(
        self,
        record_type: str,
        record_id: str,
        *,
        amount: int,
        transaction_reference: str,
    ) -> None:
        await self._post(
            f"/records/{record_type}/{record_id}/revert",
            {"amount": amount, "transaction_reference": transaction_reference},
        )


class HttpTrustLedger:
    """Trust account service: GET {base}/trust-accounts/{account_id}/client-balances."""

    def __init__(self, base_url: str, *, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @log_external_api("trust-service")
    async def client_balances(self, account_id: str) -> list[ClientBalance]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(f"/trust-accounts/{account_id}/client-balances")
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DownstreamError(f"Trust service unavailable: {exc}") from exc
        try:
            return [
                ClientBalance(client_id=str(item["client_id"]), name=item.get("name", ""), balance=int(item["balance"]))
                for item in response.json().get("items", [])
            ]
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            raise DownstreamError(f"Trust service sent malformed client balances: {exc!r}") from exc


class HttpEventPublisher:
    """POSTs outbox events to a webhook: {"kind": ..., "payload": {...}}."""

    def __init__(self, url: str, *, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @log_external_api("event-webhook")
    async def publish(self, kind: str, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"kind": kind, "payload": payload})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DownstreamError(f"Event webhook failed: {exc}") from exc


def configured_record_sources() -> list[RecordSource]:
    if not settings.record_service_url:
        return []
    return [HttpRecordSource(settings.record_service_url)]


def configured_trust_ledger() -> TrustLedger | None:
    if not settings.trust_service_url:
        return None
    return HttpTrustLedger(settings.trust_service_url)


def configured_event_publisher() -> EventPublisher | None:
    if not settings.event_webhook_url:
        return None
    return HttpEventPublisher(settings.event_webhook_url)
