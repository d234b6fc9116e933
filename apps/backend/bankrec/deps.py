"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from bankrec.deps import CurrentUserId, DbSession, RecordSources

    async def my_endpoint(db: DbSession, user_id: CurrentUserId, sources: RecordSources):
        ...

Collaborator dependencies read the configured HTTP clients; tests override
them with in-memory doubles via ``app.dependency_overrides``.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bankrec.auth import get_current_user_id
from bankrec.database import get_db
from bankrec.services.collaborators import (
    EventPublisher,
    RecordSource,
    TrustLedger,
    configured_event_publisher,
    configured_record_sources,
    configured_trust_ledger,
)
from bankrec.services.matching_config import MatchingConfig, load_matching_config


def get_record_sources() -> list[RecordSource]:
    return configured_record_sources()


def get_trust_ledger() -> TrustLedger | None:
    return configured_trust_ledger()


def get_event_publisher() -> EventPublisher | None:
    return configured_event_publisher()


def get_matching_config() -> MatchingConfig:
    return load_matching_config()


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
RecordSources = Annotated[list[RecordSource], Depends(get_record_sources)]
TrustLedgerDep = Annotated[TrustLedger | None, Depends(get_trust_ledger)]
EventPublisherDep = Annotated[EventPublisher | None, Depends(get_event_publisher)]
MatchingConfigDep = Annotated[MatchingConfig, Depends(get_matching_config)]

__all__ = [
    "CurrentUserId",
    "DbSession",
    "EventPublisherDep",
    "MatchingConfigDep",
    "RecordSources",
    "TrustLedgerDep",
    "get_event_publisher",
    "get_matching_config",
    "get_record_sources",
    "get_trust_ledger",
]
