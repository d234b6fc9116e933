"""Match resolution, suggestion and pattern schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from bankrec.models import ConfidenceTier, MatchSource, MatchStatus, PatternType
from bankrec.schemas.base import BaseResponse, ListResponse


class SplitAllocation(BaseModel):
    record_type: str = Field(min_length=1, max_length=30)
    record_id: str = Field(min_length=1, max_length=64)
    amount: int = Field(gt=0, description="Minor units")
    note: str | None = Field(default=None, max_length=255)


class SplitMatchCreate(BaseModel):
    """Manual allocation of one transaction across several records."""

    transaction_id: UUID
    allocations: list[SplitAllocation] = Field(min_length=1)


class RejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class UnmatchRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class ResolveBatchRequest(BaseModel):
    account_id: UUID | None = None
    limit: int = Field(default=100, ge=1, le=1000)


class MatchSplitResponse(BaseResponse):
    position: int
    record_type: str
    record_id: str
    amount: int
    note: str | None = None


class MatchResponse(BaseResponse):
    id: UUID
    transaction_id: UUID
    record_type: str
    record_id: str | None
    record_date: date | None
    record_amount: int | None
    record_label: str | None
    matched_amount: int
    score: int
    confidence: ConfidenceTier
    source: MatchSource
    sources: list[str]
    reasons: list[str]
    rule_id: UUID | None
    status: MatchStatus
    is_split: bool
    needs_audit: bool
    rejection_reason: str | None
    confirmed_by: UUID | None
    confirmed_at: datetime | None
    rejected_by: UUID | None
    rejected_at: datetime | None
    version: int
    splits: list[MatchSplitResponse] = Field(default_factory=list)
    created_at: datetime


MatchListResponse = ListResponse[MatchResponse]


class ResolutionResponse(BaseModel):
    transaction_id: UUID
    transaction_status: str
    category: str | None = None
    auto_match: MatchResponse | None = None
    suggestions: list[MatchResponse] = Field(default_factory=list)


class ResolveBatchResponse(BaseModel):
    processed: int
    auto_matched: int
    suggested: int
    unmatched: int


class MatchingStatistics(BaseModel):
    total_matches: int
    by_status: dict[str, int]
    by_source: dict[str, int]
    auto_match_rate: float
    accuracy: float
    pending_review: int
    needs_audit: int
    patterns: dict


class PatternResponse(BaseResponse):
    id: UUID
    pattern_key: str
    pattern_type: PatternType
    description_template: str
    amount_bucket: int
    direction: str
    record_type: str
    counterparty: str
    features: dict
    confirmations: int
    rejections: int
    success_rate: float
    strength: int
    is_active: bool
    last_used_at: datetime | None
    created_at: datetime


PatternListResponse = ListResponse[PatternResponse]
