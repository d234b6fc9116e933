"""Scored candidate pairings shared by the rule engine, pattern learner and resolver."""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from bankrec.models import ConfidenceTier, MatchSource
from bankrec.services.collaborators import CandidateRecord
from bankrec.services.matching_config import MatchingConfig

_TIER_RANK = {
    ConfidenceTier.LOW: 0,
    ConfidenceTier.MEDIUM: 1,
    ConfidenceTier.HIGH: 2,
    ConfidenceTier.EXACT: 3,
}


@dataclass
class CandidateMatch:
    """One transaction-to-record pairing with its score and the reasons behind it."""

    record: CandidateRecord
    score: int
    confidence: ConfidenceTier
    source: MatchSource
    reasons: list[str] = field(default_factory=list)
    rule_id: UUID | None = None
    requires_confirmation: bool = False
    sources: tuple[MatchSource, ...] = ()

    def __post_init__(self) -> None:
        if not self.sources:
            self.sources = (self.source,)

    @property
    def key(self) -> tuple[str, str]:
        return self.record.key

    @property
    def tier_rank(self) -> int:
        return _TIER_RANK[self.confidence]


def to_score(value: Decimal) -> int:
    """Round a 0-100 Decimal to an int score, clipped to [0, 100]."""
    rounded = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, rounded))


def confidence_for(score: int, config: MatchingConfig) -> ConfidenceTier:
    if score >= config.exact_threshold:
        return ConfidenceTier.EXACT
    if score >= config.high_threshold:
        return ConfidenceTier.HIGH
    if score >= config.medium_threshold:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW
