"""Match rule schemas, including the criterion tagged union."""

import re
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from bankrec.models import RuleAction
from bankrec.schemas.base import BaseResponse, ListResponse


class AmountCriterion(BaseModel):
    """Transaction amount against the record amount.

    ``exact`` needs equality; ``range`` and ``percentage`` accept
    ``abs(a - b) <= max(tolerance, percentage * max(a, b))``.
    """

    kind: Literal["amount"] = "amount"
    mode: Literal["exact", "range", "percentage"] = "exact"
    tolerance: int = Field(default=0, ge=0, description="Fixed tolerance in minor units")
    percentage: Decimal = Field(default=Decimal("0"), ge=0, le=1)


class DateCriterion(BaseModel):
    kind: Literal["date"] = "date"
    mode: Literal["exact", "range"] = "exact"
    days_tolerance: int = Field(default=0, ge=0)


class DescriptionCriterion(BaseModel):
    """Tests the transaction description.

    With ``pattern`` set the description is tested against the pattern; without
    it, against the candidate record's counterparty (or description).
    """

    kind: Literal["description"] = "description"
    mode: Literal["exact", "contains", "starts_with", "ends_with", "regex", "fuzzy"] = "contains"
    pattern: str | None = None
    case_sensitive: bool = False
    min_similarity: Decimal | None = Field(default=None, ge=0, le=1)

    @model_validator(mode="after")
    def _check_regex(self) -> "DescriptionCriterion":
        if self.mode == "regex":
            if not self.pattern:
                raise ValueError("regex criterion needs a pattern")
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(f"invalid regex: {exc}") from exc
        return self

    @property
    def transaction_only(self) -> bool:
        return self.pattern is not None


class ReferenceCriterion(BaseModel):
    kind: Literal["reference"] = "reference"
    normalize: bool = True


Criterion = Annotated[
    AmountCriterion | DateCriterion | DescriptionCriterion | ReferenceCriterion,
    Field(discriminator="kind"),
]

CRITERIA_ADAPTER: TypeAdapter[list[Criterion]] = TypeAdapter(list[Criterion])


class MatchRuleBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    priority: int = Field(default=100, ge=0)
    is_active: bool = True
    criteria: list[Criterion] = Field(min_length=1)
    record_types: list[str] = Field(default_factory=list)
    account_ids: list[UUID] = Field(default_factory=list)
    action: RuleAction = RuleAction.REQUIRE_CONFIRMATION
    category: str | None = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def _tag_rules_need_category(self) -> "MatchRuleBase":
        if self.action == RuleAction.TAG and not self.category:
            raise ValueError("tag rules need a category")
        return self


class MatchRuleCreate(MatchRuleBase):
    pass


class MatchRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    priority: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    criteria: list[Criterion] | None = Field(default=None, min_length=1)
    record_types: list[str] | None = None
    account_ids: list[UUID] | None = None
    action: RuleAction | None = None
    category: str | None = None


class MatchRuleResponse(BaseResponse):
    id: UUID
    name: str
    description: str | None
    priority: int
    is_active: bool
    criteria: list[dict]
    record_types: list[str]
    account_ids: list[str]
    action: RuleAction
    category: str | None
    times_matched: int
    last_matched_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @field_validator("criteria", mode="before")
    @classmethod
    def _criteria_as_dicts(cls, value: list) -> list:
        return [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in value]


MatchRuleListResponse = ListResponse[MatchRuleResponse]


class RuleStatistics(BaseModel):
    rule_id: UUID
    name: str
    priority: int
    is_active: bool
    times_matched: int
    last_matched_at: datetime | None
    confirmed_matches: int
    rejected_matches: int
