"""User-authored match rules."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from bankrec.database import Base
from bankrec.models.base import TimestampMixin, UserOwnedMixin, UUIDMixin, enum_column


class RuleAction(str, Enum):
    """What happens when a rule is satisfied."""

    AUTO_MATCH = "auto_match"
    AUTO_RECONCILE = "auto_reconcile"
    REQUIRE_CONFIRMATION = "require_confirmation"
    TAG = "tag"


AUTO_ACTIONS = (RuleAction.AUTO_MATCH, RuleAction.AUTO_RECONCILE)


class MatchRule(UUIDMixin, UserOwnedMixin, TimestampMixin, Base):
    """A conjunction of criteria plus an applicability filter and an action.

    ``criteria`` holds the serialized criterion variants (see
    ``bankrec.schemas.rules.Criterion``). Lower ``priority`` runs first; equal
    priorities fall back to creation order.
    """

    __tablename__ = "match_rules"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    criteria: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    record_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    account_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    action: Mapped[RuleAction] = mapped_column(
        enum_column(RuleAction, "rule_action_enum"),
        nullable=False,
        default=RuleAction.REQUIRE_CONFIRMATION,
    )
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    times_matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
