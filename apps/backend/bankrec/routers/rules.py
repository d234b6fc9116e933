"""Match rule API router."""

from uuid import UUID

from fastapi import APIRouter, status

from bankrec.deps import CurrentUserId, DbSession
from bankrec.schemas.rules import (
    MatchRuleCreate,
    MatchRuleListResponse,
    MatchRuleResponse,
    MatchRuleUpdate,
    RuleStatistics,
)
from bankrec.services import rules as rule_service
from bankrec.services.errors import ReconciliationError
from bankrec.utils.exceptions import raise_domain_error

router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("", response_model=MatchRuleListResponse)
async def list_rules(
    db: DbSession,
    user_id: CurrentUserId,
    active_only: bool = False,
) -> MatchRuleListResponse:
    """Rules in evaluation order (priority, then creation order)."""
    rules = await rule_service.list_rules(db, user_id=user_id, active_only=active_only)
    return MatchRuleListResponse(items=[MatchRuleResponse.model_validate(r) for r in rules], total=len(rules))


@router.post("", response_model=MatchRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: MatchRuleCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> MatchRuleResponse:
    rule = await rule_service.create_rule(db, payload, user_id=user_id)
    await db.commit()
    return MatchRuleResponse.model_validate(rule)


@router.get("/stats", response_model=list[RuleStatistics])
async def rule_stats(db: DbSession, user_id: CurrentUserId) -> list[RuleStatistics]:
    return await rule_service.rule_statistics(db, user_id=user_id)


@router.get("/{rule_id}", response_model=MatchRuleResponse)
async def get_rule(rule_id: UUID, db: DbSession, user_id: CurrentUserId) -> MatchRuleResponse:
    try:
        rule = await rule_service.get_rule(db, rule_id, user_id=user_id)
    except ReconciliationError as exc:
        raise_domain_error(exc)
    return MatchRuleResponse.model_validate(rule)


@router.patch("/{rule_id}", response_model=MatchRuleResponse)
async def update_rule(
    rule_id: UUID,
    payload: MatchRuleUpdate,
    db: DbSession,
    user_id: CurrentUserId,
) -> MatchRuleResponse:
    try:
        rule = await rule_service.update_rule(db, rule_id, payload, user_id=user_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchRuleResponse.model_validate(rule)


@router.post("/{rule_id}/activate", response_model=MatchRuleResponse)
async def activate_rule(rule_id: UUID, db: DbSession, user_id: CurrentUserId) -> MatchRuleResponse:
    try:
        rule = await rule_service.set_rule_active(db, rule_id, user_id=user_id, is_active=True)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchRuleResponse.model_validate(rule)


@router.post("/{rule_id}/deactivate", response_model=MatchRuleResponse)
async def deactivate_rule(rule_id: UUID, db: DbSession, user_id: CurrentUserId) -> MatchRuleResponse:
    try:
        rule = await rule_service.set_rule_active(db, rule_id, user_id=user_id, is_active=False)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
    return MatchRuleResponse.model_validate(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: UUID, db: DbSession, user_id: CurrentUserId) -> None:
    try:
        await rule_service.delete_rule(db, rule_id, user_id=user_id)
        await db.commit()
    except ReconciliationError as exc:
        await db.rollback()
        raise_domain_error(exc)
