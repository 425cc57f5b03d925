"""Automation rule management."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext
from messaging_engine.service.automation import AutomationRuleService
from relay_api.deps import get_auth_context
from relay_api.schemas import RuleCreate, RuleOut, RuleReorder, RuleUpdate
from relaycore.db import get_db

router = APIRouter(prefix="/automation/rules", tags=["automation"])


def get_rule_service(db: Session = Depends(get_db)) -> AutomationRuleService:
    return AutomationRuleService(db)


@router.get("", response_model=list[RuleOut])
async def list_rules(
    ctx: AuthContext = Depends(get_auth_context),
    service: AutomationRuleService = Depends(get_rule_service),
):
    return service.list_rules(ctx)


@router.post("", response_model=RuleOut, status_code=201)
async def create_rule(
    body: RuleCreate,
    ctx: AuthContext = Depends(get_auth_context),
    service: AutomationRuleService = Depends(get_rule_service),
):
    return service.create_rule(ctx, **body.model_dump())


@router.post("/reorder", response_model=list[RuleOut])
async def reorder_rules(
    body: RuleReorder,
    ctx: AuthContext = Depends(get_auth_context),
    service: AutomationRuleService = Depends(get_rule_service),
):
    return service.reorder(ctx, body.rule_ids)


@router.patch("/{rule_id}", response_model=RuleOut)
async def update_rule(
    rule_id: UUID,
    body: RuleUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    service: AutomationRuleService = Depends(get_rule_service),
):
    return service.update_rule(ctx, rule_id, **body.model_dump(exclude_unset=True))


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    service: AutomationRuleService = Depends(get_rule_service),
):
    service.delete_rule(ctx, rule_id)
    return Response(status_code=204)
