"""Tenant balance and ledger endpoints."""

from fastapi import APIRouter, Depends, Query

from messaging_engine.auth import AuthContext
from messaging_engine.service.enforcement import CreditEnforcementService
from relay_api.deps import get_auth_context, get_enforcement
from relay_api.schemas import LedgerEntryOut

router = APIRouter(tags=["balance"])


@router.get("/balance")
async def get_balance(
    ctx: AuthContext = Depends(get_auth_context),
    enforcement: CreditEnforcementService = Depends(get_enforcement),
):
    return {"tenant_id": str(ctx.tenant_id), "balance": str(enforcement.get_balance(ctx))}


@router.get("/ledger", response_model=list[LedgerEntryOut])
async def list_ledger_entries(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    enforcement: CreditEnforcementService = Depends(get_enforcement),
):
    return enforcement.list_ledger_entries(ctx, limit=limit, offset=offset)
