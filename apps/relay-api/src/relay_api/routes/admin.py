"""
Platform admin endpoints.

Role checks happen in the engine; these routes only translate HTTP.
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from messaging_engine.auth import AuthContext
from messaging_engine.service.enforcement import CreditEnforcementService
from relay_api.deps import get_auth_context, get_enforcement
from relay_api.schemas import BalanceAdjustment, LedgerEntryOut, TenantOut, TenantStatusUpdate

router = APIRouter(prefix="/admin/tenants", tags=["admin"])


@router.get("/{tenant_id}/balance")
async def get_tenant_balance(
    tenant_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    enforcement: CreditEnforcementService = Depends(get_enforcement),
):
    return {"tenant_id": str(tenant_id), "balance": str(enforcement.get_balance(ctx, tenant_id))}


@router.post("/{tenant_id}/balance", response_model=LedgerEntryOut, status_code=201)
async def adjust_balance(
    tenant_id: UUID,
    body: BalanceAdjustment,
    ctx: AuthContext = Depends(get_auth_context),
    enforcement: CreditEnforcementService = Depends(get_enforcement),
):
    return await enforcement.adjust_balance(ctx, tenant_id, body.amount, body.reason)


@router.post("/{tenant_id}/status", response_model=TenantOut)
async def set_tenant_status(
    tenant_id: UUID,
    body: TenantStatusUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    enforcement: CreditEnforcementService = Depends(get_enforcement),
):
    return await enforcement.set_tenant_status(ctx, tenant_id, body.status)
