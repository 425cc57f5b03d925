"""
Credit pack billing.

Orders are created by tenants; the payment gateway confirms them through a
signed webhook (X-Gateway-Signature, hex HMAC-SHA256 of the raw body).
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext
from messaging_engine.billing import CREDIT_PACKS, BillingService
from messaging_engine.realtime.publisher import EventPublisher
from relay_api.deps import get_auth_context, get_publisher
from relay_api.schemas import GatewayNotification, OrderCreate, PaymentOrderOut
from relaycore.db import get_db
from relaycore.security import verify_payload_signature
from relaycore.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def get_billing_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> BillingService:
    return BillingService(db, publisher=publisher)


@router.get("/packs")
async def list_packs():
    return [pack.to_dict() for pack in CREDIT_PACKS.values()]


@router.post("/orders", response_model=PaymentOrderOut, status_code=201)
async def create_order(
    body: OrderCreate,
    ctx: AuthContext = Depends(get_auth_context),
    service: BillingService = Depends(get_billing_service),
):
    return service.create_order(ctx, body.pack_code)


@router.get("/orders/{order_id}", response_model=PaymentOrderOut)
async def get_order(
    order_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    service: BillingService = Depends(get_billing_service),
):
    return service.get_order(ctx, order_id)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    service: BillingService = Depends(get_billing_service),
):
    """Gateway payment notification. Safe to deliver more than once."""
    body = await request.body()

    secret = get_settings().PAYMENT_WEBHOOK_SECRET
    if not secret:
        logger.error("Payment webhook received but PAYMENT_WEBHOOK_SECRET is not set")
        raise HTTPException(status_code=503, detail="Payment webhook not configured")

    if not verify_payload_signature(body, request.headers.get("X-Gateway-Signature"), secret):
        logger.warning("Invalid payment webhook signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        notification = GatewayNotification.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Invalid payment notification: {e.error_count()} errors")
        raise HTTPException(status_code=422, detail="Invalid payment notification")

    order = await service.confirm_payment(
        notification.order_id,
        notification.payment_id,
        succeeded=notification.status.lower() == "paid",
    )
    return {"status": order.status, "order_id": str(order.id)}
