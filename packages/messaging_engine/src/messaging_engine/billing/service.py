"""
Billing Service

Credit pack purchases:

1. create_order: a CREATED PaymentOrder for a pack
2. The tenant pays through the gateway
3. confirm_payment (gateway webhook): the order becomes PAID and the pack's
   credits land in the ledger as a PURCHASE entry

Confirmation is idempotent per order: a webhook delivered twice credits once.
"""

import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext, ensure_tenant
from messaging_engine.billing.packs import CREDIT_PACKS
from messaging_engine.contracts.event_types import RealtimeEventType
from messaging_engine.errors import InvalidAdjustment, PaymentOrderNotFound
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import LedgerEntryKind, PaymentOrder, PaymentOrderStatus
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.realtime.events import RealtimeEvent
from messaging_engine.realtime.publisher import EventPublisher, NullEventPublisher
from relaycore.timeutil import utcnow

logger = logging.getLogger(__name__)


class BillingService:
    def __init__(self, db: Session, publisher: EventPublisher | None = None):
        self.db = db
        self.repo = MessagingRepository(db)
        self.ledger = LedgerStore(db)
        self.publisher = publisher or NullEventPublisher()

    def create_order(self, ctx: AuthContext, pack_code: str) -> PaymentOrder:
        """
        Raises:
            InvalidAdjustment: unknown pack
        """
        pack = CREDIT_PACKS.get(pack_code)
        if pack is None:
            raise InvalidAdjustment(f"Unknown credit pack: {pack_code}", {"allowed": sorted(CREDIT_PACKS)})

        order = PaymentOrder(
            tenant_id=ctx.tenant_id,
            pack_code=pack.code,
            credits=pack.credits,
            amount=pack.price,
            currency=pack.currency,
            status=PaymentOrderStatus.CREATED.value,
            created_by=ctx.user_id,
        )
        self.db.add(order)
        self.db.commit()

        logger.info(
            f"Payment order created for {pack.name}",
            extra={"tenant_id": str(ctx.tenant_id), "order_id": str(order.id)},
        )
        return order

    def get_order(self, ctx: AuthContext, order_id: UUID) -> PaymentOrder:
        order = self.repo.get_payment_order(order_id)
        if order is None:
            raise PaymentOrderNotFound(f"Payment order {order_id} not found")
        ensure_tenant(ctx, order.tenant_id)
        return order

    async def confirm_payment(self, order_id: UUID, gateway_payment_id: str, succeeded: bool = True) -> PaymentOrder:
        """
        Record the gateway's verdict for an order.

        A PAID order is never credited again, whatever arrives later.
        """
        order = self.repo.get_payment_order_for_update(order_id)
        if order is None:
            raise PaymentOrderNotFound(f"Payment order {order_id} not found")

        if order.status == PaymentOrderStatus.PAID.value:
            logger.info("Payment already confirmed", extra={"order_id": str(order_id)})
            self.db.rollback()
            return order

        if not succeeded:
            order.status = PaymentOrderStatus.FAILED.value
            order.gateway_payment_id = gateway_payment_id or order.gateway_payment_id
            self.db.commit()
            logger.warning("Payment failed at gateway", extra={"order_id": str(order_id)})
            return order

        try:
            # Claim the order so a concurrent confirmation writes nothing
            claimed = self.db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.id == order.id, PaymentOrder.status != PaymentOrderStatus.PAID.value)
                .values(status=PaymentOrderStatus.PAID.value)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                self.db.rollback()
                self.db.refresh(order)
                return order

            entry = self.ledger.adjust_balance(
                order.tenant_id,
                order.credits,
                actor_id=order.created_by or order.tenant_id,
                reason=f"Bought {order.credits.normalize():f} Credits (Pack: {order.pack_code})",
                kind=LedgerEntryKind.PURCHASE,
            )
            order.status = PaymentOrderStatus.PAID.value
            order.gateway_payment_id = gateway_payment_id
            order.ledger_entry_id = entry.id
            order.paid_at = utcnow()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Payment confirmed",
            extra={"tenant_id": str(order.tenant_id), "order_id": str(order.id), "credits": str(order.credits)},
        )
        await self.publisher.publish(
            RealtimeEvent(
                type=RealtimeEventType.BALANCE_CHANGED,
                tenant_id=order.tenant_id,
                data={"balance": str(self.ledger.current_balance(order.tenant_id)), "reason": "PURCHASE"},
            )
        )
        return order
