"""Credit pack purchases and payment confirmation."""

from messaging_engine.billing.packs import CREDIT_PACKS, CreditPack
from messaging_engine.billing.service import BillingService

__all__ = ["BillingService", "CREDIT_PACKS", "CreditPack"]
