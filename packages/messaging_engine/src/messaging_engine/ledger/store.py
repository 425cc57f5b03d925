"""
Ledger Store

The only writer of tenant balances. Every balance change is a single
conditional UPDATE on the tenant row plus an appended LedgerEntry, flushed
in the caller's transaction. Callers commit.

A debit is check-and-subtract in one statement:

    UPDATE tenants SET balance = balance - :cost
    WHERE id = :id AND status = 'ACTIVE' AND balance >= :cost

so concurrent debits serialize on the tenant row and the balance can never
go negative, whatever the interleaving.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from messaging_engine.errors import (
    InsufficientCredit,
    InvalidAdjustment,
    TenantNotFound,
    TenantSuspended,
)
from messaging_engine.persistence.models import LedgerEntry, LedgerEntryKind, Tenant, TenantStatus
from relaycore.timeutil import utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _to_amount(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


@dataclass
class LedgerAudit:
    """Cached balance next to the ledger sum for one tenant."""

    tenant_id: UUID
    balance: Decimal
    ledger_sum: Decimal
    entry_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


class LedgerStore:
    """
    Append-only credit ledger.

    Responsibilities:
    - Atomic conditional debits (message charges, admin debits)
    - Credits (purchases, admin credits, refunds)
    - Balance/ledger reconciliation
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Debits
    # =========================================================================

    def charge_for_send(
        self,
        tenant_id: UUID,
        cost: Decimal,
        description: str,
        message_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> LedgerEntry:
        """
        Debit the cost of one outbound message.

        Raises:
            TenantNotFound: unknown tenant
            TenantSuspended: tenant status is not ACTIVE
            InsufficientCredit: balance lower than cost
        """
        cost = _to_amount(cost)
        if cost <= 0:
            raise InvalidAdjustment("Message cost must be positive")

        self._conditional_debit(tenant_id, cost, require_active=True)
        return self._append(
            tenant_id,
            -cost,
            LedgerEntryKind.MESSAGE_CHARGE,
            description,
            actor_id=actor_id,
            message_id=message_id,
        )

    def _conditional_debit(self, tenant_id: UUID, amount: Decimal, require_active: bool) -> None:
        conditions = [Tenant.id == tenant_id, Tenant.balance >= amount]
        if require_active:
            conditions.append(Tenant.status == TenantStatus.ACTIVE.value)

        result = self.db.execute(
            update(Tenant)
            .where(*conditions)
            .values(balance=Tenant.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            return

        tenant = self.db.get(Tenant, tenant_id, populate_existing=True)
        if tenant is None:
            raise TenantNotFound(f"Tenant {tenant_id} not found")
        if require_active and tenant.status != TenantStatus.ACTIVE.value:
            raise TenantSuspended(tenant_id, tenant.status)

        logger.info(
            "Debit rejected: insufficient credit",
            extra={"tenant_id": str(tenant_id), "required": str(amount), "available": str(tenant.balance)},
        )
        raise InsufficientCredit(tenant_id, amount, _to_amount(tenant.balance))

    # =========================================================================
    # Credits
    # =========================================================================

    def refund(
        self,
        tenant_id: UUID,
        amount: Decimal,
        description: str,
        message_id: UUID | None = None,
        entry_id: UUID | None = None,
    ) -> LedgerEntry:
        """Credit back a previous charge."""
        amount = _to_amount(amount)
        if amount <= 0:
            raise InvalidAdjustment("Refund amount must be positive")

        self._credit(tenant_id, amount)
        return self._append(
            tenant_id, amount, LedgerEntryKind.REFUND, description, message_id=message_id, entry_id=entry_id
        )

    def _credit(self, tenant_id: UUID, amount: Decimal) -> None:
        result = self.db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(balance=Tenant.balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TenantNotFound(f"Tenant {tenant_id} not found")

    # =========================================================================
    # Adjustments
    # =========================================================================

    def adjust_balance(
        self,
        tenant_id: UUID,
        amount: Decimal,
        actor_id: UUID,
        reason: str,
        kind: LedgerEntryKind | None = None,
    ) -> LedgerEntry:
        """
        Apply a signed manual or purchase adjustment.

        Credits are never sufficiency-checked. Debits use the same conditional
        update as message charges and fail with InsufficientCredit rather
        than driving the balance negative. Suspension does not block
        adjustments.
        """
        if actor_id is None:
            raise InvalidAdjustment("Balance adjustments must record an actor")

        amount = _to_amount(amount)
        if amount == 0:
            raise InvalidAdjustment("Adjustment amount must be non-zero")

        if kind is None:
            kind = LedgerEntryKind.ADMIN_CREDIT if amount > 0 else LedgerEntryKind.ADMIN_DEBIT

        if amount > 0:
            self._credit(tenant_id, amount)
        else:
            self._conditional_debit(tenant_id, -amount, require_active=False)

        description = reason.strip() if reason and reason.strip() else kind.value.replace("_", " ").title()
        entry = self._append(tenant_id, amount, kind, description, actor_id=actor_id)

        logger.info(
            f"Balance adjusted by {amount}",
            extra={"tenant_id": str(tenant_id), "kind": kind.value, "actor_id": str(actor_id)},
        )
        return entry

    # =========================================================================
    # Reads
    # =========================================================================

    def current_balance(self, tenant_id: UUID) -> Decimal:
        """Balance as stored, re-read from the database."""
        tenant = self.db.get(Tenant, tenant_id, populate_existing=True)
        if tenant is None:
            raise TenantNotFound(f"Tenant {tenant_id} not found")
        return _to_amount(tenant.balance)

    def reconcile(self, tenant_id: UUID) -> LedgerAudit:
        """Compare the cached balance with the sum of ledger entries."""
        balance = self.current_balance(tenant_id)
        total, count = self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0), func.count(LedgerEntry.id)).where(
                LedgerEntry.tenant_id == tenant_id
            )
        ).one()
        return LedgerAudit(
            tenant_id=tenant_id,
            balance=balance,
            ledger_sum=_to_amount(total),
            entry_count=count,
        )

    def _append(
        self,
        tenant_id: UUID,
        amount: Decimal,
        kind: LedgerEntryKind,
        description: str,
        actor_id: UUID | None = None,
        message_id: UUID | None = None,
        entry_id: UUID | None = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            id=entry_id or uuid4(),
            tenant_id=tenant_id,
            amount=amount,
            kind=kind.value,
            description=description,
            actor_id=actor_id,
            message_id=message_id,
            created_at=utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry
