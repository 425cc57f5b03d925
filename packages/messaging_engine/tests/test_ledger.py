"""
Tests for the credit ledger.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from messaging_engine.errors import InsufficientCredit, InvalidAdjustment, TenantNotFound, TenantSuspended
from messaging_engine.ledger.pricing import MESSAGE_COSTS, cost_for
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import LedgerEntry, LedgerEntryKind, MessageKind, Tenant, TenantStatus
from messaging_engine.persistence.repo import MessagingRepository


def entry_count(db, tenant_id) -> int:
    return db.query(LedgerEntry).filter(LedgerEntry.tenant_id == tenant_id).count()


class TestChargeForSend:
    """Conditional debits for outbound messages."""

    @pytest.fixture
    def ledger(self, db):
        return LedgerStore(db)

    def test_debit_reduces_balance_and_appends_entry(self, db, ledger, tenant):
        """A successful debit writes one negative MESSAGE_CHARGE entry."""
        entry = ledger.charge_for_send(tenant.id, Decimal("1.50"), "Template message")
        db.commit()

        assert entry.amount == Decimal("-1.50")
        assert entry.kind == LedgerEntryKind.MESSAGE_CHARGE.value
        assert ledger.current_balance(tenant.id) == Decimal("8.50")
        assert ledger.reconcile(tenant.id).consistent

    def test_cost_above_balance_writes_nothing(self, db, ledger, make_tenant):
        """Insufficient credit leaves balance and ledger untouched."""
        tenant = make_tenant(balance="0.50")
        before = entry_count(db, tenant.id)

        with pytest.raises(InsufficientCredit) as exc_info:
            ledger.charge_for_send(tenant.id, Decimal("1.00"), "Text message")
        db.rollback()

        assert exc_info.value.required == Decimal("1.00")
        assert exc_info.value.available == Decimal("0.50")
        assert entry_count(db, tenant.id) == before
        assert ledger.current_balance(tenant.id) == Decimal("0.50")

    def test_exact_balance_can_be_spent(self, db, ledger, make_tenant):
        """Spending the whole balance leaves exactly zero, then the next debit fails."""
        tenant = make_tenant(balance="1.00")

        ledger.charge_for_send(tenant.id, Decimal("1.00"), "Text message")
        db.commit()
        assert ledger.current_balance(tenant.id) == Decimal("0.00")

        with pytest.raises(InsufficientCredit):
            ledger.charge_for_send(tenant.id, Decimal("1.00"), "Text message")
        db.rollback()
        assert ledger.current_balance(tenant.id) == Decimal("0.00")

    def test_suspended_tenant_cannot_spend(self, db, ledger, tenant):
        """Non-ACTIVE tenants get TenantSuspended even with enough credit."""
        db.get(Tenant, tenant.id).status = TenantStatus.SUSPENDED.value
        db.commit()

        with pytest.raises(TenantSuspended) as exc_info:
            ledger.charge_for_send(tenant.id, Decimal("1.00"), "Text message")
        db.rollback()

        assert exc_info.value.status == TenantStatus.SUSPENDED.value
        assert ledger.current_balance(tenant.id) == Decimal("10.00")

    def test_unknown_tenant(self, db, ledger):
        """Debiting a tenant that does not exist raises TenantNotFound."""
        with pytest.raises(TenantNotFound):
            ledger.charge_for_send(uuid4(), Decimal("1.00"), "Text message")

    def test_non_positive_cost_rejected(self, ledger, tenant):
        """Zero-cost charges are a programming error."""
        with pytest.raises(InvalidAdjustment):
            ledger.charge_for_send(tenant.id, Decimal("0"), "Free")


class TestAdjustments:
    """Manual and purchase adjustments."""

    @pytest.fixture
    def ledger(self, db):
        return LedgerStore(db)

    def test_credit_defaults_to_admin_credit(self, db, ledger, tenant, admin_id):
        """Positive adjustments without a kind are ADMIN_CREDIT."""
        entry = ledger.adjust_balance(tenant.id, Decimal("5"), admin_id, "Goodwill")
        db.commit()

        assert entry.kind == LedgerEntryKind.ADMIN_CREDIT.value
        assert entry.actor_id == admin_id
        assert entry.description == "Goodwill"
        assert ledger.current_balance(tenant.id) == Decimal("15.00")

    def test_debit_beyond_balance_rejected(self, db, ledger, tenant, admin_id):
        """Admin debits never drive the balance negative."""
        with pytest.raises(InsufficientCredit):
            ledger.adjust_balance(tenant.id, Decimal("-10.01"), admin_id, "Chargeback")
        db.rollback()

        assert ledger.current_balance(tenant.id) == Decimal("10.00")

    def test_debit_on_suspended_tenant_allowed(self, db, ledger, tenant, admin_id):
        """Suspension blocks sends, not admin corrections."""
        db.get(Tenant, tenant.id).status = TenantStatus.SUSPENDED.value
        db.commit()

        entry = ledger.adjust_balance(tenant.id, Decimal("-4"), admin_id, "")
        db.commit()

        assert entry.kind == LedgerEntryKind.ADMIN_DEBIT.value
        assert entry.description == "Admin Debit"
        assert ledger.current_balance(tenant.id) == Decimal("6.00")

    def test_zero_amount_rejected(self, ledger, tenant, admin_id):
        with pytest.raises(InvalidAdjustment):
            ledger.adjust_balance(tenant.id, Decimal("0"), admin_id, "Nothing")

    def test_actor_required(self, ledger, tenant):
        with pytest.raises(InvalidAdjustment):
            ledger.adjust_balance(tenant.id, Decimal("1"), None, "Anonymous")

    def test_refund_appends_refund_entry(self, db, ledger, tenant):
        """Refunds credit back and are linked to the message."""
        message_id = uuid4()
        ledger.charge_for_send(tenant.id, Decimal("2"), "Media message", message_id=message_id)
        entry = ledger.refund(tenant.id, Decimal("2"), "Refund", message_id=message_id)
        db.commit()

        assert entry.kind == LedgerEntryKind.REFUND.value
        assert entry.message_id == message_id
        assert ledger.current_balance(tenant.id) == Decimal("10.00")


class TestAppendOnly:
    """Ledger entries cannot be changed once written."""

    def test_update_rejected(self, db, tenant):
        entry = db.query(LedgerEntry).filter(LedgerEntry.tenant_id == tenant.id).first()
        entry.description = "rewritten"

        with pytest.raises(ValueError, match="append-only"):
            db.flush()
        db.rollback()

    def test_delete_rejected(self, db, tenant):
        entry = db.query(LedgerEntry).filter(LedgerEntry.tenant_id == tenant.id).first()
        db.delete(entry)

        with pytest.raises(ValueError, match="append-only"):
            db.flush()
        db.rollback()


class TestReconcile:
    """balance == sum(ledger entries)."""

    def test_balance_matches_ledger_after_mixed_activity(self, db, tenant, admin_id):
        ledger = LedgerStore(db)
        ledger.charge_for_send(tenant.id, Decimal("1"), "Text")
        ledger.charge_for_send(tenant.id, Decimal("2"), "Media")
        ledger.refund(tenant.id, Decimal("2"), "Refund")
        ledger.adjust_balance(tenant.id, Decimal("-3.25"), admin_id, "Correction")
        db.commit()

        audit = ledger.reconcile(tenant.id)

        assert audit.consistent
        assert audit.balance == Decimal("5.75")
        assert audit.entry_count == 5

    def test_ledger_listing_is_newest_first(self, db, tenant):
        LedgerStore(db).charge_for_send(tenant.id, Decimal("1"), "Text")
        db.commit()

        entries = MessagingRepository(db).list_ledger_entries(tenant.id)

        assert [e.kind for e in entries] == [LedgerEntryKind.MESSAGE_CHARGE.value, LedgerEntryKind.ADMIN_CREDIT.value]


class TestPricing:
    def test_every_kind_has_a_cost(self):
        assert set(MESSAGE_COSTS) == set(MessageKind)

    def test_text_costs_one_credit(self):
        assert cost_for("text") == Decimal("1.00")
