"""
Messaging Engine Database Models

Tables owned by the Messaging Engine.

Tables:
- tenants: Tenant accounts with their credit balance
- ledger_entries: Append-only credit ledger (the balance's source of truth)
- channel_bindings: Maps tenants to WhatsApp numbers / Messenger pages
- conversations: One thread per (tenant, platform, contact)
- messages: All inbound/outbound messages with delivery status
- automation_rules: Keyword auto-reply rules
- payment_orders: Credit pack purchases
"""

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from relaycore.timeutil import utcnow

MessagingBase = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(14, 2, asdecimal=True)


class TenantStatus(str, Enum):
    """Account status of a tenant. Only ACTIVE tenants can spend credit."""

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class LedgerEntryKind(str, Enum):
    """Reason a ledger entry was written."""

    PURCHASE = "PURCHASE"
    ADMIN_CREDIT = "ADMIN_CREDIT"
    ADMIN_DEBIT = "ADMIN_DEBIT"
    MESSAGE_CHARGE = "MESSAGE_CHARGE"
    REFUND = "REFUND"


class Platform(str, Enum):
    """Messaging platform of a conversation."""

    WHATSAPP = "whatsapp"
    MESSENGER = "messenger"


class MessageDirection(str, Enum):
    """Direction of a message."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageKind(str, Enum):
    """Billable kind of a message."""

    TEXT = "text"
    TEMPLATE = "template"
    MEDIA = "media"
    INTERACTIVE = "interactive"


class MessageStatus(str, Enum):
    """Delivery status of a message."""

    QUEUED = "QUEUED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


class TriggerType(str, Enum):
    """How an automation rule matches inbound text."""

    EXACT_MATCH = "EXACT_MATCH"
    KEYWORD_MATCH = "KEYWORD_MATCH"


class PaymentOrderStatus(str, Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    FAILED = "FAILED"


class TenantScopedMixin:
    """Common fields for tenant-owned rows."""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Tenant(MessagingBase):
    """
    A business account on the platform.

    The balance is a cached projection of the ledger. It is only ever
    changed by LedgerStore, in the same transaction that appends the
    matching LedgerEntry.
    """

    __tablename__ = "tenants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default=TenantStatus.ACTIVE.value)
    balance = Column(Money, nullable=False, default=0)
    plan = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_tenants_status", "status"),)


class LedgerEntry(MessagingBase, TenantScopedMixin):
    """
    One immutable credit movement.

    Negative amounts are debits, positive amounts are credits. Rows are
    never updated or deleted once written.
    """

    __tablename__ = "ledger_entries"

    amount = Column(Money, nullable=False)
    kind = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="")
    actor_id = Column(Uuid(as_uuid=True), nullable=True)
    message_id = Column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (
        Index("idx_ledger_entries_tenant_created", "tenant_id", "created_at"),
        Index("idx_ledger_entries_message", "message_id"),
    )


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise ValueError("ledger entries are append-only and cannot be updated")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise ValueError("ledger entries are append-only and cannot be deleted")


class ChannelBinding(MessagingBase, TenantScopedMixin):
    """
    Maps a tenant to a provider account.

    external_id is the WhatsApp phone_number_id or the Messenger page id and
    is used to route incoming webhooks to the right tenant.
    """

    __tablename__ = "channel_bindings"

    platform = Column(String(20), nullable=False, default=Platform.WHATSAPP.value)
    provider = Column(String(20), nullable=False, default="meta")  # meta, stub
    external_id = Column(String(100), nullable=False)
    display_identifier = Column(String(100), nullable=False, default="")
    access_token_encrypted = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    config = Column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_channel_bindings_platform_external"),
        Index("idx_channel_bindings_tenant_active", "tenant_id", "is_active"),
    )


class Conversation(MessagingBase, TenantScopedMixin):
    """
    A thread between a tenant and one contact on one platform.

    The session window is never stored; it is derived from last_inbound_at.
    """

    __tablename__ = "conversations"

    platform = Column(String(20), nullable=False)
    contact_id = Column(String(100), nullable=False)  # E.164 phone or platform user id
    contact_name = Column(String(255), nullable=True)
    assigned_agent_id = Column(Uuid(as_uuid=True), nullable=True)
    last_inbound_at = Column(DateTime(timezone=True), nullable=True)
    last_outbound_at = Column(DateTime(timezone=True), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "platform", "contact_id", name="uq_conversations_tenant_contact"),
        Index("idx_conversations_tenant_last_message", "tenant_id", "last_message_at"),
    )


class Message(MessagingBase, TenantScopedMixin):
    """
    A single inbound or outbound message.

    Provider message ids are used for webhook dedupe and status callbacks.
    Outbound messages link to the ledger entry that paid for them and, at
    most once, to the entry that refunded them.
    """

    __tablename__ = "messages"

    conversation_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    kind = Column(String(20), nullable=False, default=MessageKind.TEXT.value)
    body = Column(Text, nullable=True)
    media_url = Column(Text, nullable=True)
    template_name = Column(String(100), nullable=True)
    content_json = Column(JSONType, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=MessageStatus.QUEUED.value)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    cost = Column(Money, nullable=True)
    charge_entry_id = Column(Uuid(as_uuid=True), nullable=True)
    refund_entry_id = Column(Uuid(as_uuid=True), nullable=True)
    is_auto_reply = Column(Boolean, nullable=False, default=False)
    dispatch_ambiguous = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "provider_message_id", name="uq_messages_tenant_provider_id"),
        Index("idx_messages_tenant_conversation", "tenant_id", "conversation_id", "created_at"),
        Index("idx_messages_ambiguous", "dispatch_ambiguous", "status"),
    )


class AutomationRule(MessagingBase, TenantScopedMixin):
    """Keyword auto-reply rule. Lower position wins."""

    __tablename__ = "automation_rules"

    name = Column(String(255), nullable=False)
    trigger_type = Column(String(20), nullable=False)
    keywords = Column(JSONType, nullable=False, default=list)
    response_text = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_automation_rules_tenant_active", "tenant_id", "is_active", "position"),)


class PaymentOrder(MessagingBase, TenantScopedMixin):
    """A credit pack purchase awaiting or having received gateway confirmation."""

    __tablename__ = "payment_orders"

    pack_code = Column(String(50), nullable=False)
    credits = Column(Money, nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default=PaymentOrderStatus.CREATED.value)
    gateway_payment_id = Column(String(255), nullable=True, unique=True)
    ledger_entry_id = Column(Uuid(as_uuid=True), nullable=True)
    created_by = Column(Uuid(as_uuid=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
