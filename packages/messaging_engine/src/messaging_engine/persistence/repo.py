"""
Messaging Repository

Repository pattern for Messaging Engine database operations.
Provides CRUD operations and common queries. Balance mutations are NOT here:
they live in ledger.store so that every balance change has a ledger entry.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from messaging_engine.persistence.models import (
    AutomationRule,
    ChannelBinding,
    Conversation,
    LedgerEntry,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
    PaymentOrder,
    Platform,
    Tenant,
    TenantStatus,
)
from relaycore.timeutil import ensure_utc, utcnow


class MessagingRepository:
    """Repository for Messaging Engine database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Tenants
    # =========================================================================

    def get_tenant(self, tenant_id: UUID) -> Tenant | None:
        """Get tenant by ID."""
        return self.db.get(Tenant, tenant_id)

    def create_tenant(
        self,
        name: str,
        status: TenantStatus = TenantStatus.ACTIVE,
        plan: str | None = None,
        tenant_id: UUID | None = None,
    ) -> Tenant:
        """Create a tenant with a zero balance. Credit is added through the ledger."""
        tenant = Tenant(name=name, status=status.value, plan=plan, balance=0)
        if tenant_id:
            tenant.id = tenant_id
        self.db.add(tenant)
        return tenant

    def list_tenants(self, limit: int = 100) -> list[Tenant]:
        return self.db.query(Tenant).order_by(Tenant.created_at).limit(limit).all()

    # =========================================================================
    # Channel Bindings
    # =========================================================================

    def get_binding_by_external_id(self, platform: Platform, external_id: str) -> ChannelBinding | None:
        """Get active binding by WhatsApp phone_number_id or Messenger page id."""
        return (
            self.db.query(ChannelBinding)
            .filter(
                ChannelBinding.platform == platform.value,
                ChannelBinding.external_id == external_id,
                ChannelBinding.is_active == True,  # noqa: E712
            )
            .first()
        )

    def get_active_binding_for_tenant(self, tenant_id: UUID, platform: Platform) -> ChannelBinding | None:
        """Get the active binding for a tenant on a platform."""
        return (
            self.db.query(ChannelBinding)
            .filter(
                ChannelBinding.tenant_id == tenant_id,
                ChannelBinding.platform == platform.value,
                ChannelBinding.is_active == True,  # noqa: E712
            )
            .order_by(ChannelBinding.created_at.desc())
            .first()
        )

    def list_bindings(self, tenant_id: UUID | None = None, include_inactive: bool = False) -> list[ChannelBinding]:
        query = self.db.query(ChannelBinding)
        if tenant_id:
            query = query.filter(ChannelBinding.tenant_id == tenant_id)
        if not include_inactive:
            query = query.filter(ChannelBinding.is_active == True)  # noqa: E712
        return query.order_by(ChannelBinding.created_at.desc()).all()

    def create_binding(
        self,
        tenant_id: UUID,
        platform: Platform,
        external_id: str,
        display_identifier: str = "",
        provider: str = "meta",
        access_token_encrypted: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> ChannelBinding:
        """Create a new channel binding."""
        binding = ChannelBinding(
            tenant_id=tenant_id,
            platform=platform.value,
            provider=provider,
            external_id=external_id,
            display_identifier=display_identifier,
            access_token_encrypted=access_token_encrypted,
            config=config or {},
        )
        self.db.add(binding)
        return binding

    # =========================================================================
    # Conversations
    # =========================================================================

    def get_conversation(self, tenant_id: UUID, platform: Platform, contact_id: str) -> Conversation | None:
        """Get conversation by tenant, platform and contact."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.tenant_id == tenant_id,
                Conversation.platform == platform.value,
                Conversation.contact_id == contact_id,
            )
            .first()
        )

    def get_conversation_by_id(self, conversation_id: UUID) -> Conversation | None:
        """Get conversation by ID."""
        return self.db.get(Conversation, conversation_id)

    def get_or_create_conversation(
        self,
        tenant_id: UUID,
        platform: Platform,
        contact_id: str,
        contact_name: str | None = None,
    ) -> tuple[Conversation, bool]:
        """
        Get existing conversation or create a new one.

        Returns:
            Tuple of (conversation, created) where created is True if new.
        """
        conversation = self.get_conversation(tenant_id, platform, contact_id)
        if conversation:
            if contact_name and not conversation.contact_name:
                conversation.contact_name = contact_name
            return conversation, False

        conversation = Conversation(
            tenant_id=tenant_id,
            platform=platform.value,
            contact_id=contact_id,
            contact_name=contact_name,
        )
        self.db.add(conversation)
        self.db.flush()
        return conversation, True

    def list_conversations(
        self,
        tenant_id: UUID,
        assigned_agent_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        """List conversations for a tenant, most recent activity first."""
        query = self.db.query(Conversation).filter(Conversation.tenant_id == tenant_id)

        if assigned_agent_id:
            query = query.filter(Conversation.assigned_agent_id == assigned_agent_id)

        return (
            query.order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def touch_conversation(
        self,
        conversation: Conversation,
        direction: MessageDirection,
        timestamp: datetime | None = None,
    ) -> None:
        """
        Update conversation timestamps after a message.

        last_inbound_at only moves forward, so late deliveries of older
        inbound messages never shrink the session window.
        """
        now = ensure_utc(timestamp) or utcnow()
        last_message_at = ensure_utc(conversation.last_message_at)
        if last_message_at is None or now > last_message_at:
            conversation.last_message_at = now

        if direction == MessageDirection.INBOUND:
            last_inbound = ensure_utc(conversation.last_inbound_at)
            if last_inbound is None or now > last_inbound:
                conversation.last_inbound_at = now
        else:
            conversation.last_outbound_at = now

    # =========================================================================
    # Messages
    # =========================================================================

    def get_message(self, message_id: UUID) -> Message | None:
        return self.db.get(Message, message_id)

    def get_message_by_provider_id(self, tenant_id: UUID, provider_message_id: str) -> Message | None:
        """Get message by provider message ID within a tenant."""
        return (
            self.db.query(Message)
            .filter(
                Message.tenant_id == tenant_id,
                Message.provider_message_id == provider_message_id,
            )
            .first()
        )

    def is_message_processed(self, tenant_id: UUID, provider_message_id: str) -> bool:
        """Check if an inbound provider message has already been stored (idempotency)."""
        stmt = (
            select(Message.id)
            .where(
                Message.tenant_id == tenant_id,
                Message.provider_message_id == provider_message_id,
            )
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def create_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        direction: MessageDirection,
        kind: MessageKind,
        body: str | None = None,
        media_url: str | None = None,
        template_name: str | None = None,
        content_json: dict[str, Any] | None = None,
        provider_message_id: str | None = None,
        status: MessageStatus = MessageStatus.QUEUED,
        is_auto_reply: bool = False,
        created_at: datetime | None = None,
    ) -> Message:
        """Create a new message record."""
        message = Message(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            direction=direction.value,
            kind=kind.value,
            body=body,
            media_url=media_url,
            template_name=template_name,
            content_json=content_json or {},
            provider_message_id=provider_message_id,
            status=status.value,
            status_updated_at=utcnow(),
            is_auto_reply=is_auto_reply,
        )
        if created_at:
            message.created_at = created_at
        self.db.add(message)
        self.db.flush()
        return message

    def list_messages(self, tenant_id: UUID, conversation_id: UUID, limit: int = 50) -> list[Message]:
        """Messages of a conversation in chronological order (last `limit`)."""
        rows = (
            self.db.query(Message)
            .filter(Message.tenant_id == tenant_id, Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def list_ambiguous_dispatches(self, older_than: datetime) -> list[Message]:
        """Held outbound messages whose dispatch outcome is still unknown."""
        return (
            self.db.query(Message)
            .filter(
                Message.dispatch_ambiguous == True,  # noqa: E712
                Message.status == MessageStatus.QUEUED.value,
                Message.created_at <= older_than,
            )
            .order_by(Message.created_at)
            .all()
        )

    # =========================================================================
    # Ledger (read side)
    # =========================================================================

    def list_ledger_entries(
        self,
        tenant_id: UUID,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        """Ledger entries for a tenant, newest first."""
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.tenant_id == tenant_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Automation Rules
    # =========================================================================

    def list_rules(self, tenant_id: UUID, active_only: bool = False) -> list[AutomationRule]:
        """Rules in priority order."""
        query = self.db.query(AutomationRule).filter(AutomationRule.tenant_id == tenant_id)
        if active_only:
            query = query.filter(AutomationRule.is_active == True)  # noqa: E712
        return query.order_by(AutomationRule.position, AutomationRule.created_at).all()

    def get_rule(self, rule_id: UUID) -> AutomationRule | None:
        return self.db.get(AutomationRule, rule_id)

    def next_rule_position(self, tenant_id: UUID) -> int:
        rules = self.list_rules(tenant_id)
        return (max(rule.position for rule in rules) + 1) if rules else 0

    # =========================================================================
    # Payment Orders
    # =========================================================================

    def get_payment_order(self, order_id: UUID) -> PaymentOrder | None:
        return self.db.get(PaymentOrder, order_id)

    def get_payment_order_for_update(self, order_id: UUID) -> PaymentOrder | None:
        """Load an order with a row lock (no-op on backends without FOR UPDATE)."""
        stmt = select(PaymentOrder).where(PaymentOrder.id == order_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_payment_orders(self, tenant_id: UUID, limit: int = 50) -> list[PaymentOrder]:
        return (
            self.db.query(PaymentOrder)
            .filter(PaymentOrder.tenant_id == tenant_id)
            .order_by(PaymentOrder.created_at.desc())
            .limit(limit)
            .all()
        )
