"""
API Schemas

Request bodies and response models for the tenant API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from messaging_engine.persistence.models import MessageKind, TenantStatus, TriggerType
from messaging_engine.service.enforcement import SendRequest


class SendMessageRequest(BaseModel):
    kind: MessageKind = MessageKind.TEXT
    text: str | None = None
    template_name: str | None = None
    language_code: str = "en_US"
    components: list[dict[str, Any]] | None = None
    media_url: str | None = None
    media_type: str = "image"
    caption: str | None = None
    buttons: list[dict[str, str]] | None = None
    reply_to: str | None = None

    def to_send_request(self) -> SendRequest:
        return SendRequest(**self.model_dump())


class AssignRequest(BaseModel):
    agent_id: UUID | None = Field(None, description="Agent to assign, null to unassign")


class RuleCreate(BaseModel):
    name: str
    trigger_type: TriggerType
    keywords: list[str]
    response_text: str
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: str | None = None
    trigger_type: TriggerType | None = None
    keywords: list[str] | None = None
    response_text: str | None = None
    is_active: bool | None = None


class RuleReorder(BaseModel):
    rule_ids: list[UUID]


class BalanceAdjustment(BaseModel):
    amount: Decimal = Field(..., description="Positive to credit, negative to debit")
    reason: str = ""


class TenantStatusUpdate(BaseModel):
    status: TenantStatus


class OrderCreate(BaseModel):
    pack_code: str


class GatewayNotification(BaseModel):
    """Body the payment gateway posts to /billing/webhook."""

    order_id: UUID
    payment_id: str
    status: str = Field(..., description="paid or failed")


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    platform: str
    contact_id: str
    contact_name: str | None = None
    assigned_agent_id: UUID | None = None
    last_inbound_at: datetime | None = None
    last_outbound_at: datetime | None = None
    last_message_at: datetime | None = None
    created_at: datetime


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    direction: str
    kind: str
    body: str | None = None
    media_url: str | None = None
    template_name: str | None = None
    status: str
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    cost: Decimal | None = None
    is_auto_reply: bool
    created_at: datetime


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    kind: str
    description: str
    actor_id: UUID | None = None
    message_id: UUID | None = None
    created_at: datetime


class RuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    trigger_type: str
    keywords: list[str]
    response_text: str
    is_active: bool
    position: int


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    status: str
    balance: Decimal
    plan: str | None = None


class PaymentOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    pack_code: str
    credits: Decimal
    amount: Decimal
    currency: str
    status: str
    created_at: datetime
    paid_at: datetime | None = None
