"""
Messaging Engine Persistence

SQLAlchemy models and repository for engine tables.
The ledger tables are written only through messaging_engine.ledger.
"""

from messaging_engine.persistence.models import (
    AutomationRule,
    ChannelBinding,
    Conversation,
    LedgerEntry,
    LedgerEntryKind,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
    MessagingBase,
    PaymentOrder,
    PaymentOrderStatus,
    Platform,
    Tenant,
    TenantStatus,
    TriggerType,
)
from messaging_engine.persistence.repo import MessagingRepository

__all__ = [
    "MessagingBase",
    "Tenant",
    "TenantStatus",
    "LedgerEntry",
    "LedgerEntryKind",
    "ChannelBinding",
    "Conversation",
    "Message",
    "MessageDirection",
    "MessageKind",
    "MessageStatus",
    "AutomationRule",
    "TriggerType",
    "PaymentOrder",
    "PaymentOrderStatus",
    "Platform",
    "MessagingRepository",
]
