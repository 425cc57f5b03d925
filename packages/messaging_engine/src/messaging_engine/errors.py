"""
Messaging Engine Errors

Exception taxonomy for the engine. Every error carries a stable code and the
HTTP status the API maps it to.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID


class MessagingError(Exception):
    """Base class for engine errors surfaced to callers."""

    code = "MESSAGING_ERROR"
    http_status = 400

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InsufficientCredit(MessagingError):
    """Tenant balance is lower than the requested debit."""

    code = "INSUFFICIENT_CREDIT"
    http_status = 402

    def __init__(self, tenant_id: UUID, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient credit: {required} required, {available} available",
            {"tenant_id": str(tenant_id), "required": str(required), "available": str(available)},
        )
        self.tenant_id = tenant_id
        self.required = required
        self.available = available


class TenantSuspended(MessagingError):
    """Tenant is not ACTIVE and may not spend credit."""

    code = "TENANT_SUSPENDED"
    http_status = 403

    def __init__(self, tenant_id: UUID, status: str):
        super().__init__(
            f"License suspended: tenant status is {status}",
            {"tenant_id": str(tenant_id), "status": status},
        )
        self.tenant_id = tenant_id
        self.status = status


class TenantMismatch(MessagingError):
    """Caller tried to act on an entity owned by another tenant."""

    code = "TENANT_MISMATCH"
    http_status = 403

    def __init__(self, expected: UUID, actual: UUID):
        super().__init__("Resource belongs to another tenant")
        self.expected = expected
        self.actual = actual


class PermissionDenied(MessagingError):
    """Caller role does not allow the operation."""

    code = "PERMISSION_DENIED"
    http_status = 403


class SessionWindowClosed(MessagingError):
    """Free-form message attempted outside the customer service window."""

    code = "SESSION_WINDOW_CLOSED"
    http_status = 409

    def __init__(self, conversation_id: UUID):
        super().__init__(
            "Session window is closed: only template messages can be sent",
            {"conversation_id": str(conversation_id)},
        )
        self.conversation_id = conversation_id


class ChannelNotConfigured(MessagingError):
    """Tenant has no active channel binding for the conversation platform."""

    code = "CHANNEL_NOT_CONFIGURED"
    http_status = 409


class ProviderDispatchFailed(MessagingError):
    """Provider rejected or failed a send. Used internally, never surfaced to clients."""

    code = "PROVIDER_DISPATCH_FAILED"
    http_status = 502

    def __init__(self, message: str, error_code: str | None = None, retryable: bool = False):
        super().__init__(message)
        self.error_code = error_code
        self.retryable = retryable


class DuplicateWebhookEvent(MessagingError):
    """Inbound provider message id was already ingested."""

    code = "DUPLICATE_WEBHOOK_EVENT"
    http_status = 200

    def __init__(self, provider_message_id: str):
        super().__init__(f"Provider message {provider_message_id} already processed")
        self.provider_message_id = provider_message_id


class InvalidAutomationRule(MessagingError):
    """Automation rule failed validation."""

    code = "INVALID_AUTOMATION_RULE"
    http_status = 422


class InvalidAdjustment(MessagingError):
    """Balance adjustment request is malformed."""

    code = "INVALID_ADJUSTMENT"
    http_status = 422


class NotFound(MessagingError):
    code = "NOT_FOUND"
    http_status = 404


class TenantNotFound(NotFound):
    code = "TENANT_NOT_FOUND"


class ConversationNotFound(NotFound):
    code = "CONVERSATION_NOT_FOUND"


class AutomationRuleNotFound(NotFound):
    code = "AUTOMATION_RULE_NOT_FOUND"


class PaymentOrderNotFound(NotFound):
    code = "PAYMENT_ORDER_NOT_FOUND"


class UnsupportedMessageKind(MessagingError):
    """The conversation's platform cannot carry this kind of message."""

    code = "UNSUPPORTED_MESSAGE_KIND"
    http_status = 422


class InvalidMessageRequest(MessagingError):
    """Send request is missing the content its kind requires."""

    code = "INVALID_MESSAGE_REQUEST"
    http_status = 422
