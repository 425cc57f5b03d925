"""
Credit Enforcement Service

Every outbound send goes through CreditEnforcementService.send_message:

1. Tenant scope, conversation, channel and session window checks (nothing written)
2. Charge and QUEUED message, committed together
3. Provider dispatch, bounded by a timeout and shielded from caller cancellation
4. SENT on success, REFUND + FAILED on a definite failure
5. Timeouts handled per DispatchTimeoutPolicy

A rejected send (closed window, no credit, suspended tenant) writes nothing.
A provider failure is reported in the SendResult, never raised.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from messaging_engine.auth import (
    BALANCE_ADMIN_ROLES,
    STATUS_ADMIN_ROLES,
    AuthContext,
    UserRole,
    ensure_role,
    ensure_tenant,
)
from messaging_engine.contracts.event_types import RealtimeEventType
from messaging_engine.errors import (
    ConversationNotFound,
    InvalidMessageRequest,
    SessionWindowClosed,
    TenantNotFound,
    UnsupportedMessageKind,
)
from messaging_engine.ledger.pricing import cost_for
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import (
    ChannelBinding,
    Conversation,
    LedgerEntry,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
    Tenant,
    TenantStatus,
)
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.providers import get_provider
from messaging_engine.providers.base import ChannelCredentials, MessagingProvider, ProviderResponse
from messaging_engine.realtime.events import RealtimeEvent, message_data
from messaging_engine.realtime.publisher import EventPublisher, NullEventPublisher
from messaging_engine.routing.message_state import PROVIDER_STATUS_MAP, apply_status
from messaging_engine.routing.session import SessionTracker
from messaging_engine.routing.tenant_resolver import TenantResolver
from relaycore.db import get_sessionmaker
from relaycore.settings import get_settings
from relaycore.timeutil import utcnow

logger = logging.getLogger(__name__)

TIMEOUT_ERROR_CODE = "DISPATCH_TIMEOUT"

# Late settlements of held dispatches; referenced here until they finish
_pending_settlements: set[asyncio.Task] = set()


class DispatchTimeoutPolicy(str, Enum):
    """
    What to do when the provider does not answer in time.

    REFUND: refund the charge and mark the message FAILED.
    HOLD: keep the message QUEUED with dispatch_ambiguous set; the provider
    call keeps running and settles it when it returns, and
    expire_ambiguous_dispatches refunds whatever is still unresolved.
    """

    REFUND = "refund"
    HOLD = "hold"


@dataclass
class SendRequest:
    """What to send. Which fields are required depends on kind."""

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
    is_auto_reply: bool = False

    def validate(self) -> None:
        """
        Raises:
            InvalidMessageRequest: content required by the kind is missing
        """
        try:
            kind = MessageKind(self.kind)
        except ValueError:
            raise InvalidMessageRequest(f"Unknown message kind: {self.kind}")

        if kind in (MessageKind.TEXT, MessageKind.INTERACTIVE) and not (self.text and self.text.strip()):
            raise InvalidMessageRequest(f"{kind.value} messages need non-blank text")
        if kind == MessageKind.TEMPLATE and not self.template_name:
            raise InvalidMessageRequest("template messages need a template_name")
        if kind == MessageKind.MEDIA and not self.media_url:
            raise InvalidMessageRequest("media messages need a media_url")
        if kind == MessageKind.INTERACTIVE and not self.buttons:
            raise InvalidMessageRequest("interactive messages need at least one button")

    @property
    def body(self) -> str | None:
        kind = MessageKind(self.kind)
        if kind == MessageKind.MEDIA:
            return self.caption
        if kind == MessageKind.TEMPLATE:
            return None
        return self.text

    def content_json(self) -> dict[str, Any]:
        kind = MessageKind(self.kind)
        content: dict[str, Any] = {}
        if kind == MessageKind.TEMPLATE:
            content["language_code"] = self.language_code
            if self.components:
                content["components"] = self.components
        elif kind == MessageKind.MEDIA:
            content["media_type"] = self.media_type
        elif kind == MessageKind.INTERACTIVE:
            content["buttons"] = self.buttons
        if self.reply_to:
            content["reply_to"] = self.reply_to
        return content


@dataclass
class SendResult:
    """Outcome of one send. A FAILED message here is a handled failure, not an error."""

    message: Message
    charged: Decimal
    ambiguous: bool = False

    @property
    def status(self) -> MessageStatus:
        return MessageStatus(self.message.status)

    @property
    def refunded(self) -> bool:
        return self.message.refund_entry_id is not None

    @property
    def success(self) -> bool:
        return self.status not in (MessageStatus.QUEUED, MessageStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": str(self.message.id),
            "status": self.status.value,
            "provider_message_id": self.message.provider_message_id,
            "charged": str(self.charged),
            "refunded": self.refunded,
            "ambiguous": self.ambiguous,
            "error_code": self.message.error_code,
            "error_message": self.message.error_message,
        }


@functools.lru_cache(maxsize=None)
def _shared_provider(provider: str, platform: str) -> MessagingProvider:
    return get_provider(provider, platform)


def default_provider_factory(binding: ChannelBinding) -> MessagingProvider:
    """One long-lived provider (and HTTP client) per provider kind and platform."""
    return _shared_provider(binding.provider, binding.platform)


def _failed_response(exc: Exception) -> ProviderResponse:
    return ProviderResponse(
        success=False,
        error_code=getattr(exc, "code", None) or "DISPATCH_ERROR",
        error_message=str(exc) or exc.__class__.__name__,
        retryable=getattr(exc, "retryable", False),
    )


class CreditEnforcementService:
    """
    Charge-then-send-then-compensate for outbound messages, plus the
    admin balance and status operations.

    Methods commit their own transactions.
    """

    def __init__(
        self,
        db: Session,
        publisher: EventPublisher | None = None,
        tracker: SessionTracker | None = None,
        provider_factory: Callable[[ChannelBinding], MessagingProvider] | None = None,
        encryption_key: str | None = None,
        dispatch_timeout: float | None = None,
        timeout_policy: DispatchTimeoutPolicy | str | None = None,
        session_factory: Callable[[], Session] | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.repo = MessagingRepository(db)
        self.ledger = LedgerStore(db)
        self.resolver = TenantResolver(db, encryption_key)
        self.publisher = publisher or NullEventPublisher()
        self.tracker = tracker or SessionTracker()
        self.provider_factory = provider_factory or default_provider_factory
        self.dispatch_timeout = dispatch_timeout if dispatch_timeout is not None else settings.DISPATCH_TIMEOUT_SECONDS
        self.timeout_policy = DispatchTimeoutPolicy(timeout_policy or settings.DISPATCH_TIMEOUT_POLICY)
        self.ambiguous_hold = timedelta(minutes=settings.AMBIGUOUS_HOLD_MINUTES)
        self.session_factory = session_factory

    def _with_session(self, db: Session) -> "CreditEnforcementService":
        return CreditEnforcementService(
            db,
            publisher=self.publisher,
            tracker=self.tracker,
            provider_factory=self.provider_factory,
            encryption_key=self.resolver.encryption_key,
            dispatch_timeout=self.dispatch_timeout,
            timeout_policy=self.timeout_policy,
            session_factory=self.session_factory,
        )

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_message(self, ctx: AuthContext, conversation_id: UUID, request: SendRequest) -> SendResult:
        """
        Send one outbound message in a conversation.

        Raises (before anything is written):
            InvalidMessageRequest, ConversationNotFound, TenantMismatch,
            UnsupportedMessageKind, ChannelNotConfigured, SessionWindowClosed,
            TenantSuspended, InsufficientCredit
        """
        request.validate()
        kind = MessageKind(request.kind)

        conversation = self.repo.get_conversation_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        ensure_tenant(ctx, conversation.tenant_id)

        if kind == MessageKind.TEMPLATE and not self.tracker.capabilities_for(conversation.platform).supports_templates:
            raise UnsupportedMessageKind(
                f"{conversation.platform} conversations cannot carry template messages",
                {"conversation_id": str(conversation.id)},
            )

        binding = self.resolver.get_binding_for_tenant(conversation.tenant_id, conversation.platform)
        credentials = self.resolver.get_credentials(binding)

        if kind != MessageKind.TEMPLATE and not self.tracker.describe(conversation).is_open:
            logger.info(
                "Send rejected: session window closed",
                extra={"conversation_id": str(conversation.id), "kind": kind.value},
            )
            raise SessionWindowClosed(conversation.id)

        message = self._charge_and_queue(ctx, conversation, request)
        provider = self.provider_factory(binding)

        # Past this point the credit is spent: the outcome must be recorded
        # even if the caller goes away.
        return await asyncio.shield(self._dispatch(message, conversation, request, provider, credentials))

    def _charge_and_queue(self, ctx: AuthContext, conversation: Conversation, request: SendRequest) -> Message:
        kind = MessageKind(request.kind)
        cost = cost_for(kind)
        try:
            message = self.repo.create_message(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                direction=MessageDirection.OUTBOUND,
                kind=kind,
                body=request.body,
                media_url=request.media_url,
                template_name=request.template_name,
                content_json=request.content_json(),
                status=MessageStatus.QUEUED,
                is_auto_reply=request.is_auto_reply,
            )
            entry = self.ledger.charge_for_send(
                conversation.tenant_id,
                cost,
                description=f"{kind.value.title()} message to {conversation.contact_id}",
                message_id=message.id,
                actor_id=None if ctx.role == UserRole.SYSTEM else ctx.user_id,
            )
            message.cost = cost
            message.charge_entry_id = entry.id
            # Cleared once the outcome is recorded; expiry refunds it if that never happens
            message.dispatch_ambiguous = True
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Message charged and queued",
            extra={
                "tenant_id": str(conversation.tenant_id),
                "message_id": str(message.id),
                "kind": kind.value,
                "cost": str(cost),
            },
        )
        return message

    async def _dispatch(
        self,
        message: Message,
        conversation: Conversation,
        request: SendRequest,
        provider: MessagingProvider,
        credentials: ChannelCredentials,
    ) -> SendResult:
        await self._publish_balance(message.tenant_id, "message_charge")
        await self._publish_message(RealtimeEventType.MESSAGE_CREATED, message)

        call = asyncio.ensure_future(self._call_provider(provider, credentials, conversation.contact_id, request))
        try:
            response = await asyncio.wait_for(asyncio.shield(call), timeout=self.dispatch_timeout)
        except asyncio.TimeoutError:
            return await self._handle_timeout(message, call)
        except Exception as e:
            logger.error(f"Provider dispatch raised: {e}", extra={"message_id": str(message.id)}, exc_info=True)
            response = _failed_response(e)

        await self._settle(message, conversation, response)
        return SendResult(message=message, charged=message.cost)

    async def _call_provider(
        self,
        provider: MessagingProvider,
        credentials: ChannelCredentials,
        to: str,
        request: SendRequest,
    ) -> ProviderResponse:
        kind = MessageKind(request.kind)
        if kind == MessageKind.TEMPLATE:
            return await provider.send_template(
                credentials, to, request.template_name, request.language_code, request.components
            )
        if kind == MessageKind.MEDIA:
            return await provider.send_media(credentials, to, request.media_url, request.media_type, request.caption)
        if kind == MessageKind.INTERACTIVE:
            return await provider.send_interactive(credentials, to, request.text, request.buttons)
        return await provider.send_text(credentials, to, request.text, reply_to=request.reply_to)

    async def _handle_timeout(self, message: Message, call: asyncio.Future) -> SendResult:
        logger.warning(
            f"Provider dispatch timed out after {self.dispatch_timeout}s",
            extra={"message_id": str(message.id), "policy": self.timeout_policy.value},
        )

        if self.timeout_policy == DispatchTimeoutPolicy.REFUND:
            call.cancel()
            await self._fail_and_refund(
                message, TIMEOUT_ERROR_CODE, f"Provider did not answer within {self.dispatch_timeout}s"
            )
            return SendResult(message=message, charged=message.cost)

        message.dispatch_ambiguous = True
        self.db.commit()

        task = asyncio.ensure_future(self._settle_late(call, message.id))
        _pending_settlements.add(task)
        task.add_done_callback(_pending_settlements.discard)
        return SendResult(message=message, charged=message.cost, ambiguous=True)

    async def _settle_late(self, call: asyncio.Future, message_id: UUID) -> None:
        """Record the result of a held dispatch once the provider answers."""
        try:
            response = await call
        except Exception as e:
            response = _failed_response(e)

        session_factory = self.session_factory or get_sessionmaker()
        with session_factory() as db:
            service = self._with_session(db)
            message = service.repo.get_message(message_id)
            if message is None or not message.dispatch_ambiguous or message.status != MessageStatus.QUEUED.value:
                logger.warning(
                    "Late dispatch result arrived after the message was settled",
                    extra={"message_id": str(message_id), "success": response.success},
                )
                return

            conversation = service.repo.get_conversation_by_id(message.conversation_id)
            await service._settle(message, conversation, response)

    async def _settle(self, message: Message, conversation: Conversation, response: ProviderResponse) -> None:
        if not response.success:
            logger.warning(
                "Provider rejected message",
                extra={"message_id": str(message.id), "error_code": response.error_code},
            )
            await self._fail_and_refund(
                message,
                response.error_code or "PROVIDER_ERROR",
                response.error_message or "Provider rejected the message",
            )
            return

        message.provider_message_id = response.message_id
        message.dispatch_ambiguous = False
        message.sent_at = utcnow()
        changed = apply_status(message, MessageStatus.SENT)
        self.repo.touch_conversation(conversation, MessageDirection.OUTBOUND)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Message sent",
            extra={"message_id": str(message.id), "provider_message_id": response.message_id},
        )
        if changed:
            await self._publish_message(RealtimeEventType.MESSAGE_STATUS_CHANGED, message)

    async def _fail_and_refund(self, message: Message, error_code: str, error_message: str) -> bool:
        """
        Mark a message FAILED and refund its charge at most once.

        Returns:
            True if the status changed
        """
        changed = apply_status(message, MessageStatus.FAILED, error_code, error_message)
        message.dispatch_ambiguous = False
        refunded = self._refund_once(message) if changed else False
        self.db.commit()

        if changed:
            await self._publish_message(RealtimeEventType.MESSAGE_STATUS_CHANGED, message)
        if refunded:
            await self._publish_balance(message.tenant_id, "refund")
        return changed

    def _refund_once(self, message: Message) -> bool:
        if message.charge_entry_id is None or not message.cost:
            return False

        # Claim the refund slot first; a concurrent callback for the same
        # message finds it taken and writes nothing.
        refund_id = uuid4()
        claimed = self.db.execute(
            update(Message)
            .where(Message.id == message.id, Message.refund_entry_id.is_(None))
            .values(refund_entry_id=refund_id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.info("Refund already recorded", extra={"message_id": str(message.id)})
            return False

        self.ledger.refund(
            message.tenant_id,
            message.cost,
            f"Refund for failed message {message.id}",
            message_id=message.id,
            entry_id=refund_id,
        )
        message.refund_entry_id = refund_id
        logger.info("Message charge refunded", extra={"message_id": str(message.id), "amount": str(message.cost)})
        return True

    # =========================================================================
    # Provider callbacks and held dispatches
    # =========================================================================

    async def apply_status_update(
        self,
        tenant_id: UUID,
        provider_message_id: str,
        status: str,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> tuple[Message | None, bool]:
        """
        Apply a provider delivery status to the tenant's outbound message.

        Returns:
            (message or None if unknown, whether the status changed)
        """
        new_status = PROVIDER_STATUS_MAP.get((status or "").lower())
        if new_status is None:
            logger.debug("Ignoring unknown provider status", extra={"status": status})
            return None, False

        message = self.repo.get_message_by_provider_id(tenant_id, provider_message_id)
        if message is None or message.direction != MessageDirection.OUTBOUND.value:
            logger.debug(
                "Status update for unknown message",
                extra={"tenant_id": str(tenant_id), "provider_message_id": provider_message_id},
            )
            return None, False

        if new_status == MessageStatus.FAILED:
            changed = await self._fail_and_refund(
                message,
                error_code or "PROVIDER_FAILED",
                error_message or "Provider reported delivery failure",
            )
            return message, changed

        changed = apply_status(message, new_status)
        if changed:
            message.dispatch_ambiguous = False
            if message.sent_at is None:
                message.sent_at = utcnow()
            self.db.commit()
            await self._publish_message(RealtimeEventType.MESSAGE_STATUS_CHANGED, message)
        return message, changed

    async def expire_ambiguous_dispatches(self, older_than: datetime | None = None) -> list[Message]:
        """Refund and fail held dispatches still unresolved after the hold period."""
        cutoff = older_than or (utcnow() - self.ambiguous_hold)
        expired = []
        for message in self.repo.list_ambiguous_dispatches(cutoff):
            if await self._fail_and_refund(message, TIMEOUT_ERROR_CODE, "Dispatch outcome unknown after hold period"):
                expired.append(message)

        if expired:
            logger.info(f"Expired {len(expired)} ambiguous dispatches", extra={"cutoff": cutoff.isoformat()})
        return expired

    # =========================================================================
    # Balance and tenant administration
    # =========================================================================

    def get_balance(self, ctx: AuthContext, tenant_id: UUID | None = None) -> Decimal:
        """Balance of the caller's tenant, or of any tenant for platform admins."""
        tenant_id = tenant_id or ctx.tenant_id
        if not ctx.is_platform_admin:
            ensure_tenant(ctx, tenant_id)
        return self.ledger.current_balance(tenant_id)

    def list_ledger_entries(self, ctx: AuthContext, limit: int = 100, offset: int = 0) -> list[LedgerEntry]:
        return self.repo.list_ledger_entries(ctx.tenant_id, limit=limit, offset=offset)

    async def adjust_balance(self, ctx: AuthContext, tenant_id: UUID, amount: Decimal, reason: str) -> LedgerEntry:
        """
        Manual credit or debit by a platform admin.

        Raises:
            PermissionDenied, TenantNotFound, InvalidAdjustment, InsufficientCredit
        """
        ensure_role(ctx, BALANCE_ADMIN_ROLES)
        try:
            entry = self.ledger.adjust_balance(tenant_id, amount, ctx.user_id, reason)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        await self._publish_balance(tenant_id, entry.kind)
        return entry

    async def set_tenant_status(self, ctx: AuthContext, tenant_id: UUID, status: TenantStatus | str) -> Tenant:
        """Suspend, reactivate or flag a tenant."""
        ensure_role(ctx, STATUS_ADMIN_ROLES)
        tenant = self.repo.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound(f"Tenant {tenant_id} not found")

        previous = tenant.status
        tenant.status = TenantStatus(status).value
        self.db.commit()

        logger.info(
            f"Tenant status changed from {previous} to {tenant.status}",
            extra={"tenant_id": str(tenant_id), "actor_id": str(ctx.user_id)},
        )
        return tenant

    # =========================================================================
    # Realtime
    # =========================================================================

    async def _publish_balance(self, tenant_id: UUID, reason: str) -> None:
        balance = self.ledger.current_balance(tenant_id)
        await self.publisher.publish(
            RealtimeEvent(
                type=RealtimeEventType.BALANCE_CHANGED,
                tenant_id=tenant_id,
                data={"balance": str(balance), "reason": reason},
            )
        )

    async def _publish_message(self, event_type: RealtimeEventType, message: Message) -> None:
        await self.publisher.publish(
            RealtimeEvent(type=event_type, tenant_id=message.tenant_id, data=message_data(message))
        )
