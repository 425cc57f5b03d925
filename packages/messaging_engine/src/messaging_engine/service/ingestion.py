"""
Webhook Ingestion Pipeline

Processes parsed webhook events taken off the inbound stream:

Inbound messages
1. Dedupe on provider message id
2. Get or create the conversation
3. Persist the message and bump last_inbound_at (opens the session window)
4. Match automation rules
5. Send the auto-reply through credit enforcement
6. Publish realtime events

Status updates
- Apply the provider status to our outbound message (refunds on failure)

Automation and auto-reply failures never fail ingestion; they degrade to
"no auto-reply".
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext
from messaging_engine.contracts.envelope import StreamEnvelope
from messaging_engine.contracts.event_types import RealtimeEventType, StreamEventType
from messaging_engine.contracts.payloads import InboundMessagePayload, StatusUpdatePayload
from messaging_engine.errors import DuplicateWebhookEvent, MessagingError
from messaging_engine.persistence.models import (
    AutomationRule,
    Conversation,
    Message,
    MessageDirection,
    MessageKind,
    MessageStatus,
    Platform,
)
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.providers.base import (
    MEDIA_CONTENT_TYPES,
    ContentType,
    InboundMessageEvent,
    StatusUpdateEvent,
    WebhookEvent,
)
from messaging_engine.realtime.events import RealtimeEvent, message_data
from messaging_engine.realtime.publisher import EventPublisher, NullEventPublisher
from messaging_engine.routing.tenant_resolver import TenantResolver
from messaging_engine.service.automation import AutomationRuleService, match_rule
from messaging_engine.service.enforcement import CreditEnforcementService, SendRequest

logger = logging.getLogger(__name__)


def _message_kind(content_type: ContentType) -> MessageKind:
    if content_type in MEDIA_CONTENT_TYPES:
        return MessageKind.MEDIA
    if content_type in (ContentType.INTERACTIVE, ContentType.BUTTON):
        return MessageKind.INTERACTIVE
    return MessageKind.TEXT


class IngestionPipeline:
    """
    Turns webhook events into conversations, messages and auto-replies.

    The enforcement service must share this pipeline's session.
    """

    def __init__(
        self,
        db: Session,
        enforcement: CreditEnforcementService | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.db = db
        self.repo = MessagingRepository(db)
        self.publisher = publisher or NullEventPublisher()
        self.enforcement = enforcement or CreditEnforcementService(db, publisher=self.publisher)
        self.rules = AutomationRuleService(db)
        self.resolver = TenantResolver(db)

    async def handle_envelope(self, envelope: StreamEnvelope) -> dict[str, Any]:
        """
        Process one stream entry.

        Raises:
            ValueError: payload does not validate (the entry is not retryable)
        """
        if envelope.event_type == StreamEventType.INBOUND_MESSAGE.value:
            event: WebhookEvent = InboundMessagePayload.model_validate(envelope.payload).to_event()
        elif envelope.event_type == StreamEventType.STATUS_UPDATE.value:
            event = StatusUpdatePayload.model_validate(envelope.payload).to_event()
        else:
            logger.warning(f"Unknown stream event type: {envelope.event_type}")
            return {"status": "skipped", "reason": "unknown_event_type"}

        return await self.ingest(event, tenant_id=envelope.tenant_id)

    async def ingest(self, event: WebhookEvent, tenant_id: UUID | None = None) -> dict[str, Any]:
        """
        Process one parsed webhook event.

        The tenant is resolved from the event's channel id unless given.
        """
        if tenant_id is None:
            tenant_id = self.resolver.resolve_tenant_id(event.platform, event.channel_id)
            if tenant_id is None:
                return {"status": "skipped", "reason": "unknown_channel", "channel_id": event.channel_id}

        if isinstance(event, InboundMessageEvent):
            try:
                return await self._ingest_inbound(tenant_id, event)
            except DuplicateWebhookEvent as e:
                logger.debug(str(e))
                return {"status": "skipped", "reason": "duplicate", "message_id": e.provider_message_id}

        if isinstance(event, StatusUpdateEvent):
            return await self._ingest_status(tenant_id, event)

        raise TypeError(f"Unsupported webhook event: {type(event).__name__}")

    # =========================================================================
    # Inbound messages
    # =========================================================================

    async def _ingest_inbound(self, tenant_id: UUID, event: InboundMessageEvent) -> dict[str, Any]:
        if self.repo.is_message_processed(tenant_id, event.provider_message_id):
            raise DuplicateWebhookEvent(event.provider_message_id)

        for attempt in (1, 2):
            try:
                conversation, created, message = self._store_inbound(tenant_id, event)
                break
            except IntegrityError:
                # Either this message was stored concurrently, or another first
                # message from the same contact created the conversation
                self.db.rollback()
                if self.repo.is_message_processed(tenant_id, event.provider_message_id):
                    raise DuplicateWebhookEvent(event.provider_message_id)
                if attempt == 2:
                    raise
                logger.info(
                    "Retrying inbound store after conversation race",
                    extra={"tenant_id": str(tenant_id), "provider_message_id": event.provider_message_id},
                )

        logger.info(
            "Inbound message stored",
            extra={
                "tenant_id": str(tenant_id),
                "conversation_id": str(conversation.id),
                "provider_message_id": event.provider_message_id,
            },
        )
        await self.publisher.publish(
            RealtimeEvent(
                type=RealtimeEventType.MESSAGE_CREATED,
                tenant_id=tenant_id,
                data={**message_data(message), "contact_id": conversation.contact_id},
            )
        )

        result: dict[str, Any] = {
            "status": "processed",
            "message_id": str(message.id),
            "conversation_id": str(conversation.id),
            "conversation_created": created,
        }

        rule = self._match(tenant_id, event.text)
        if rule is not None:
            result["rule_id"] = str(rule.id)
            result["auto_reply"] = await self._auto_reply(conversation, rule)

        return result

    def _store_inbound(self, tenant_id: UUID, event: InboundMessageEvent) -> tuple[Conversation, bool, Message]:
        """Upsert the conversation, append the message and commit."""
        conversation, created = self.repo.get_or_create_conversation(
            tenant_id=tenant_id,
            platform=Platform(event.platform),
            contact_id=event.contact_id,
            contact_name=event.contact_name,
        )
        message = self.repo.create_message(
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            direction=MessageDirection.INBOUND,
            kind=_message_kind(event.content_type),
            body=event.text if event.text is not None else event.caption,
            media_url=event.media_url,
            content_json={
                "content_type": event.content_type.value,
                "media_id": event.media_id,
                "context_message_id": event.context_message_id,
            },
            provider_message_id=event.provider_message_id,
            status=MessageStatus.DELIVERED,  # Inbound = already delivered
            created_at=event.timestamp,
        )
        self.repo.touch_conversation(conversation, MessageDirection.INBOUND, event.timestamp)
        self.db.commit()
        return conversation, created, message

    def _match(self, tenant_id: UUID, text: str | None) -> AutomationRule | None:
        if not text:
            return None
        try:
            rule = match_rule(text, self.rules.active_rules(tenant_id))
        except Exception as e:
            logger.error(f"Automation matching failed: {e}", extra={"tenant_id": str(tenant_id)}, exc_info=True)
            return None

        if rule is not None:
            logger.info(f'Matched rule "{rule.name}"', extra={"tenant_id": str(tenant_id), "rule_id": str(rule.id)})
        return rule

    async def _auto_reply(self, conversation: Conversation, rule: AutomationRule) -> dict[str, Any]:
        request = SendRequest(kind=MessageKind.TEXT, text=rule.response_text, is_auto_reply=True)
        try:
            sent = await self.enforcement.send_message(
                AuthContext.system(conversation.tenant_id), conversation.id, request
            )
        except MessagingError as e:
            logger.info(
                f"Auto-reply not sent: {e.message}",
                extra={"conversation_id": str(conversation.id), "error_code": e.code},
            )
            return {"status": "skipped", "reason": e.code}
        except Exception as e:
            logger.error(f"Auto-reply failed: {e}", extra={"conversation_id": str(conversation.id)}, exc_info=True)
            self.db.rollback()
            return {"status": "skipped", "reason": "error"}

        return sent.to_dict()

    # =========================================================================
    # Status updates
    # =========================================================================

    async def _ingest_status(self, tenant_id: UUID, event: StatusUpdateEvent) -> dict[str, Any]:
        message, changed = await self.enforcement.apply_status_update(
            tenant_id,
            event.provider_message_id,
            event.status,
            error_code=event.error_code,
            error_message=event.error_message,
        )
        if message is None:
            return {"status": "skipped", "reason": "unknown_message", "provider_message_id": event.provider_message_id}

        return {
            "status": "applied" if changed else "ignored",
            "message_id": str(message.id),
            "message_status": message.status,
        }
