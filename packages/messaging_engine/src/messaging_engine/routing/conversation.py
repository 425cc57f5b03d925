"""
Conversation Service

Tenant-scoped reads and agent assignment for conversations.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext, ensure_tenant
from messaging_engine.contracts.event_types import RealtimeEventType
from messaging_engine.errors import ConversationNotFound
from messaging_engine.persistence.models import Conversation, Message
from messaging_engine.persistence.repo import MessagingRepository
from messaging_engine.realtime.events import RealtimeEvent
from messaging_engine.realtime.publisher import EventPublisher, NullEventPublisher
from messaging_engine.routing.session import SessionTracker, SessionWindow

logger = logging.getLogger(__name__)


class ConversationService:
    """
    Conversation access for agents.

    Every call checks that the conversation belongs to the caller's tenant.
    """

    def __init__(
        self,
        db: Session,
        publisher: EventPublisher | None = None,
        tracker: SessionTracker | None = None,
    ):
        self.db = db
        self.repo = MessagingRepository(db)
        self.publisher = publisher or NullEventPublisher()
        self.tracker = tracker or SessionTracker()

    def get_for_tenant(self, ctx: AuthContext, conversation_id: UUID) -> Conversation:
        """
        Load a conversation owned by the caller's tenant.

        Raises:
            ConversationNotFound: no such conversation
            TenantMismatch: conversation belongs to another tenant
        """
        conversation = self.repo.get_conversation_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        ensure_tenant(ctx, conversation.tenant_id)
        return conversation

    def list_for_tenant(
        self,
        ctx: AuthContext,
        assigned_agent_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        return self.repo.list_conversations(ctx.tenant_id, assigned_agent_id, limit=limit, offset=offset)

    def list_messages(self, ctx: AuthContext, conversation_id: UUID, limit: int = 50) -> list[Message]:
        conversation = self.get_for_tenant(ctx, conversation_id)
        return self.repo.list_messages(conversation.tenant_id, conversation.id, limit=limit)

    def session_state(self, ctx: AuthContext, conversation_id: UUID) -> SessionWindow:
        """Current 24h window snapshot for a conversation."""
        return self.tracker.describe(self.get_for_tenant(ctx, conversation_id))

    async def assign(self, ctx: AuthContext, conversation_id: UUID, agent_id: UUID | None) -> Conversation:
        """Assign a conversation to an agent, or unassign it with agent_id=None."""
        conversation = self.get_for_tenant(ctx, conversation_id)
        conversation.assigned_agent_id = agent_id
        self.db.commit()

        logger.info(
            "Conversation assigned",
            extra={
                "conversation_id": str(conversation.id),
                "agent_id": str(agent_id) if agent_id else None,
                "assigned_by": str(ctx.user_id),
            },
        )

        await self.publisher.publish(
            RealtimeEvent(
                type=RealtimeEventType.CONVERSATION_ASSIGNED,
                tenant_id=conversation.tenant_id,
                data={
                    "conversation_id": str(conversation.id),
                    "assigned_agent_id": str(agent_id) if agent_id else None,
                },
            )
        )
        return conversation
