"""Conversation, message and send endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext
from messaging_engine.realtime.publisher import EventPublisher
from messaging_engine.routing.conversation import ConversationService
from messaging_engine.service.enforcement import CreditEnforcementService
from relay_api.deps import get_auth_context, get_enforcement, get_publisher
from relay_api.schemas import AssignRequest, ConversationOut, MessageOut, SendMessageRequest
from relaycore.db import get_db

router = APIRouter(prefix="/conversations", tags=["conversations"])


def get_conversation_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> ConversationService:
    return ConversationService(db, publisher=publisher)


@router.get("", response_model=list[ConversationOut])
async def list_conversations(
    assigned_to: UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: AuthContext = Depends(get_auth_context),
    service: ConversationService = Depends(get_conversation_service),
):
    return service.list_for_tenant(ctx, assigned_agent_id=assigned_to, limit=limit, offset=offset)


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    service: ConversationService = Depends(get_conversation_service),
):
    return service.get_for_tenant(ctx, conversation_id)


@router.get("/{conversation_id}/messages", response_model=list[MessageOut])
async def list_messages(
    conversation_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(get_auth_context),
    service: ConversationService = Depends(get_conversation_service),
):
    return service.list_messages(ctx, conversation_id, limit=limit)


@router.post("/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    ctx: AuthContext = Depends(get_auth_context),
    enforcement: CreditEnforcementService = Depends(get_enforcement),
):
    """
    Charge for and send one message.

    A provider failure still answers 201 with status FAILED and the charge
    refunded; rejected sends answer with the error's status and charge nothing.
    """
    result = await enforcement.send_message(ctx, conversation_id, body.to_send_request())
    return result.to_dict()


@router.get("/{conversation_id}/session")
async def get_session_state(
    conversation_id: UUID,
    ctx: AuthContext = Depends(get_auth_context),
    service: ConversationService = Depends(get_conversation_service),
):
    return service.session_state(ctx, conversation_id).to_dict()


@router.post("/{conversation_id}/assign", response_model=ConversationOut)
async def assign_conversation(
    conversation_id: UUID,
    body: AssignRequest,
    ctx: AuthContext = Depends(get_auth_context),
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.assign(ctx, conversation_id, body.agent_id)
