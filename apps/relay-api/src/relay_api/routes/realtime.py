"""WebSocket endpoint for realtime tenant events."""

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from messaging_engine.realtime.manager import manager
from relay_api.deps import context_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/events")
async def events_socket(websocket: WebSocket, token: str = Query(None)):
    """
    Stream the caller's tenant events.

    The token travels as a query parameter since browsers cannot set headers
    on WebSocket upgrades. Incoming frames are ignored.
    """
    ctx = context_from_token(token)
    if ctx is None:
        await websocket.close(code=4401)
        return

    await manager.connect(websocket, ctx.tenant_id)
    logger.info("Realtime client connected", extra={"tenant_id": str(ctx.tenant_id), "user_id": str(ctx.user_id)})
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket, ctx.tenant_id)
        logger.info("Realtime client disconnected", extra={"tenant_id": str(ctx.tenant_id)})
