"""
Provider Webhooks

Receives WhatsApp Cloud and Messenger webhooks from Meta.

Responsibilities:
- Answer the subscription handshake
- Verify X-Hub-Signature-256 when an app secret is configured
- Parse the body into internal events
- Resolve each event's tenant from its channel id
- Publish to the inbound Redis stream for the worker
- Return 200 quickly; malformed or unroutable parts are logged and dropped
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from messaging_engine.persistence.models import Platform
from messaging_engine.providers import get_webhook_parser
from messaging_engine.providers.graph import validate_signature
from messaging_engine.providers.meta_cloud.webhook import detect_platform
from messaging_engine.routing.tenant_resolver import TenantResolver
from messaging_engine.streams.producer import StreamProducer
from relay_api.deps import get_stream_producer
from relaycore.db import get_db
from relaycore.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.get("/webhook")
async def verify_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    """
    Handle Meta webhook verification.

    Meta sends hub.mode, hub.verify_token and hub.challenge; the challenge
    is echoed back when the token matches.
    """
    logger.info("Webhook verification request", extra={"mode": hub_mode, "token_received": bool(hub_verify_token)})

    parser = get_webhook_parser(Platform.WHATSAPP)
    challenge = parser.verify_webhook_challenge(
        mode=hub_mode or "",
        token=hub_verify_token or "",
        challenge=hub_challenge or "",
        verify_token=get_settings().WHATSAPP_VERIFY_TOKEN,
    )

    if challenge:
        logger.info("Webhook verification successful")
        return Response(content=challenge, media_type="text/plain")

    logger.warning("Webhook verification failed")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    producer: StreamProducer = Depends(get_stream_producer),
):
    """
    Receive a webhook and queue its events.

    Flow:
    1. Validate signature (403 on mismatch)
    2. Detect platform and parse
    3. Resolve tenant per event
    4. Publish to the inbound stream
    """
    body = await request.body()

    app_secret = get_settings().META_APP_SECRET
    if app_secret:
        signature = request.headers.get("X-Hub-Signature-256", "")
        if not validate_signature(body, signature, app_secret):
            logger.warning("Invalid Meta webhook signature")
            raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Ignoring webhook with invalid JSON body")
        return {"status": "ignored", "reason": "invalid_json"}

    platform = detect_platform(payload)
    if platform is None:
        logger.debug("Ignoring webhook for unknown object", extra={"object": str(payload.get("object")) if isinstance(payload, dict) else None})
        return {"status": "ignored", "reason": "unknown_object"}

    try:
        events = get_webhook_parser(platform).parse_webhook(payload)
    except Exception as e:
        # Redelivery cannot fix a body we fail to parse
        logger.error(f"Error parsing {platform.value} webhook: {e}", exc_info=True)
        return {"status": "ignored", "reason": "unparseable"}

    resolver = TenantResolver(db)

    published = 0
    unresolved = 0
    for event in events:
        tenant_id = resolver.resolve_tenant_id(event.platform, event.channel_id)
        if tenant_id is None:
            unresolved += 1
            continue

        producer.publish_event(tenant_id, event)
        published += 1

    logger.info(
        "Webhook accepted",
        extra={"platform": platform.value, "events": len(events), "published": published, "unresolved": unresolved},
    )
    return {"status": "accepted", "platform": platform.value, "published": published, "unresolved": unresolved}
