"""
Relay API Service

FastAPI app serving provider webhooks, the tenant API and the realtime
WebSocket channel.

Responsibilities:
- Queue webhook events on the inbound Redis stream (the worker processes them)
- Tenant API: conversations, sends, balance, ledger, automation rules, billing
- Admin API: balance adjustments and tenant status
- Forward realtime events from Redis pub/sub to connected dashboards
"""

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from messaging_engine.realtime.bridge import run_bridge
from messaging_engine.realtime.manager import manager
from messaging_engine.realtime.publisher import RedisEventPublisher
from messaging_engine.streams.groups import ensure_engine_streams
from relay_api.errors import register_error_handlers
from relay_api.routes import admin, automation, balance, billing, conversations, realtime, webhook
from relaycore.logging import setup_logging
from relaycore.redis import get_async_redis_client, get_redis_client
from relaycore.settings import get_settings

setup_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(
    title="Relaydesk API",
    description="Multi-tenant WhatsApp and Messenger messaging with prepaid credits",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(webhook.router)
app.include_router(realtime.router)
app.include_router(conversations.router, prefix="/api/v1")
app.include_router(balance.router, prefix="/api/v1")
app.include_router(automation.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(billing.router, prefix="/api/v1")


@app.on_event("startup")
async def startup():
    """Ensure streams exist, install the Redis publisher and start the realtime bridge."""
    try:
        ensure_engine_streams(get_redis_client())
    except Exception as e:
        logger.error(f"Failed to initialize streams: {e}")
        raise

    app.state.publisher_redis = get_async_redis_client()
    app.state.publisher = RedisEventPublisher(app.state.publisher_redis)

    app.state.bridge_redis = get_async_redis_client()
    app.state.bridge_task = asyncio.create_task(run_bridge(app.state.bridge_redis, manager))
    logger.info("Relay API started")


@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "bridge_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    for name in ("bridge_redis", "publisher_redis"):
        client = getattr(app.state, name, None)
        if client is not None:
            await client.aclose()
    logger.info("Relay API stopped")


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "relay-api", "connections": manager.get_total_connections()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
