"""
WebSocket connection manager for realtime events.

Manages active WebSocket connections per tenant, so events produced for a
tenant reach every agent of that tenant that is connected, and nobody else.
"""

import asyncio
import json
import logging
from typing import Any
from uuid import UUID

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections per tenant."""

    def __init__(self):
        # tenant_id -> set of active WebSocket connections
        self._connections: dict[UUID, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, tenant_id: UUID) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(tenant_id, set()).add(websocket)

    async def disconnect(self, websocket: WebSocket, tenant_id: UUID) -> None:
        """Remove a WebSocket connection."""
        async with self._lock:
            connections = self._connections.get(tenant_id)
            if connections is None:
                return
            connections.discard(websocket)
            if not connections:
                del self._connections[tenant_id]

    async def send_to_tenant(self, tenant_id: UUID | str, message: dict[str, Any]) -> int:
        """
        Send a message to every connection of a tenant.

        Returns:
            Number of connections the message was written to
        """
        tenant_id = UUID(str(tenant_id))
        async with self._lock:
            connections = self._connections.get(tenant_id, set()).copy()

        if not connections:
            return 0

        data = json.dumps(message)
        closed = []
        delivered = 0

        for ws in connections:
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        if closed:
            logger.debug("Dropping closed sockets", extra={"tenant_id": str(tenant_id), "count": len(closed)})
            async with self._lock:
                connections = self._connections.get(tenant_id)
                if connections is not None:
                    connections.difference_update(closed)
                    if not connections:
                        del self._connections[tenant_id]

        return delivered

    def get_connected_count(self, tenant_id: UUID) -> int:
        """Get the number of active connections for a tenant."""
        return len(self._connections.get(tenant_id, set()))

    def get_total_connections(self) -> int:
        """Get total number of active connections across all tenants."""
        return sum(len(conns) for conns in self._connections.values())


# Singleton instance
manager = ConnectionManager()
