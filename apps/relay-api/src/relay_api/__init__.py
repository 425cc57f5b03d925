"""Relaydesk HTTP and WebSocket service."""
