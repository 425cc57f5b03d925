"""
Event Types

Events carried on the inbound stream and pushed to realtime subscribers.
"""

from enum import Enum


class StreamEventType(str, Enum):
    """
    Event types on the inbound Redis stream.

    PUBLISHED by the webhook endpoint, CONSUMED by the worker:
    - INBOUND_MESSAGE: A contact sent a message
    - STATUS_UPDATE: Provider reported a delivery status for one of our messages
    """

    INBOUND_MESSAGE = "inbound_message"
    STATUS_UPDATE = "status_update"

    # Written by the worker when an entry exhausts its deliveries
    DLQ_ENTRY = "dlq_entry"

    def __str__(self) -> str:
        return self.value


class RealtimeEventType(str, Enum):
    """Events pushed to connected agent dashboards."""

    MESSAGE_CREATED = "message.created"
    MESSAGE_STATUS_CHANGED = "message.status_changed"
    BALANCE_CHANGED = "balance.changed"
    CONVERSATION_ASSIGNED = "conversation.assigned"

    def __str__(self) -> str:
        return self.value
