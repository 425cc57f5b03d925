"""
Message Status Machine

QUEUED -> SENT -> DELIVERED -> READ, with FAILED reachable from QUEUED or SENT.

Provider callbacks arrive late, twice, or out of order, so transitions are
forward-only: skipping ahead is allowed, moving backwards, replaying the
current status, or leaving a terminal status is a no-op rather than an error.
"""

import logging

from messaging_engine.persistence.models import Message, MessageStatus
from relaycore.timeutil import utcnow

logger = logging.getLogger(__name__)

_RANK = {
    MessageStatus.QUEUED: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}

TERMINAL_STATUSES = frozenset({MessageStatus.READ, MessageStatus.FAILED})

# Provider status strings (Meta webhooks) to internal statuses
PROVIDER_STATUS_MAP = {
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
}


def can_transition(current: MessageStatus | str, new: MessageStatus | str) -> bool:
    """True if moving from `current` to `new` is a real forward move."""
    current = MessageStatus(current)
    new = MessageStatus(new)

    if current in TERMINAL_STATUSES or current == new:
        return False
    if new == MessageStatus.FAILED:
        return current in (MessageStatus.QUEUED, MessageStatus.SENT)
    return _RANK[new] > _RANK[current]


def apply_status(
    message: Message,
    new_status: MessageStatus,
    error_code: str | None = None,
    error_message: str | None = None,
) -> bool:
    """
    Move a message to `new_status` if the transition is allowed.

    Returns:
        True if the status changed, False for ignored transitions
    """
    if not can_transition(message.status, new_status):
        logger.debug(
            "Ignoring status transition",
            extra={
                "message_id": str(message.id),
                "current": message.status,
                "requested": MessageStatus(new_status).value,
            },
        )
        return False

    message.status = MessageStatus(new_status).value
    message.status_updated_at = utcnow()
    if error_code:
        message.error_code = error_code
    if error_message:
        message.error_message = error_message
    return True
