"""
Session Window

Derives whether a conversation is inside the customer service window.

The state is never stored. It is computed from the conversation's
last_inbound_at and the platform's window length every time it is asked:

- no inbound message ever       -> CLOSED
- now - last_inbound <= window  -> OPEN
- otherwise                     -> CLOSED

Only a new inbound message moves a conversation from CLOSED to OPEN.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from messaging_engine.persistence.models import Conversation, Platform
from relaycore.timeutil import ensure_utc, utcnow


class SessionState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class PlatformCapabilities:
    """
    What a platform allows outside of templates.

    session_window of None means the window never expires once the contact
    has written at least once.
    """

    session_window: timedelta | None
    supports_templates: bool = True


PLATFORM_CAPABILITIES: dict[Platform, PlatformCapabilities] = {
    Platform.WHATSAPP: PlatformCapabilities(session_window=timedelta(hours=24)),
    Platform.MESSENGER: PlatformCapabilities(session_window=None, supports_templates=False),
}


@dataclass(frozen=True)
class SessionWindow:
    """Snapshot of a conversation's window at a point in time."""

    state: SessionState
    last_inbound_at: datetime | None
    expires_at: datetime | None
    seconds_remaining: int | None

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "last_inbound_at": self.last_inbound_at.isoformat() if self.last_inbound_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "seconds_remaining": self.seconds_remaining,
        }


class SessionTracker:
    """
    Computes session windows for conversations.

    The clock is injectable so window boundaries can be tested exactly.
    """

    def __init__(
        self,
        capabilities: dict[Platform, PlatformCapabilities] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.capabilities = capabilities or PLATFORM_CAPABILITIES
        self.clock = clock

    def capabilities_for(self, platform: Platform | str) -> PlatformCapabilities:
        return self.capabilities[Platform(platform)]

    def describe(self, conversation: Conversation, now: datetime | None = None) -> SessionWindow:
        """Full window snapshot for a conversation."""
        now = ensure_utc(now) if now else self.clock()
        last_inbound = ensure_utc(conversation.last_inbound_at)

        if last_inbound is None:
            return SessionWindow(SessionState.CLOSED, None, None, None)

        window = self.capabilities_for(conversation.platform).session_window
        if window is None:
            return SessionWindow(SessionState.OPEN, last_inbound, None, None)

        expires_at = last_inbound + window
        if now - last_inbound <= window:
            remaining = int((expires_at - now).total_seconds())
            return SessionWindow(SessionState.OPEN, last_inbound, expires_at, remaining)

        return SessionWindow(SessionState.CLOSED, last_inbound, expires_at, 0)

    def state(self, conversation: Conversation, now: datetime | None = None) -> SessionState:
        """OPEN or CLOSED for the conversation at `now`."""
        return self.describe(conversation, now).state
