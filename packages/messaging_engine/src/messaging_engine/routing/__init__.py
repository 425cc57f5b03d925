"""
Routing

Tenant resolution, conversation access and the session-window and
message-status state machines.
"""

from messaging_engine.routing.conversation import ConversationService
from messaging_engine.routing.message_state import (
    PROVIDER_STATUS_MAP,
    TERMINAL_STATUSES,
    apply_status,
    can_transition,
)
from messaging_engine.routing.session import (
    PLATFORM_CAPABILITIES,
    PlatformCapabilities,
    SessionState,
    SessionTracker,
    SessionWindow,
)
from messaging_engine.routing.tenant_resolver import TenantResolver

__all__ = [
    "ConversationService",
    "PROVIDER_STATUS_MAP",
    "TERMINAL_STATUSES",
    "apply_status",
    "can_transition",
    "PLATFORM_CAPABILITIES",
    "PlatformCapabilities",
    "SessionState",
    "SessionTracker",
    "SessionWindow",
    "TenantResolver",
]
