"""
Meta Webhook Utilities

Routing helper that looks at a raw webhook body before it is parsed.
"""

from typing import Any

from messaging_engine.persistence.models import Platform


def detect_platform(payload: dict[str, Any]) -> Platform | None:
    """Platform a webhook body belongs to, from its "object" field."""
    if not isinstance(payload, dict):
        return None
    obj = payload.get("object")
    if obj == "whatsapp_business_account":
        return Platform.WHATSAPP
    if obj == "page":
        return Platform.MESSENGER
    return None

