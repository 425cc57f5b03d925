"""
Messaging Engine Services

- automation: rule matching and rule management
- enforcement: charge-then-send-then-compensate for outbound messages
- ingestion: webhook events to conversations, messages and auto-replies
"""

from messaging_engine.service.automation import AutomationRuleService, match_rule, validate_rule
from messaging_engine.service.enforcement import (
    CreditEnforcementService,
    DispatchTimeoutPolicy,
    SendRequest,
    SendResult,
)
from messaging_engine.service.ingestion import IngestionPipeline

__all__ = [
    "AutomationRuleService",
    "CreditEnforcementService",
    "DispatchTimeoutPolicy",
    "IngestionPipeline",
    "SendRequest",
    "SendResult",
    "match_rule",
    "validate_rule",
]
