"""
Automation Rules

Keyword auto-replies:
- normalize / match_rule: pure matching of inbound text against rules
- validate_rule: rule sanity checks
- AutomationRuleService: tenant-scoped CRUD and priority ordering

Matching lowercases and trims both sides. EXACT_MATCH fires when the text
equals a keyword, KEYWORD_MATCH when the text contains one. Rules are tried
in position order and at most one fires.
"""

import logging
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext, ensure_tenant
from messaging_engine.errors import AutomationRuleNotFound, InvalidAutomationRule
from messaging_engine.persistence.models import AutomationRule, TriggerType
from messaging_engine.persistence.repo import MessagingRepository

logger = logging.getLogger(__name__)

# Rules every new tenant starts with
DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "name": "Price Inquiry",
        "trigger_type": TriggerType.KEYWORD_MATCH,
        "keywords": ["price", "cost", "plan"],
        "response_text": "Our plans start at ₹999/month. Reply PLANS to see all options.",
    },
    {
        "name": "Hello",
        "trigger_type": TriggerType.EXACT_MATCH,
        "keywords": ["hi", "hello"],
        "response_text": "Hello! Thanks for reaching out. An agent will be with you shortly.",
    },
]


def normalize(text: str | None) -> str:
    """Trim and lowercase."""
    return (text or "").strip().lower()


def normalize_keywords(keywords: Iterable[str] | None) -> list[str]:
    """Normalized, non-blank, de-duplicated keywords in their original order."""
    result: list[str] = []
    for keyword in keywords or []:
        value = normalize(keyword if isinstance(keyword, str) else str(keyword))
        if value and value not in result:
            result.append(value)
    return result


def rule_matches(text: str, rule: AutomationRule) -> bool:
    """True if the already-normalized `text` triggers `rule`."""
    keywords = normalize_keywords(rule.keywords)
    if rule.trigger_type == TriggerType.EXACT_MATCH.value:
        return text in keywords
    if rule.trigger_type == TriggerType.KEYWORD_MATCH.value:
        return any(keyword in text for keyword in keywords)
    return False


def match_rule(text: str | None, rules: Sequence[AutomationRule]) -> AutomationRule | None:
    """
    First active rule, in position order, that the text triggers.

    Blank text matches nothing. Pure: no I/O, no side effects.
    """
    normalized = normalize(text)
    if not normalized:
        return None

    for rule in sorted(rules, key=lambda r: r.position or 0):
        if rule.is_active and rule_matches(normalized, rule):
            return rule
    return None


def validate_rule(
    name: str | None,
    trigger_type: str | TriggerType | None,
    keywords: Iterable[str] | None,
    response_text: str | None,
) -> tuple[TriggerType, list[str]]:
    """
    Check a rule definition.

    Returns:
        The parsed trigger type and normalized keywords

    Raises:
        InvalidAutomationRule: unknown trigger, no usable keyword, blank response or name
    """
    if not name or not name.strip():
        raise InvalidAutomationRule("Rule name must not be blank")

    try:
        trigger = TriggerType(trigger_type)
    except ValueError:
        raise InvalidAutomationRule(
            f"Unknown trigger type: {trigger_type}",
            {"allowed": [t.value for t in TriggerType]},
        )

    normalized = normalize_keywords(keywords)
    if not normalized:
        raise InvalidAutomationRule("Rule needs at least one non-blank keyword")

    if not response_text or not response_text.strip():
        raise InvalidAutomationRule("Response text must not be blank")

    return trigger, normalized


class AutomationRuleService:
    """Tenant-scoped automation rule management. Methods commit."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = MessagingRepository(db)

    def list_rules(self, ctx: AuthContext, active_only: bool = False) -> list[AutomationRule]:
        return self.repo.list_rules(ctx.tenant_id, active_only=active_only)

    def active_rules(self, tenant_id: UUID) -> list[AutomationRule]:
        """Rules the matcher runs for a tenant, in priority order."""
        return self.repo.list_rules(tenant_id, active_only=True)

    def get_rule(self, ctx: AuthContext, rule_id: UUID) -> AutomationRule:
        rule = self.repo.get_rule(rule_id)
        if rule is None:
            raise AutomationRuleNotFound(f"Automation rule {rule_id} not found")
        ensure_tenant(ctx, rule.tenant_id)
        return rule

    def create_rule(
        self,
        ctx: AuthContext,
        name: str,
        trigger_type: str | TriggerType,
        keywords: list[str],
        response_text: str,
        is_active: bool = True,
    ) -> AutomationRule:
        """Create a rule at the end of the tenant's priority order."""
        trigger, normalized = validate_rule(name, trigger_type, keywords, response_text)

        rule = AutomationRule(
            tenant_id=ctx.tenant_id,
            name=name.strip(),
            trigger_type=trigger.value,
            keywords=normalized,
            response_text=response_text.strip(),
            is_active=is_active,
            position=self.repo.next_rule_position(ctx.tenant_id),
        )
        self.db.add(rule)
        self.db.commit()

        logger.info("Automation rule created", extra={"tenant_id": str(ctx.tenant_id), "rule_id": str(rule.id)})
        return rule

    def update_rule(self, ctx: AuthContext, rule_id: UUID, **changes: Any) -> AutomationRule:
        """
        Update a rule. Accepts name, trigger_type, keywords, response_text, is_active.

        The merged rule is validated as a whole before anything is written.
        """
        rule = self.get_rule(ctx, rule_id)

        unknown = set(changes) - {"name", "trigger_type", "keywords", "response_text", "is_active"}
        if unknown:
            raise InvalidAutomationRule(f"Unknown rule fields: {', '.join(sorted(unknown))}")

        name = changes.get("name", rule.name)
        response_text = changes.get("response_text", rule.response_text)
        trigger, normalized = validate_rule(
            name,
            changes.get("trigger_type", rule.trigger_type),
            changes.get("keywords", rule.keywords),
            response_text,
        )

        rule.name = name.strip()
        rule.trigger_type = trigger.value
        rule.keywords = normalized
        rule.response_text = response_text.strip()
        if changes.get("is_active") is not None:
            rule.is_active = bool(changes["is_active"])

        self.db.commit()
        return rule

    def delete_rule(self, ctx: AuthContext, rule_id: UUID) -> None:
        rule = self.get_rule(ctx, rule_id)
        self.db.delete(rule)
        self.db.commit()
        logger.info("Automation rule deleted", extra={"tenant_id": str(ctx.tenant_id), "rule_id": str(rule_id)})

    def reorder(self, ctx: AuthContext, rule_ids: list[UUID]) -> list[AutomationRule]:
        """
        Set priority order. Listed rules come first in the given order;
        unlisted rules keep their relative order after them.
        """
        listed = [self.get_rule(ctx, rule_id) for rule_id in rule_ids]
        listed_ids = {rule.id for rule in listed}
        rest = [rule for rule in self.repo.list_rules(ctx.tenant_id) if rule.id not in listed_ids]

        for position, rule in enumerate(listed + rest):
            rule.position = position

        self.db.commit()
        return listed + rest

    def seed_defaults(self, ctx: AuthContext) -> list[AutomationRule]:
        """Create DEFAULT_RULES for a tenant that has no rules yet."""
        if self.repo.list_rules(ctx.tenant_id):
            return []
        return [self.create_rule(ctx, **rule) for rule in DEFAULT_RULES]
