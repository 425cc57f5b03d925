"""
Tests for keyword auto-reply rules.
"""

from uuid import uuid4

import pytest

from messaging_engine.auth import AuthContext
from messaging_engine.errors import AutomationRuleNotFound, InvalidAutomationRule, TenantMismatch
from messaging_engine.persistence.models import AutomationRule, TriggerType
from messaging_engine.service.automation import (
    DEFAULT_RULES,
    AutomationRuleService,
    match_rule,
    normalize_keywords,
    validate_rule,
)


def rule(name, trigger, keywords, response, position, is_active=True):
    return AutomationRule(
        id=uuid4(),
        name=name,
        trigger_type=trigger.value,
        keywords=keywords,
        response_text=response,
        position=position,
        is_active=is_active,
    )


@pytest.fixture
def rules():
    return [
        rule("Greeting", TriggerType.EXACT_MATCH, ["hi"], "Hello!", 0),
        rule("Pricing", TriggerType.KEYWORD_MATCH, ["price"], "See pricing page", 1),
    ]


class TestMatchRule:
    """Pure matching of inbound text."""

    def test_exact_match_fires_first_rule(self, rules):
        assert match_rule("hi", rules).name == "Greeting"

    def test_keyword_inside_sentence(self, rules):
        assert match_rule("what's the price?", rules).name == "Pricing"

    def test_no_match(self, rules):
        assert match_rule("bye", rules) is None

    def test_case_and_whitespace_ignored(self, rules):
        assert match_rule("  HI  ", rules).name == "Greeting"

    def test_exact_match_needs_whole_text(self, rules):
        """'hi there' is not an exact 'hi'."""
        assert match_rule("hi there", rules) is None

    def test_blank_text_matches_nothing(self, rules):
        assert match_rule("", rules) is None
        assert match_rule(None, rules) is None

    def test_position_decides_between_matches(self):
        """When two rules match, the lower position wins regardless of list order."""
        late = rule("Late", TriggerType.KEYWORD_MATCH, ["order"], "late", 5)
        early = rule("Early", TriggerType.KEYWORD_MATCH, ["order"], "early", 1)

        assert match_rule("where is my order", [late, early]).name == "Early"

    def test_inactive_rules_skipped(self, rules):
        rules[0].is_active = False

        assert match_rule("hi", rules) is None


class TestValidateRule:
    def test_keywords_normalized(self):
        trigger, keywords = validate_rule("Price", "KEYWORD_MATCH", [" Price ", "price", "", "COST"], "See site")

        assert trigger == TriggerType.KEYWORD_MATCH
        assert keywords == ["price", "cost"]

    def test_unknown_trigger(self):
        with pytest.raises(InvalidAutomationRule) as exc_info:
            validate_rule("Bad", "REGEX", ["x"], "y")

        assert "EXACT_MATCH" in exc_info.value.context["allowed"]

    @pytest.mark.parametrize(
        "name,keywords,response",
        [("", ["hi"], "Hello"), ("Hi", ["  ", ""], "Hello"), ("Hi", ["hi"], "   "), ("Hi", None, "Hello")],
    )
    def test_blank_fields_rejected(self, name, keywords, response):
        with pytest.raises(InvalidAutomationRule):
            validate_rule(name, "EXACT_MATCH", keywords, response)

    def test_normalize_keywords_keeps_order(self):
        assert normalize_keywords(["B", "a", "b"]) == ["b", "a"]


class TestAutomationRuleService:
    """Tenant-scoped CRUD and ordering."""

    @pytest.fixture
    def rules_service(self, db):
        return AutomationRuleService(db)

    def test_create_appends_at_end(self, rules_service, ctx):
        first = rules_service.create_rule(ctx, "Hi", "EXACT_MATCH", ["Hi"], "Hello!")
        second = rules_service.create_rule(ctx, "Price", TriggerType.KEYWORD_MATCH, ["price"], "See pricing")

        assert first.position == 0
        assert second.position == 1
        assert first.keywords == ["hi"]
        assert [r.name for r in rules_service.list_rules(ctx)] == ["Hi", "Price"]

    def test_active_rules_excludes_disabled(self, rules_service, ctx):
        rules_service.create_rule(ctx, "Hi", "EXACT_MATCH", ["hi"], "Hello!", is_active=False)
        rules_service.create_rule(ctx, "Price", "KEYWORD_MATCH", ["price"], "See pricing")

        assert [r.name for r in rules_service.active_rules(ctx.tenant_id)] == ["Price"]

    def test_update_validates_merged_rule(self, rules_service, ctx):
        created = rules_service.create_rule(ctx, "Hi", "EXACT_MATCH", ["hi"], "Hello!")

        with pytest.raises(InvalidAutomationRule):
            rules_service.update_rule(ctx, created.id, keywords=[" "])

        updated = rules_service.update_rule(ctx, created.id, keywords=["hey", "Hi"], is_active=False)
        assert updated.keywords == ["hey", "hi"]
        assert updated.is_active is False
        assert updated.response_text == "Hello!"

    def test_update_rejects_unknown_fields(self, rules_service, ctx):
        created = rules_service.create_rule(ctx, "Hi", "EXACT_MATCH", ["hi"], "Hello!")

        with pytest.raises(InvalidAutomationRule):
            rules_service.update_rule(ctx, created.id, position=9)

    def test_reorder_moves_listed_rules_first(self, rules_service, ctx):
        a = rules_service.create_rule(ctx, "A", "EXACT_MATCH", ["a"], "A")
        b = rules_service.create_rule(ctx, "B", "EXACT_MATCH", ["b"], "B")
        c = rules_service.create_rule(ctx, "C", "EXACT_MATCH", ["c"], "C")

        ordered = rules_service.reorder(ctx, [c.id])

        assert [r.name for r in ordered] == ["C", "A", "B"]
        assert [r.position for r in rules_service.list_rules(ctx)] == [0, 1, 2]
        assert a.position == 1 and b.position == 2

    def test_delete(self, rules_service, ctx):
        created = rules_service.create_rule(ctx, "Hi", "EXACT_MATCH", ["hi"], "Hello!")

        rules_service.delete_rule(ctx, created.id)

        with pytest.raises(AutomationRuleNotFound):
            rules_service.get_rule(ctx, created.id)

    def test_other_tenant_cannot_touch_rule(self, rules_service, ctx, make_tenant):
        created = rules_service.create_rule(ctx, "Hi", "EXACT_MATCH", ["hi"], "Hello!")
        outsider = AuthContext(tenant_id=make_tenant("Globex").id, user_id=uuid4())

        with pytest.raises(TenantMismatch):
            rules_service.delete_rule(outsider, created.id)
        assert rules_service.list_rules(outsider) == []

    def test_seed_defaults_once(self, rules_service, ctx):
        seeded = rules_service.seed_defaults(ctx)

        assert len(seeded) == len(DEFAULT_RULES)
        assert rules_service.seed_defaults(ctx) == []
        assert match_rule("Hello", rules_service.active_rules(ctx.tenant_id)).name == "Hello"
