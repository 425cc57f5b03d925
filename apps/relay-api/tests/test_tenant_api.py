"""
Tests for the tenant, admin and billing API.
"""

import json
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketDisconnect

from messaging_engine.auth import AuthContext, UserRole
from messaging_engine.ledger.store import LedgerStore
from messaging_engine.persistence.models import Platform
from messaging_engine.persistence.repo import MessagingRepository
from relaycore.security import sign_payload
from relaycore.settings import get_settings
from relaycore.timeutil import utcnow


def balance_of(db, tenant_id) -> Decimal:
    return LedgerStore(db).current_balance(tenant_id)


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/v1/balance")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, client):
        response = client.get("/api/v1/balance", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401

    def test_websocket_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/events?token=garbage") as ws:
                ws.receive_text()

        assert exc_info.value.code == 4401

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


class TestSending:
    """POST /conversations/{id}/messages"""

    def test_send_charges_and_sends(self, client, db, tenant, conversation, user_headers, stub_provider):
        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages",
            json={"kind": "text", "text": "Your order has shipped"},
            headers=user_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "SENT"
        assert data["charged"] == "1.00"
        assert stub_provider.sent_messages[0]["text"] == "Your order has shipped"
        assert balance_of(db, tenant.id) == Decimal("9.00")

    def test_provider_failure_is_refunded(self, client, db, tenant, conversation, user_headers, stub_provider):
        stub_provider.fail_next()

        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages",
            json={"text": "Hello"},
            headers=user_headers,
        )

        assert response.status_code == 201
        assert response.json()["status"] == "FAILED"
        assert response.json()["refunded"] is True
        assert balance_of(db, tenant.id) == Decimal("10.00")

    def test_insufficient_credit(self, client, make_tenant, db, headers_for):
        broke = make_tenant("Broke", balance="0")
        repo = MessagingRepository(db)
        repo.create_binding(broke.id, Platform.WHATSAPP, "PHONE-0", "+1", provider="stub")
        conversation, _ = repo.get_or_create_conversation(broke.id, Platform.WHATSAPP, "+1777")
        conversation.last_inbound_at = utcnow()
        db.commit()

        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages",
            json={"text": "Hello"},
            headers=headers_for(AuthContext(tenant_id=broke.id, user_id=uuid4())),
        )

        assert response.status_code == 402
        assert response.json()["error"]["code"] == "INSUFFICIENT_CREDIT"

    def test_closed_window(self, client, db, tenant, conversation, user_headers):
        conversation.last_inbound_at = utcnow() - timedelta(days=2)
        db.commit()

        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages",
            json={"text": "Hello"},
            headers=user_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "SESSION_WINDOW_CLOSED"
        assert balance_of(db, tenant.id) == Decimal("10.00")

    def test_other_tenant(self, client, conversation, make_tenant, headers_for):
        outsider = make_tenant("Globex")

        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages",
            json={"text": "Hello"},
            headers=headers_for(AuthContext(tenant_id=outsider.id, user_id=uuid4())),
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "TENANT_MISMATCH"

    def test_bad_kind_is_a_validation_error(self, client, conversation, user_headers):
        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages",
            json={"kind": "sticker", "text": "Hello"},
            headers=user_headers,
        )

        assert response.status_code == 422


class TestConversations:
    def test_list_get_and_session(self, client, conversation, user_headers):
        listed = client.get("/api/v1/conversations", headers=user_headers).json()
        single = client.get(f"/api/v1/conversations/{conversation.id}", headers=user_headers).json()
        session = client.get(f"/api/v1/conversations/{conversation.id}/session", headers=user_headers).json()

        assert [c["id"] for c in listed] == [str(conversation.id)]
        assert single["contact_name"] == "Priya"
        assert session["state"] == "OPEN"

    def test_messages_and_assignment(self, client, conversation, user_headers):
        client.post(f"/api/v1/conversations/{conversation.id}/messages", json={"text": "Hi"}, headers=user_headers)
        agent_id = str(uuid4())

        messages = client.get(f"/api/v1/conversations/{conversation.id}/messages", headers=user_headers).json()
        assigned = client.post(
            f"/api/v1/conversations/{conversation.id}/assign", json={"agent_id": agent_id}, headers=user_headers
        ).json()

        assert [m["body"] for m in messages] == ["Hi"]
        assert assigned["assigned_agent_id"] == agent_id

    def test_missing_conversation(self, client, tenant, user_headers):
        response = client.get(f"/api/v1/conversations/{uuid4()}", headers=user_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CONVERSATION_NOT_FOUND"


class TestBalanceAndLedger:
    def test_balance(self, client, tenant, user_headers):
        assert client.get("/api/v1/balance", headers=user_headers).json() == {
            "tenant_id": str(tenant.id),
            "balance": "10.00",
        }

    def test_ledger(self, client, tenant, user_headers):
        entries = client.get("/api/v1/ledger", headers=user_headers).json()

        assert len(entries) == 1
        assert entries[0]["kind"] == "ADMIN_CREDIT"
        assert Decimal(str(entries[0]["amount"])) == Decimal("10.00")


class TestAdmin:
    """Platform admin endpoints."""

    def test_finance_admin_credit(self, client, db, tenant, admin_headers, admin_id):
        response = client.post(
            f"/api/v1/admin/tenants/{tenant.id}/balance",
            json={"amount": "25", "reason": "Goodwill"},
            headers=admin_headers(UserRole.FINANCE_ADMIN),
        )

        assert response.status_code == 201
        assert response.json()["actor_id"] == str(admin_id)
        assert balance_of(db, tenant.id) == Decimal("35.00")

    def test_user_cannot_adjust(self, client, tenant, user_headers):
        response = client.post(
            f"/api/v1/admin/tenants/{tenant.id}/balance", json={"amount": "25"}, headers=user_headers
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"

    def test_debit_beyond_balance(self, client, tenant, admin_headers):
        response = client.post(
            f"/api/v1/admin/tenants/{tenant.id}/balance",
            json={"amount": "-11", "reason": "Chargeback"},
            headers=admin_headers(),
        )

        assert response.status_code == 402

    def test_suspend_blocks_sending(self, client, tenant, conversation, admin_headers, user_headers):
        response = client.post(
            f"/api/v1/admin/tenants/{tenant.id}/status",
            json={"status": "SUSPENDED"},
            headers=admin_headers(UserRole.COMPLIANCE_ADMIN),
        )
        assert response.json()["status"] == "SUSPENDED"

        send = client.post(
            f"/api/v1/conversations/{conversation.id}/messages", json={"text": "Hi"}, headers=user_headers
        )

        assert send.status_code == 403
        assert send.json()["error"]["code"] == "TENANT_SUSPENDED"

    def test_admin_reads_any_balance(self, client, tenant, admin_headers):
        response = client.get(f"/api/v1/admin/tenants/{tenant.id}/balance", headers=admin_headers(UserRole.SUPPORT_ADMIN))

        assert response.json()["balance"] == "10.00"


class TestAutomationRules:
    def test_crud(self, client, tenant, user_headers):
        created = client.post(
            "/api/v1/automation/rules",
            json={"name": "Hi", "trigger_type": "EXACT_MATCH", "keywords": ["Hi"], "response_text": "Hello!"},
            headers=user_headers,
        )
        assert created.status_code == 201
        rule_id = created.json()["id"]
        assert created.json()["keywords"] == ["hi"]

        patched = client.patch(
            f"/api/v1/automation/rules/{rule_id}", json={"is_active": False}, headers=user_headers
        )
        assert patched.json()["is_active"] is False
        assert patched.json()["response_text"] == "Hello!"

        assert client.delete(f"/api/v1/automation/rules/{rule_id}", headers=user_headers).status_code == 204
        assert client.get("/api/v1/automation/rules", headers=user_headers).json() == []

    def test_blank_keywords_rejected(self, client, tenant, user_headers):
        response = client.post(
            "/api/v1/automation/rules",
            json={"name": "Empty", "trigger_type": "KEYWORD_MATCH", "keywords": [" "], "response_text": "x"},
            headers=user_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_AUTOMATION_RULE"

    def test_reorder(self, client, tenant, user_headers):
        ids = [
            client.post(
                "/api/v1/automation/rules",
                json={"name": name, "trigger_type": "EXACT_MATCH", "keywords": [name], "response_text": name},
                headers=user_headers,
            ).json()["id"]
            for name in ("a", "b")
        ]

        reordered = client.post(
            "/api/v1/automation/rules/reorder", json={"rule_ids": [ids[1]]}, headers=user_headers
        ).json()

        assert [r["name"] for r in reordered] == ["b", "a"]


class TestBilling:
    """Credit pack orders and gateway confirmation."""

    @pytest.fixture
    def gateway_secret(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_WEBHOOK_SECRET", "gw-secret")
        get_settings.cache_clear()
        return "gw-secret"

    def _notify(self, client, order_id, status="paid", secret="gw-secret", payment_id="pay_1"):
        body = json.dumps({"order_id": order_id, "payment_id": payment_id, "status": status}).encode()
        return client.post(
            "/api/v1/billing/webhook", content=body, headers={"X-Gateway-Signature": sign_payload(body, secret)}
        )

    def test_packs(self, client):
        codes = [pack["code"] for pack in client.get("/api/v1/billing/packs").json()]

        assert codes == ["starter", "growth", "enterprise"]

    def test_purchase_flow_credits_once(self, client, db, tenant, user_headers, gateway_secret):
        order = client.post("/api/v1/billing/orders", json={"pack_code": "starter"}, headers=user_headers).json()
        assert order["status"] == "CREATED"

        first = self._notify(client, order["id"])
        second = self._notify(client, order["id"])

        assert first.json() == {"status": "PAID", "order_id": order["id"]}
        assert second.json()["status"] == "PAID"
        assert balance_of(db, tenant.id) == Decimal("1010.00")
        fetched = client.get(f"/api/v1/billing/orders/{order['id']}", headers=user_headers).json()
        assert fetched["paid_at"] is not None

    def test_bad_signature(self, client, tenant, user_headers, gateway_secret):
        order = client.post("/api/v1/billing/orders", json={"pack_code": "starter"}, headers=user_headers).json()

        response = self._notify(client, order["id"], secret="forged")

        assert response.status_code == 403

    def test_unconfigured_secret(self, client, tenant):
        response = self._notify(client, str(uuid4()))

        assert response.status_code == 503

    def test_malformed_notification(self, client, gateway_secret):
        body = b'{"order_id": "not-a-uuid"}'

        response = client.post(
            "/api/v1/billing/webhook", content=body, headers={"X-Gateway-Signature": sign_payload(body, gateway_secret)}
        )

        assert response.status_code == 422

    def test_unknown_pack(self, client, tenant, user_headers):
        response = client.post("/api/v1/billing/orders", json={"pack_code": "platinum"}, headers=user_headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_ADJUSTMENT"
