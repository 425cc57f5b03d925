"""
Tests for the provider webhook endpoints.
"""

import json

import pytest
import redis
from fastapi.testclient import TestClient

from messaging_engine.contracts.envelope import StreamEnvelope
from messaging_engine.providers.graph import compute_signature
from messaging_engine.providers.meta_cloud import MetaCloudWhatsAppProvider
from messaging_engine.streams.groups import INBOUND_STREAM
from messaging_engine.streams.producer import StreamProducer
from relay_api.deps import get_stream_producer
from relay_api.main import app
from relaycore.settings import get_settings


def whatsapp_body(phone_number_id="PHONE-1", message_id="wamid.1", **message_fields) -> bytes:
    return json.dumps(
        {
            "object": "whatsapp_business_account",
            "entry": [
                {
                    "id": "WABA-1",
                    "changes": [
                        {
                            "field": "messages",
                            "value": {
                                "metadata": {"phone_number_id": phone_number_id},
                                "contacts": [{"wa_id": "15557770000", "profile": {"name": "Ravi"}}],
                                "messages": [
                                    {
                                        "from": "15557770000",
                                        "id": message_id,
                                        "timestamp": "1710417600",
                                        "type": "text",
                                        "text": {"body": "hi"},
                                        **message_fields,
                                    }
                                ],
                            },
                        }
                    ],
                }
            ],
        }
    ).encode()


class TestVerification:
    """GET /webhook subscription handshake."""

    def test_challenge_echoed(self, client):
        response = client.get(
            "/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "relaydesk_verify_token", "hub.challenge": "42"},
        )

        assert response.status_code == 200
        assert response.text == "42"

    def test_wrong_token(self, client):
        response = client.get(
            "/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "42"}
        )

        assert response.status_code == 403


class TestReceive:
    """POST /webhook queues parsed events."""

    def test_known_channel_is_published(self, client, binding, tenant, stream):
        response = client.post("/webhook", content=whatsapp_body())

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "platform": "whatsapp", "published": 1, "unresolved": 0}
        stream_name, data = stream.added[0]
        assert stream_name == INBOUND_STREAM
        envelope = StreamEnvelope.from_stream_message("1-0", data)
        assert envelope.tenant_id == tenant.id
        assert envelope.correlation_id == "wamid.1"

    def test_unknown_channel_is_counted(self, client, binding, stream):
        response = client.post("/webhook", content=whatsapp_body(phone_number_id="PHONE-X"))

        assert response.json()["unresolved"] == 1
        assert stream.added == []

    def test_invalid_json_ignored(self, client):
        response = client.post("/webhook", content=b"{not json")

        assert response.status_code == 200
        assert response.json() == {"status": "ignored", "reason": "invalid_json"}

    def test_unknown_object_ignored(self, client):
        response = client.post("/webhook", json={"object": "instagram", "entry": []})

        assert response.json()["reason"] == "unknown_object"

    @pytest.mark.parametrize(
        "fields",
        [
            {"text": "hi"},
            {"type": "image", "image": "MEDIA-9"},
            {"context": "wamid.0"},
            {"type": "interactive", "interactive": "yes"},
        ],
    )
    def test_odd_message_fields_still_accepted(self, client, binding, stream, fields):
        response = client.post("/webhook", content=whatsapp_body(**fields))

        assert response.status_code == 200
        assert response.json()["published"] == 1
        assert len(stream.added) == 1

    def test_out_of_range_timestamp_is_dropped(self, client, binding, stream):
        response = client.post("/webhook", content=whatsapp_body(timestamp="1e300"))

        assert response.status_code == 200
        assert response.json()["published"] == 0
        assert stream.added == []

    def test_parser_crash_is_acknowledged(self, client, binding, stream, monkeypatch):
        def explode(self, payload):
            raise KeyError("entry")

        monkeypatch.setattr(MetaCloudWhatsAppProvider, "parse_webhook", explode)

        response = client.post("/webhook", content=whatsapp_body())

        assert response.status_code == 200
        assert response.json() == {"status": "ignored", "reason": "unparseable"}
        assert stream.added == []

    def test_stream_outage_is_a_server_error(self, client, binding):
        """Meta retries on 5xx, so the event is not lost."""
        failing = StreamProducer(_FailingStream())
        app.dependency_overrides[get_stream_producer] = lambda: failing

        response = TestClient(app, raise_server_exceptions=False).post("/webhook", content=whatsapp_body())

        assert response.status_code == 500


class _FailingStream:
    def xadd(self, *args, **kwargs):
        raise redis.ConnectionError("redis down")


class TestSignature:
    """X-Hub-Signature-256 enforcement when an app secret is configured."""

    @pytest.fixture(autouse=True)
    def app_secret(self, monkeypatch):
        monkeypatch.setenv("META_APP_SECRET", "app-secret")
        get_settings.cache_clear()

    def test_valid_signature(self, client, binding):
        body = whatsapp_body()

        response = client.post("/webhook", content=body, headers={"X-Hub-Signature-256": compute_signature(body, "app-secret")})

        assert response.json()["published"] == 1

    def test_missing_signature(self, client, binding, stream):
        response = client.post("/webhook", content=whatsapp_body())

        assert response.status_code == 403
        assert stream.added == []

    def test_signature_for_other_body(self, client, binding):
        signature = compute_signature(whatsapp_body(message_id="wamid.other"), "app-secret")

        response = client.post("/webhook", content=whatsapp_body(), headers={"X-Hub-Signature-256": signature})

        assert response.status_code == 403
