"""
Tests for the HTTP surface: provider callbacks and tenant operations.
"""

import hashlib
import hmac
import json

import pytest
from conftest import CLOUD_URL, GENERAL_URL
from fastapi.testclient import TestClient

from basecore.settings import Settings
from whatsapp_bridge.api import create_app
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.errors import ProviderRejected
from whatsapp_bridge.providers.stub.client import StubAdapter
from whatsapp_bridge.service.runtime import BridgeRuntime

APP_SECRET = "meta-app-secret"
EVOLUTION_KEY = "evo-webhook-key"
VERIFY_TOKEN = "verify-me"


@pytest.fixture
def runtime(settings_source, session_factory, adapter_factory, webhook_client):
    return BridgeRuntime.build(
        source=settings_source,
        session_factory=session_factory,
        adapter_factory=adapter_factory,
        webhook_client=webhook_client,
        schedule_polling=False,
    )


@pytest.fixture
def app_settings():
    return Settings(
        META_VERIFY_TOKEN=VERIFY_TOKEN,
        META_APP_SECRET=APP_SECRET,
        EVOLUTION_WEBHOOK_API_KEY=EVOLUTION_KEY,
    )


@pytest.fixture
def app(runtime, app_settings):
    return create_app(runtime=runtime, settings=app_settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def signed(payload: dict) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode("utf-8")
    signature = hmac.new(APP_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return body, {"X-Hub-Signature-256": f"sha256={signature}", "Content-Type": "application/json"}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "whatsapp-bridge"}

    def test_status(self, client):
        response = client.get("/status")

        assert response.status_code == 200
        assert response.json() == {"monitored": [], "pending_webhooks": 0}


class TestMetaWebhook:
    """Meta subscription handshake and callbacks."""

    def test_verify_subscription(self, client):
        response = client.get(
            "/webhook/meta",
            params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "1158201444"},
        )

        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_verify_subscription_wrong_token(self, client):
        response = client.get(
            "/webhook/meta",
            params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1158201444"},
        )

        assert response.status_code == 403

    def test_signed_message_is_accepted(self, app, webhook_recorder, meta_text_message_webhook):
        body, headers = signed(meta_text_message_webhook)

        # Leaving the client runs shutdown, which drains the webhook queues
        with TestClient(app) as client:
            response = client.post("/webhook/meta", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert response.json()["messages"] == 1
        assert webhook_recorder.urls == [CLOUD_URL]
        assert webhook_recorder.bodies[0]["event"] == "message_received"

    def test_bad_signature_is_rejected(self, client, meta_text_message_webhook):
        body = json.dumps(meta_text_message_webhook).encode("utf-8")

        response = client.post(
            "/webhook/meta",
            content=body,
            headers={"X-Hub-Signature-256": "sha256=forged", "Content-Type": "application/json"},
        )

        assert response.status_code == 403

    def test_invalid_json(self, client):
        response = client.post("/webhook/meta", content=b"not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400

    def test_other_object_is_ignored(self, client):
        body, headers = signed({"object": "instagram", "entry": []})

        response = client.post("/webhook/meta", content=body, headers=headers)

        assert response.json() == {"status": "ignored", "reason": "unknown_object"}


class TestEvolutionWebhook:
    """Evolution API callbacks."""

    def test_message_is_accepted(self, app, webhook_recorder, evolution_message_webhook):
        with TestClient(app) as client:
            response = client.post("/webhook/evolution", json=evolution_message_webhook, headers={"apikey": EVOLUTION_KEY})

        assert response.status_code == 200
        assert response.json()["messages"] == 1
        assert webhook_recorder.urls == [GENERAL_URL]

    def test_wrong_api_key(self, client, evolution_message_webhook):
        response = client.post("/webhook/evolution", json=evolution_message_webhook, headers={"apikey": "nope"})

        assert response.status_code == 403

    def test_no_instance(self, client):
        response = client.post("/webhook/evolution", json={"event": "messages.upsert"}, headers={"apikey": EVOLUTION_KEY})

        assert response.json() == {"status": "ignored", "reason": "no_instance"}


class TestTenantOperations:
    """Conversations, sends, connection checks and settings refresh."""

    def test_send_and_read_conversation(self, client, sample_phone):
        response = client.post(
            "/tenants/2/messages",
            json={"backend_kind": "cloud", "contact_id": sample_phone, "body": "Seu pedido saiu"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "sent"

        conversation = client.get(f"/tenants/2/conversations/{sample_phone}").json()
        assert conversation["tenantId"] == 2
        assert [message["body"] for message in conversation["messages"]] == ["Seu pedido saiu"]
        assert conversation["messages"][0]["deliveryStatus"] == "sent"

        contacts = client.get("/tenants/2/contacts").json()
        assert contacts["contacts"][0]["contactId"] == sample_phone

    def test_send_failure(self, client, adapter_factory, sample_phone):
        adapter_factory.adapters[BackendKind.QR] = StubAdapter(
            send_error=ProviderRejected(message="Number not on WhatsApp", code="400")
        )

        response = client.post(
            "/tenants/2/messages",
            json={"backend_kind": "qr", "contact_id": sample_phone, "body": "Oi"},
        )

        assert response.status_code == 502
        assert response.json()["detail"] == "Number not on WhatsApp"

    def test_send_validation(self, client):
        response = client.post("/tenants/2/messages", json={"backend_kind": "qr", "contact_id": "", "body": "Oi"})

        assert response.status_code == 422

    def test_force_check(self, app, webhook_recorder):
        with TestClient(app) as client:
            response = client.post("/tenants/2/connection/check")

        assert response.status_code == 200
        results = response.json()["results"]
        assert [(r["backend_kind"], r["state"], r["event"]) for r in results] == [
            ("cloud", "connected", "connected"),
            ("qr", "connected", "connected"),
        ]
        assert len(webhook_recorder.requests) == 2

    def test_force_check_unknown_tenant(self, client):
        response = client.post("/tenants/99/connection/check")

        assert response.status_code == 404

    def test_connect_qr(self, client):
        response = client.post("/tenants/2/connection/qr/connect")

        assert response.status_code == 200
        assert response.json()["state"] == "connecting"
        assert response.json()["event"] == "qr_code_generated"

    def test_refresh_settings(self, client, settings_source):
        settings_source.remove(2)

        response = client.post("/tenants/2/settings/refresh")

        assert response.json() == {"tenantId": 2, "active": False}
