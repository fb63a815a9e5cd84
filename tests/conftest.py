"""
Pytest fixtures for WhatsApp bridge tests.

Tests run against in-memory SQLite, in-memory tenant settings, stub
adapters and httpx.MockTransport; no network, Postgres or Redis needed.
"""

import json
import os

# Settings are cached on first use; pin them before any bridge import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)
os.environ["BRIDGE_USE_STUB_ADAPTERS"] = "false"

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from basecore.db import Base
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.dispatch.dispatcher import WebhookDispatcher
from whatsapp_bridge.persistence import models  # noqa: F401
from whatsapp_bridge.providers.evolution import EvolutionConfig
from whatsapp_bridge.providers.meta_cloud import CloudConfig
from whatsapp_bridge.providers.stub.client import StubAdapter
from whatsapp_bridge.routing.tenant_settings import InMemorySettingsSource, SettingsCache, TenantSettings
from whatsapp_bridge.service.message_store import MessageStore

GENERAL_URL = "https://hooks.example.com/general"
CLOUD_URL = "https://hooks.example.com/cloud"
PHONE_NUMBER_ID = "PHONE_123"
INSTANCE_NAME = "tenant2_instance"


class WebhookRecorder:
    """MockTransport handler that records webhook POSTs and answers with a fixed status."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})

    @property
    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]


class StubAdapterFactory:
    """Adapter factory handing out pre-configured stub adapters per backend."""

    def __init__(self):
        self.adapters: dict[BackendKind, StubAdapter] = {}
        self.built: list[StubAdapter] = []

    def __call__(self, backend_kind, config):
        template = self.adapters.get(backend_kind)
        adapter = template or StubAdapter(backend_kind=backend_kind)
        self.built.append(adapter)
        return adapter


@pytest.fixture
def session_factory():
    """Sessionmaker bound to a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return MessageStore(session_factory)


@pytest.fixture
def tenant_settings():
    """Tenant 2: QR and Cloud backends, general URL W1 and cloud URL W2."""
    return TenantSettings(
        tenant_id=2,
        tenant_name="Loja Dois",
        backends={
            BackendKind.QR: EvolutionConfig(
                api_url="https://evolution.example.com",
                api_key="evo-key",
                instance_name=INSTANCE_NAME,
            ),
            BackendKind.CLOUD: CloudConfig(phone_number_id=PHONE_NUMBER_ID, access_token="cloud-token"),
        },
        general_webhook_url=GENERAL_URL,
        cloud_webhook_url=CLOUD_URL,
    )


@pytest.fixture
def settings_source(tenant_settings):
    return InMemorySettingsSource([tenant_settings])


@pytest.fixture
def settings_cache(settings_source):
    return SettingsCache(settings_source)


@pytest.fixture
def webhook_recorder():
    return WebhookRecorder()


@pytest.fixture
def webhook_client(webhook_recorder):
    return httpx.AsyncClient(transport=httpx.MockTransport(webhook_recorder))


@pytest.fixture
def dispatcher(settings_cache, webhook_client):
    return WebhookDispatcher(settings_cache, client=webhook_client)


@pytest.fixture
def adapter_factory():
    return StubAdapterFactory()


@pytest.fixture
def sample_phone():
    """Sample contact phone number."""
    return "5511888888888"


def meta_callback(value: dict) -> dict:
    """Wrap a ``changes[].value`` object in a Meta callback envelope."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_123456",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "5511999999999",
                                "phone_number_id": PHONE_NUMBER_ID,
                            },
                            **value,
                        },
                        "field": "messages",
                    }
                ],
            }
        ],
    }


@pytest.fixture
def meta_text_message_webhook():
    """Sample Meta webhook for a text message."""
    return meta_callback(
        {
            "contacts": [
                {
                    "profile": {"name": "John Doe"},
                    "wa_id": "5511888888888",
                }
            ],
            "messages": [
                {
                    "from": "5511888888888",
                    "id": "wamid.HBgM",
                    "timestamp": "1704067200",
                    "text": {"body": "Preciso de cimento"},
                    "type": "text",
                }
            ],
        }
    )


@pytest.fixture
def meta_status_webhook():
    """Sample Meta webhook for a status update."""
    return meta_callback(
        {
            "statuses": [
                {
                    "id": "wamid.sent",
                    "status": "delivered",
                    "timestamp": "1704067200",
                    "recipient_id": "5511888888888",
                }
            ],
        }
    )


@pytest.fixture
def evolution_message_webhook():
    """Sample Evolution webhook for a text message to tenant 2's instance."""
    return {
        "event": "messages.upsert",
        "instance": INSTANCE_NAME,
        "data": {
            "key": {
                "id": "3EB0C767D26A",
                "remoteJid": "5511888888888@s.whatsapp.net",
                "fromMe": False,
            },
            "pushName": "John Doe",
            "message": {"conversation": "Oi, tudo bem?"},
            "messageType": "conversation",
            "messageTimestamp": 1704067100,
        },
    }
