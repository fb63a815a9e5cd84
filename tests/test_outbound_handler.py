"""
Tests for outbound sends.
"""

import pytest

from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageDirection
from whatsapp_bridge.errors import AdapterUnavailable, AuthRejected
from whatsapp_bridge.providers.stub.client import StubAdapter
from whatsapp_bridge.service.outbound_handler import OutboundHandler


@pytest.fixture
def handler(settings_cache, store, adapter_factory):
    return OutboundHandler(settings_cache, store, adapter_factory)


class TestOutboundHandler:
    """Tests for sending through a tenant backend."""

    async def test_send_records_message(self, handler, store, adapter_factory, sample_phone):
        adapter = StubAdapter(backend_kind=BackendKind.CLOUD)
        adapter_factory.adapters[BackendKind.CLOUD] = adapter

        outcome = await handler.send_message(2, BackendKind.CLOUD, sample_phone, "Seu pedido saiu")

        assert outcome.sent is True
        assert outcome.provider_message_id.startswith("stub_msg_")
        assert adapter.sent_messages[0]["to"] == sample_phone
        assert adapter.closed is True

        [entry] = store.get_conversation(2, sample_phone)
        assert entry.message_id == outcome.message_id
        assert entry.direction == MessageDirection.OUTBOUND
        assert entry.delivery_status == DeliveryStatus.SENT
        assert entry.body == "Seu pedido saiu"

    async def test_provider_failure_records_nothing(self, handler, store, adapter_factory, sample_phone):
        adapter = StubAdapter(send_error=AdapterUnavailable(message="Provider returned HTTP 502", code="502"))
        adapter_factory.adapters[BackendKind.QR] = adapter

        outcome = await handler.send_message(2, BackendKind.QR, sample_phone, "Oi")

        assert outcome.sent is False
        assert outcome.error_code == "502"
        assert adapter.closed is True
        assert store.get_conversation(2, sample_phone) == []

    async def test_auth_failure(self, handler, adapter_factory, sample_phone):
        adapter_factory.adapters[BackendKind.QR] = StubAdapter(
            send_error=AuthRejected(message="Provider rejected credentials (HTTP 401)", code="401")
        )

        outcome = await handler.send_message(2, BackendKind.QR, sample_phone, "Oi")

        assert outcome.sent is False
        assert "credentials" in outcome.error

    async def test_unbound_backend(self, settings_source, settings_cache, store, adapter_factory, tenant_settings, sample_phone):
        settings_source.put(
            type(tenant_settings)(
                tenant_id=7,
                tenant_name="Loja Sete",
                backends={BackendKind.QR: tenant_settings.backends[BackendKind.QR]},
            )
        )
        handler = OutboundHandler(settings_cache, store, adapter_factory)

        outcome = await handler.send_message(7, BackendKind.CLOUD, sample_phone, "Oi")

        assert outcome.sent is False
        assert outcome.error == "No active cloud binding for tenant"
        assert adapter_factory.built == []
