"""
Tests for Meta Cloud API adapter.
"""

import json

import httpx
import pytest

from whatsapp_bridge.contracts.event_types import BackendKind, ConnectionState
from whatsapp_bridge.errors import AdapterUnavailable, AuthRejected, ConfigurationError
from whatsapp_bridge.providers.evolution import EvolutionConfig
from whatsapp_bridge.providers.factory import get_adapter
from whatsapp_bridge.providers.meta_cloud import CloudConfig, MetaCloudAdapter

CONFIG = CloudConfig(phone_number_id="PHONE_123", access_token="token-abc")


def make_adapter(handler) -> MetaCloudAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MetaCloudAdapter(CONFIG, client=client)


class TestMetaCloudAdapter:
    """Tests for Graph API calls."""

    async def test_get_state_connected(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"id": "PHONE_123", "display_phone_number": "+55 11 99999-9999", "verified_name": "Loja"},
            )

        snapshot = await make_adapter(handler).get_state()

        assert snapshot.state == ConnectionState.CONNECTED
        assert snapshot.phone == "+55 11 99999-9999"
        assert seen[0].url.path == "/v18.0/PHONE_123"
        assert seen[0].headers["Authorization"] == "Bearer token-abc"

    async def test_get_state_expired_token(self):
        adapter = make_adapter(
            lambda request: httpx.Response(
                400,
                json={"error": {"message": "Error validating access token", "type": "OAuthException", "code": 190}},
            )
        )

        with pytest.raises(AuthRejected):
            await adapter.get_state()

    async def test_get_state_unknown_number_is_disconnected(self):
        adapter = make_adapter(
            lambda request: httpx.Response(
                400,
                json={"error": {"message": "Unsupported get request", "type": "GraphMethodException", "code": 100}},
            )
        )

        snapshot = await adapter.get_state()

        assert snapshot.state == ConnectionState.DISCONNECTED

    async def test_get_state_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AdapterUnavailable) as exc_info:
            await make_adapter(handler).get_state()

        assert exc_info.value.code == "TIMEOUT"

    async def test_connect_validates_number(self):
        adapter = make_adapter(lambda request: httpx.Response(200, json={"id": "PHONE_123"}))

        result = await adapter.connect()

        assert result.state == ConnectionState.CONNECTED
        assert result.qr_code is None

    async def test_send_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "messaging_product": "whatsapp",
                    "contacts": [{"input": "5511888888888", "wa_id": "5511888888888"}],
                    "messages": [{"id": "wamid.OUT1"}],
                },
            )

        result = await make_adapter(handler).send_message("5511888888888", "Seu pedido saiu")

        assert result.provider_message_id == "wamid.OUT1"
        assert seen[0].url.path == "/v18.0/PHONE_123/messages"
        body = json.loads(seen[0].content)
        assert body["to"] == "5511888888888"
        assert body["type"] == "text"
        assert body["text"]["body"] == "Seu pedido saiu"

    def test_config_validation(self):
        with pytest.raises(ConfigurationError):
            MetaCloudAdapter(CloudConfig(phone_number_id="PHONE_123", access_token=""))

    def test_custom_api_version(self):
        config = CloudConfig(phone_number_id="PHONE_123", access_token="t", api_version="v20.0")

        assert config.base_url == "https://graph.facebook.com/v20.0"


class TestAdapterFactory:
    """Tests for building adapters from tenant configuration."""

    def test_builds_cloud_adapter(self):
        adapter = get_adapter(BackendKind.CLOUD, CONFIG)

        assert isinstance(adapter, MetaCloudAdapter)
        assert adapter.backend_kind == BackendKind.CLOUD

    def test_rejects_mismatched_config(self):
        evolution = EvolutionConfig(api_url="https://evo.example.com", api_key="k", instance_name="i")

        with pytest.raises(ConfigurationError) as exc_info:
            get_adapter(BackendKind.CLOUD, evolution)

        assert exc_info.value.code == "BACKEND_MISMATCH"
