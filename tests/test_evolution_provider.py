"""
Tests for Evolution API adapter.
"""

import json

import httpx
import pytest

from whatsapp_bridge.contracts.event_types import ConnectionState
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageType
from whatsapp_bridge.errors import (
    AdapterUnavailable,
    AuthRejected,
    ConfigurationError,
    MalformedProviderResponse,
    ProviderRejected,
)
from whatsapp_bridge.providers.evolution import EvolutionAdapter, EvolutionConfig
from whatsapp_bridge.providers.evolution.client import normalize_event_name, parse_callback
from whatsapp_bridge.providers.evolution.webhook import (
    extract_instance_name,
    is_connection_webhook,
    is_message_webhook,
    validate_api_key,
)

CONFIG = EvolutionConfig(api_url="https://evo.example.com/", api_key="test-key", instance_name="test_instance")


def make_adapter(handler) -> EvolutionAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EvolutionAdapter(CONFIG, client=client)


@pytest.fixture
def evolution_text_message_webhook():
    """Sample Evolution API webhook for a text message."""
    return {
        "event": "messages.upsert",
        "instance": "test_instance",
        "data": {
            "key": {
                "id": "msg_123",
                "remoteJid": "5511888888888@s.whatsapp.net",
                "fromMe": False,
            },
            "pushName": "John Doe",
            "message": {
                "conversation": "Preciso de cimento",
            },
            "messageType": "conversation",
            "messageTimestamp": 1704067200,
        },
    }


@pytest.fixture
def evolution_image_webhook():
    """Sample Evolution API webhook for an image with caption."""
    return {
        "event": "MESSAGES_UPSERT",
        "instance": "test_instance",
        "data": {
            "key": {
                "id": "msg_image",
                "remoteJid": "5511888888888@s.whatsapp.net",
            },
            "message": {
                "imageMessage": {"caption": "Foto do pedido", "mimetype": "image/jpeg"},
            },
            "messageType": "imageMessage",
            "messageTimestamp": 1704067260,
        },
    }


@pytest.fixture
def evolution_status_webhook():
    """Sample Evolution API webhook for a status update."""
    return {
        "event": "messages.update",
        "instance": "test_instance",
        "data": {
            "key": {
                "id": "msg_sent",
                "remoteJid": "5511888888888@s.whatsapp.net",
            },
            "update": {
                "status": "READ",
            },
        },
    }


class TestEvolutionWebhookHelpers:
    """Tests for Evolution webhook helpers."""

    def test_extract_instance_name(self, evolution_text_message_webhook):
        assert extract_instance_name(evolution_text_message_webhook) == "test_instance"

    def test_extract_instance_name_from_object(self):
        assert extract_instance_name({"instance": {"instanceName": "inst_obj"}}) == "inst_obj"

    def test_extract_instance_name_missing(self):
        assert extract_instance_name({}) is None

    def test_is_message_webhook(self, evolution_text_message_webhook, evolution_status_webhook):
        assert is_message_webhook(evolution_text_message_webhook) is True
        assert is_message_webhook(evolution_status_webhook) is False

    def test_is_connection_webhook(self):
        assert is_connection_webhook({"event": "CONNECTION_UPDATE"}) is True
        assert is_connection_webhook({"event": "qrcode.updated"}) is True
        assert is_connection_webhook({"event": "messages.upsert"}) is False

    def test_normalize_event_name(self):
        assert normalize_event_name("MESSAGES_UPSERT") == "messages.upsert"
        assert normalize_event_name("messages.update") == "messages.update"

    def test_validate_api_key(self):
        """Test API key validation."""
        headers = {"apikey": "test-key"}
        assert validate_api_key(headers, "test-key") is True
        assert validate_api_key(headers, "wrong-key") is False

    def test_validate_api_key_missing_header(self):
        assert validate_api_key({}, "test-key") is False
        assert validate_api_key({"authorization": "Bearer test-key"}, "test-key") is False

    def test_validate_api_key_empty_expected(self):
        assert validate_api_key({"apikey": ""}, "") is False


class TestEvolutionCallbackParsing:
    """Tests for Evolution callback parsing."""

    def test_parse_text_message(self, evolution_text_message_webhook):
        result = parse_callback(evolution_text_message_webhook)

        assert len(result.messages) == 1
        assert len(result.statuses) == 0

        msg = result.messages[0]
        assert msg.route_key == "test_instance"
        assert msg.message_id == "msg_123"
        assert msg.contact_id == "5511888888888"
        assert msg.contact_name == "John Doe"
        assert msg.message_type == MessageType.TEXT
        assert msg.body == "Preciso de cimento"
        assert msg.timestamp.timestamp() == 1704067200

    def test_parse_extended_text(self, evolution_text_message_webhook):
        data = evolution_text_message_webhook["data"]
        data["messageType"] = "extendedTextMessage"
        data["message"] = {"extendedTextMessage": {"text": "Com link https://example.com"}}

        result = parse_callback(evolution_text_message_webhook)

        assert result.messages[0].body == "Com link https://example.com"

    def test_parse_image_with_caption(self, evolution_image_webhook):
        result = parse_callback(evolution_image_webhook)

        msg = result.messages[0]
        assert msg.message_type == MessageType.IMAGE
        assert msg.body == "Foto do pedido"

    def test_parse_unsupported_message(self, evolution_text_message_webhook):
        data = evolution_text_message_webhook["data"]
        data["messageType"] = "locationMessage"
        data["message"] = {"locationMessage": {"degreesLatitude": -23.5}}

        msg = parse_callback(evolution_text_message_webhook).messages[0]

        assert msg.message_type == MessageType.TEXT
        assert msg.body == "[unsupported message: locationMessage]"

    def test_parse_skips_own_messages(self, evolution_text_message_webhook):
        evolution_text_message_webhook["data"]["key"]["fromMe"] = True

        assert parse_callback(evolution_text_message_webhook).messages == []

    def test_parse_message_list(self, evolution_text_message_webhook, evolution_image_webhook):
        payload = {
            "event": "messages.upsert",
            "instance": "test_instance",
            "data": {"messages": [evolution_text_message_webhook["data"], evolution_image_webhook["data"]]},
        }

        result = parse_callback(payload)

        assert [m.message_id for m in result.messages] == ["msg_123", "msg_image"]

    def test_parse_status_update(self, evolution_status_webhook):
        result = parse_callback(evolution_status_webhook)

        assert len(result.messages) == 0
        assert len(result.statuses) == 1

        status = result.statuses[0]
        assert status.message_id == "msg_sent"
        assert status.status == DeliveryStatus.DELIVERED
        assert status.contact_id == "5511888888888"

    def test_parse_numeric_status(self, evolution_status_webhook):
        evolution_status_webhook["data"]["update"]["status"] = 2

        assert parse_callback(evolution_status_webhook).statuses[0].status == DeliveryStatus.SENT

    def test_parse_connection_update(self):
        result = parse_callback(
            {"event": "connection.update", "instance": "test_instance", "data": {"state": "open"}}
        )

        assert len(result.connection_updates) == 1
        update = result.connection_updates[0]
        assert update.route_key == "test_instance"
        assert update.state == ConnectionState.CONNECTED
        assert update.qr_code is None

    def test_parse_qrcode_updated(self):
        result = parse_callback(
            {
                "event": "QRCODE_UPDATED",
                "instance": "test_instance",
                "data": {"qrcode": {"base64": "data:image/png;base64,AAA", "code": "2@abc"}},
            }
        )

        update = result.connection_updates[0]
        assert update.state == ConnectionState.CONNECTING
        assert update.qr_code == "data:image/png;base64,AAA"

    def test_parse_unknown_event(self):
        """Test parsing unknown event returns empty."""
        assert parse_callback({"event": "unknown", "instance": "test_instance", "data": {}}).is_empty

    def test_parse_without_instance(self, evolution_text_message_webhook):
        del evolution_text_message_webhook["instance"]

        assert parse_callback(evolution_text_message_webhook).is_empty


class TestEvolutionAdapter:
    """Tests for Evolution API adapter HTTP calls."""

    def test_config_validation(self):
        with pytest.raises(ConfigurationError) as exc_info:
            EvolutionAdapter(EvolutionConfig(api_url="https://evo.example.com", api_key="", instance_name=""))

        assert exc_info.value.details["missing"] == ["api_key", "instance_name"]

    async def test_get_state_open(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"instance": {"instanceName": "test_instance", "state": "open"}})

        adapter = make_adapter(handler)
        snapshot = await adapter.get_state()

        assert snapshot.state == ConnectionState.CONNECTED
        assert str(seen[0].url) == "https://evo.example.com/instance/connectionState/test_instance"
        assert seen[0].headers["apikey"] == "test-key"

    @pytest.mark.parametrize(
        "raw_state, expected",
        [
            ("connecting", ConnectionState.CONNECTING),
            ("close", ConnectionState.DISCONNECTED),
            ("refused", ConnectionState.DISCONNECTED),
        ],
    )
    async def test_get_state_mapping(self, raw_state, expected):
        adapter = make_adapter(lambda request: httpx.Response(200, json={"instance": {"state": raw_state}}))

        assert (await adapter.get_state()).state == expected

    async def test_get_state_unknown_value(self):
        adapter = make_adapter(lambda request: httpx.Response(200, json={"instance": {"state": "weird"}}))

        with pytest.raises(MalformedProviderResponse):
            await adapter.get_state()

    async def test_get_state_html_response(self):
        adapter = make_adapter(
            lambda request: httpx.Response(200, text="<html>Bad Gateway</html>", headers={"content-type": "text/html"})
        )

        with pytest.raises(MalformedProviderResponse) as exc_info:
            await adapter.get_state()

        assert isinstance(exc_info.value, AdapterUnavailable)

    async def test_get_state_unauthorized(self):
        adapter = make_adapter(lambda request: httpx.Response(401, json={"error": "Unauthorized"}))

        with pytest.raises(AuthRejected):
            await adapter.get_state()

    async def test_get_state_server_error(self):
        adapter = make_adapter(lambda request: httpx.Response(503, json={"error": "down"}))

        with pytest.raises(AdapterUnavailable):
            await adapter.get_state()

    async def test_get_state_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AdapterUnavailable) as exc_info:
            await make_adapter(handler).get_state()

        assert exc_info.value.code == "HTTP_ERROR"

    async def test_connect_returns_qr_code(self):
        adapter = make_adapter(
            lambda request: httpx.Response(200, json={"code": "2@abc", "base64": "data:image/png;base64,QR"})
        )

        result = await adapter.connect()

        assert result.state == ConnectionState.CONNECTING
        assert result.qr_code == "data:image/png;base64,QR"

    async def test_connect_already_open(self):
        adapter = make_adapter(lambda request: httpx.Response(200, json={"instance": {"state": "open"}}))

        result = await adapter.connect()

        assert result.state == ConnectionState.CONNECTED
        assert result.qr_code is None

    async def test_send_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"key": {"id": "BAE5F00D", "fromMe": True}, "status": "PENDING"})

        result = await make_adapter(handler).send_message("5511888888888", "Olá!")

        assert result.provider_message_id == "BAE5F00D"
        assert str(seen[0].url) == "https://evo.example.com/message/sendText/test_instance"
        assert json.loads(seen[0].content) == {"number": "5511888888888", "text": "Olá!"}

    async def test_send_message_rejected(self):
        adapter = make_adapter(lambda request: httpx.Response(400, json={"message": "number not on WhatsApp"}))

        with pytest.raises(ProviderRejected) as exc_info:
            await adapter.send_message("000", "Olá!")

        assert "number not on WhatsApp" in str(exc_info.value)

    async def test_list_contacts_skips_groups(self):
        adapter = make_adapter(
            lambda request: httpx.Response(
                200,
                json=[
                    {"remoteJid": "5511888888888@s.whatsapp.net", "pushName": "John"},
                    {"remoteJid": "123456789@g.us", "pushName": "Group"},
                ],
            )
        )

        contacts = await adapter.list_contacts()

        assert [(c.contact_id, c.name) for c in contacts] == [("5511888888888", "John")]

    async def test_close_keeps_injected_client(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        adapter = EvolutionAdapter(CONFIG, client=client)

        await adapter.close()

        assert client.is_closed is False
        await client.aclose()
