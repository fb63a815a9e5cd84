"""
Evolution API Adapter

QR-session backend (Baileys-based WhatsApp Web integration).
Each tenant has its own instance identified by instance_name.

Documentation: https://doc.evolution-api.com/
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from whatsapp_bridge.contracts.envelope import utc_now
from whatsapp_bridge.contracts.event_types import BackendKind, ConnectionState
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageType
from whatsapp_bridge.errors import ConfigurationError, MalformedProviderResponse
from whatsapp_bridge.providers.base import (
    ConnectionUpdate,
    ConnectResult,
    Contact,
    InboundMessage,
    ParsedCallback,
    SendResult,
    StateSnapshot,
    StatusUpdate,
    UpstreamAdapter,
)

logger = logging.getLogger(__name__)

USER_JID_SUFFIX = "@s.whatsapp.net"

# connectionState "state" values reported by Evolution / Baileys
STATE_MAPPING = {
    "open": ConnectionState.CONNECTED,
    "connected": ConnectionState.CONNECTED,
    "connecting": ConnectionState.CONNECTING,
    "close": ConnectionState.DISCONNECTED,
    "closed": ConnectionState.DISCONNECTED,
    "disconnected": ConnectionState.DISCONNECTED,
    "refused": ConnectionState.DISCONNECTED,
}

MESSAGE_TYPE_MAPPING = {
    "conversation": MessageType.TEXT,
    "extendedTextMessage": MessageType.TEXT,
    "imageMessage": MessageType.IMAGE,
    "stickerMessage": MessageType.IMAGE,
    "videoMessage": MessageType.VIDEO,
    "audioMessage": MessageType.AUDIO,
    "documentMessage": MessageType.DOCUMENT,
    "documentWithCaptionMessage": MessageType.DOCUMENT,
}

# Baileys ack names and numeric codes
STATUS_MAPPING = {
    "ERROR": DeliveryStatus.FAILED,
    "PENDING": DeliveryStatus.PENDING,
    "SERVER_ACK": DeliveryStatus.SENT,
    "SENT": DeliveryStatus.SENT,
    "DELIVERY_ACK": DeliveryStatus.DELIVERED,
    "DELIVERED": DeliveryStatus.DELIVERED,
    "READ": DeliveryStatus.DELIVERED,
    "PLAYED": DeliveryStatus.DELIVERED,
    "0": DeliveryStatus.FAILED,
    "1": DeliveryStatus.PENDING,
    "2": DeliveryStatus.SENT,
    "3": DeliveryStatus.DELIVERED,
    "4": DeliveryStatus.DELIVERED,
    "5": DeliveryStatus.DELIVERED,
}


@dataclass(frozen=True)
class EvolutionConfig:
    """Per-tenant QR backend configuration."""

    api_url: str
    api_key: str
    instance_name: str

    def validate(self) -> None:
        missing = [name for name in ("api_url", "api_key", "instance_name") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                message=f"Evolution configuration missing: {', '.join(missing)}",
                code="EVOLUTION_CONFIG",
                details={"missing": missing},
            )


def normalize_jid(jid: str) -> str:
    """Strip the user JID suffix; group JIDs are kept whole."""
    if jid.endswith(USER_JID_SUFFIX):
        return jid[: -len(USER_JID_SUFFIX)]
    return jid


def normalize_event_name(event: str) -> str:
    """Webhook events arrive as "messages.upsert" or "MESSAGES_UPSERT" depending on config."""
    return event.strip().lower().replace("_", ".")


def _parse_epoch(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return utc_now()


class EvolutionAdapter(UpstreamAdapter):
    """
    Evolution API adapter.

    Auth is a single ``apikey`` header on every request. State comes from
    ``GET /instance/connectionState/{instance}`` where "open" means connected.
    """

    backend_kind = BackendKind.QR

    def __init__(
        self,
        config: EvolutionConfig,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize Evolution API adapter.

        Args:
            config: Tenant's Evolution configuration
            timeout: HTTP request timeout
            client: Optional pre-built HTTP client (tests inject a MockTransport client)
        """
        config.validate()
        super().__init__(timeout=timeout, client=client)
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self.instance_name = config.instance_name

    def _default_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "apikey": self.config.api_key,
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._request(method, f"{self.api_url}{endpoint}", json_data)

    async def get_state(self) -> StateSnapshot:
        """Query ``/instance/connectionState/{instance}``."""
        response = await self._make_request("GET", f"/instance/connectionState/{self.instance_name}")
        instance = response.get("instance") if isinstance(response.get("instance"), dict) else response

        raw_state = instance.get("state") or response.get("state")
        if raw_state is None and isinstance(response.get("connected"), bool):
            raw_state = "open" if response["connected"] else "close"

        state = STATE_MAPPING.get(str(raw_state).lower()) if raw_state is not None else None
        if state is None:
            raise MalformedProviderResponse(
                message=f"Unrecognized connection state: {raw_state!r}",
                code="UNKNOWN_STATE",
                details=response,
            )

        return StateSnapshot(
            state=state,
            phone=instance.get("owner") or instance.get("number"),
            raw_response=response,
        )

    async def connect(self) -> ConnectResult:
        """
        Start pairing via ``/instance/connect/{instance}``.

        Returns CONNECTING with a QR code, or CONNECTED when the instance is
        already open.
        """
        response = await self._make_request("GET", f"/instance/connect/{self.instance_name}")

        instance = response.get("instance")
        if isinstance(instance, dict) and STATE_MAPPING.get(str(instance.get("state")).lower()) == ConnectionState.CONNECTED:
            return ConnectResult(state=ConnectionState.CONNECTED, raw_response=response)

        qrcode = response.get("qrcode") if isinstance(response.get("qrcode"), dict) else {}
        qr_code = response.get("base64") or qrcode.get("base64") or response.get("code") or qrcode.get("code")
        if not qr_code:
            raise MalformedProviderResponse(
                message="Connect response carried neither a QR code nor an open state",
                code="NO_QR_CODE",
                details=response,
            )

        logger.info(
            "Evolution instance waiting for QR scan",
            extra={"instance": self.instance_name},
        )
        return ConnectResult(state=ConnectionState.CONNECTING, qr_code=qr_code, raw_response=response)

    async def send_message(self, contact_id: str, body: str) -> SendResult:
        """Send a text message via ``/message/sendText/{instance}``."""
        response = await self._make_request(
            "POST",
            f"/message/sendText/{self.instance_name}",
            {"number": contact_id, "text": body},
        )
        key = response.get("key") if isinstance(response.get("key"), dict) else {}
        message_id = key.get("id") or response.get("id")

        logger.info(
            "Sent text message via Evolution API",
            extra={"to": contact_id, "message_id": message_id, "instance": self.instance_name},
        )
        return SendResult(provider_message_id=message_id, raw_response=response)

    async def list_contacts(self) -> list[Contact]:
        """List contacts via ``POST /chat/findContacts/{instance}``."""
        response = await self._make_request("POST", f"/chat/findContacts/{self.instance_name}", {})
        items = response.get("items", response.get("contacts", []))

        contacts: list[Contact] = []
        for item in items:
            jid = item.get("remoteJid") or item.get("id") or ""
            if not jid.endswith(USER_JID_SUFFIX):
                continue
            contacts.append(Contact(contact_id=normalize_jid(jid), name=item.get("pushName") or item.get("name")))
        return contacts

    def parse_inbound(self, payload: dict[str, Any]) -> ParsedCallback:
        return parse_callback(payload)


def parse_callback(payload: dict[str, Any]) -> ParsedCallback:
    """
    Parse an Evolution webhook payload.

    Evolution API webhook format:
    {
        "event": "messages.upsert",
        "instance": "instance_name",
        "data": {
            "key": {"id": "...", "remoteJid": "...", "fromMe": false},
            "message": {...},
            "messageType": "conversation",
            "messageTimestamp": 1234567890,
        }
    }
    """
    result = ParsedCallback()
    instance_name = payload.get("instance") or ""
    if isinstance(instance_name, dict):
        instance_name = instance_name.get("instanceName") or ""
    event = normalize_event_name(payload.get("event") or "")
    data = payload.get("data") or {}

    if not instance_name or not event:
        return result

    if event == "messages.upsert":
        if isinstance(data, list):
            items = data
        else:
            items = data.get("messages") or [data]
        for item in items:
            msg = _parse_message(instance_name, item)
            if msg:
                result.messages.append(msg)

    elif event == "messages.update":
        items = data if isinstance(data, list) else [data]
        for item in items:
            status = _parse_status(instance_name, item)
            if status:
                result.statuses.append(status)

    elif event == "connection.update":
        state = STATE_MAPPING.get(str(data.get("state", "")).lower())
        if state:
            result.connection_updates.append(ConnectionUpdate(route_key=instance_name, state=state))

    elif event == "qrcode.updated":
        qrcode = data.get("qrcode") if isinstance(data.get("qrcode"), dict) else data
        qr_code = qrcode.get("base64") or qrcode.get("code")
        if qr_code:
            result.connection_updates.append(
                ConnectionUpdate(route_key=instance_name, state=ConnectionState.CONNECTING, qr_code=qr_code)
            )

    else:
        logger.debug(f"Ignoring Evolution event {event}", extra={"instance": instance_name})

    return result


def _parse_message(instance_name: str, data: dict[str, Any]) -> InboundMessage | None:
    """Parse a single message from messages.upsert."""
    key = data.get("key") or {}
    message_id = key.get("id")
    remote_jid = key.get("remoteJid") or ""

    if not message_id or not remote_jid:
        logger.warning("Evolution message without key, skipping", extra={"instance": instance_name})
        return None

    if key.get("fromMe"):
        # Echo of a message sent from the paired phone
        return None

    message_data = data.get("message") or {}
    raw_type = data.get("messageType") or next(iter(message_data), "conversation")
    msg_type = MESSAGE_TYPE_MAPPING.get(raw_type)

    if raw_type == "conversation":
        body = message_data.get("conversation") or ""
    elif raw_type == "extendedTextMessage":
        body = (message_data.get("extendedTextMessage") or {}).get("text") or ""
    elif msg_type is not None:
        media = message_data.get(raw_type) or {}
        body = media.get("caption") or f"[{msg_type.value}]"
    else:
        msg_type = MessageType.TEXT
        body = f"[unsupported message: {raw_type}]"

    return InboundMessage(
        route_key=instance_name,
        message_id=message_id,
        contact_id=normalize_jid(remote_jid),
        message_type=msg_type,
        body=body,
        timestamp=_parse_epoch(data.get("messageTimestamp")),
        contact_name=data.get("pushName"),
        raw_payload=data,
    )


def _parse_status(instance_name: str, data: dict[str, Any]) -> StatusUpdate | None:
    """Parse a status update from messages.update."""
    key = data.get("key") or {}
    update = data.get("update") or {}

    message_id = key.get("id") or data.get("keyId")
    remote_jid = key.get("remoteJid") or data.get("remoteJid") or ""
    raw_status = update.get("status", data.get("status"))

    status = STATUS_MAPPING.get(str(raw_status).upper()) if raw_status is not None else None
    if not message_id or status is None:
        logger.debug(
            f"Ignoring Evolution status update {raw_status!r}",
            extra={"instance": instance_name, "message_id": message_id},
        )
        return None

    return StatusUpdate(
        route_key=instance_name,
        message_id=message_id,
        contact_id=normalize_jid(remote_jid),
        status=status,
        timestamp=_parse_epoch(data.get("messageTimestamp") or data.get("dateTime")),
    )
