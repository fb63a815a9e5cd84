"""
Meta Cloud API Adapter

Official WhatsApp Business Cloud API backend.
Implements the Graph API v18.0+ for sending messages and checking the
configured phone number.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from whatsapp_bridge.contracts.envelope import utc_now
from whatsapp_bridge.contracts.event_types import BackendKind, ConnectionState
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageType
from whatsapp_bridge.errors import ConfigurationError, ProviderRejected
from whatsapp_bridge.providers.base import (
    ConnectResult,
    InboundMessage,
    ParsedCallback,
    SendResult,
    StateSnapshot,
    StatusUpdate,
    UpstreamAdapter,
)

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v18.0"
GRAPH_API_HOST = "https://graph.facebook.com"

# OAuthException: expired or invalid access token
AUTH_ERROR_CODES = frozenset({190})

MESSAGE_TYPE_MAPPING = {
    "text": MessageType.TEXT,
    "image": MessageType.IMAGE,
    "sticker": MessageType.IMAGE,
    "video": MessageType.VIDEO,
    "audio": MessageType.AUDIO,
    "document": MessageType.DOCUMENT,
}

STATUS_MAPPING = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.DELIVERED,
    "failed": DeliveryStatus.FAILED,
}


@dataclass(frozen=True)
class CloudConfig:
    """Per-tenant Cloud API configuration."""

    phone_number_id: str
    access_token: str
    business_account_id: str | None = None
    api_version: str = GRAPH_API_VERSION

    def validate(self) -> None:
        missing = [name for name in ("phone_number_id", "access_token") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                message=f"Cloud API configuration missing: {', '.join(missing)}",
                code="CLOUD_CONFIG",
                details={"missing": missing},
            )

    @property
    def base_url(self) -> str:
        return f"{GRAPH_API_HOST}/{self.api_version}"


def _parse_epoch(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return utc_now()


class MetaCloudAdapter(UpstreamAdapter):
    """
    Meta Cloud API adapter.

    Auth is a bearer token. There is no session to pair: the number is
    CONNECTED while the Graph API answers for the configured phone_number_id.
    """

    backend_kind = BackendKind.CLOUD

    def __init__(
        self,
        config: CloudConfig,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        config.validate()
        super().__init__(timeout=timeout, client=client)
        self.config = config
        self.phone_number_id = config.phone_number_id

    def _default_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.access_token}",
        }

    async def _make_request(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            method,
            f"{self.config.base_url}{path}",
            json_data,
            auth_error_codes=AUTH_ERROR_CODES,
        )

    async def get_state(self) -> StateSnapshot:
        """
        Look up the configured phone number.

        A 4xx other than an auth failure (e.g. the number was removed from
        the business account) reads as DISCONNECTED.
        """
        try:
            response = await self._make_request(
                "GET",
                f"/{self.phone_number_id}?fields=id,display_phone_number,verified_name",
            )
        except ProviderRejected as e:
            logger.warning(
                f"Cloud API phone number lookup rejected: {e}",
                extra={"phone_number_id": self.phone_number_id, "code": e.code},
            )
            return StateSnapshot(state=ConnectionState.DISCONNECTED, raw_response=e.details)

        return StateSnapshot(
            state=ConnectionState.CONNECTED,
            phone=response.get("display_phone_number"),
            raw_response=response,
        )

    async def connect(self) -> ConnectResult:
        """Cloud numbers need no pairing; connecting validates the credentials."""
        snapshot = await self.get_state()
        return ConnectResult(state=snapshot.state, raw_response=snapshot.raw_response)

    async def send_message(self, contact_id: str, body: str) -> SendResult:
        """Send a text message via Graph API."""
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": contact_id,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }

        response = await self._make_request("POST", f"/{self.phone_number_id}/messages", payload)
        messages = response.get("messages") or [{}]
        message_id = messages[0].get("id")

        logger.info(
            "Sent text message via Meta API",
            extra={"to": contact_id, "message_id": message_id},
        )
        return SendResult(provider_message_id=message_id, raw_response=response)

    def parse_inbound(self, payload: dict[str, Any]) -> ParsedCallback:
        """
        Parse a Meta webhook payload.

        Walks ``entry[].changes[].value`` for ``messages`` and ``statuses``;
        the tenant is identified by ``value.metadata.phone_number_id``.
        """
        return parse_callback(payload)


def parse_callback(payload: dict[str, Any]) -> ParsedCallback:
    """Parse a Cloud API callback body without needing tenant credentials."""
    result = ParsedCallback()

    if payload.get("object") != "whatsapp_business_account":
        return result

    for entry in payload.get("entry", []):
        for change in entry.get("changes", []):
            if change.get("field") != "messages":
                continue

            value = change.get("value", {})
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
            if not phone_number_id:
                logger.warning("Cloud callback change without phone_number_id, skipping")
                continue

            contacts = {c.get("wa_id"): c for c in value.get("contacts", [])}

            for msg_data in value.get("messages", []):
                msg = _parse_message(phone_number_id, contacts, msg_data)
                if msg:
                    result.messages.append(msg)

            for status_data in value.get("statuses", []):
                status = _parse_status(phone_number_id, status_data)
                if status:
                    result.statuses.append(status)

    return result


def _parse_message(
    phone_number_id: str,
    contacts: dict[str, dict[str, Any]],
    msg_data: dict[str, Any],
) -> InboundMessage | None:
    """Parse a single message from webhook."""
    message_id = msg_data.get("id")
    sender = msg_data.get("from")
    if not message_id or not sender:
        logger.warning("Cloud message without id or sender, skipping")
        return None

    raw_type = msg_data.get("type", "unknown")
    msg_type = MESSAGE_TYPE_MAPPING.get(raw_type)

    if msg_type == MessageType.TEXT:
        body = (msg_data.get("text") or {}).get("body") or ""
    elif msg_type is not None:
        media = msg_data.get(raw_type) or {}
        body = media.get("caption") or f"[{msg_type.value}]"
    else:
        msg_type = MessageType.TEXT
        body = f"[unsupported message: {raw_type}]"

    contact = contacts.get(sender) or {}

    return InboundMessage(
        route_key=phone_number_id,
        message_id=message_id,
        contact_id=sender,
        message_type=msg_type,
        body=body,
        timestamp=_parse_epoch(msg_data.get("timestamp")),
        contact_name=(contact.get("profile") or {}).get("name"),
        raw_payload=msg_data,
    )


def _parse_status(phone_number_id: str, status_data: dict[str, Any]) -> StatusUpdate | None:
    """Parse a single status update from webhook."""
    status = STATUS_MAPPING.get(status_data.get("status", ""))
    message_id = status_data.get("id")
    if not message_id or status is None:
        return None

    error_code = None
    error_message = None
    errors = status_data.get("errors", [])
    if errors:
        error = errors[0]
        error_code = str(error.get("code", ""))
        error_message = error.get("message") or error.get("title")

    return StatusUpdate(
        route_key=phone_number_id,
        message_id=message_id,
        contact_id=status_data.get("recipient_id", ""),
        status=status,
        timestamp=_parse_epoch(status_data.get("timestamp")),
        error_code=error_code,
        error_message=error_message,
    )
