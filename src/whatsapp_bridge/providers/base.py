"""
WhatsApp Upstream Adapter Base

Abstract interface over the two upstream WhatsApp backends.
Implementations: Evolution API (QR session), Meta Cloud API, Stub (development).

Callers never branch on the backend: connect, get_state, send_message and
parse_inbound behave the same way for every variant.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from whatsapp_bridge.contracts.event_types import BackendKind, ConnectionState
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageType
from whatsapp_bridge.errors import (
    AdapterUnavailable,
    AuthRejected,
    MalformedProviderResponse,
    ProviderRejected,
)

logger = logging.getLogger(__name__)


@dataclass
class StateSnapshot:
    """Result of a state query against the provider."""

    state: ConnectionState
    phone: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectResult:
    """Result of asking the provider to start (or confirm) a session."""

    state: ConnectionState
    qr_code: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    """Response from provider after sending a message."""

    provider_message_id: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class Contact:
    """Contact known to the provider session."""

    contact_id: str
    name: str | None = None


@dataclass
class InboundMessage:
    """
    Parsed inbound message from a provider callback.

    ``route_key`` identifies the tenant binding: the Cloud phone_number_id or
    the Evolution instance name.
    """

    route_key: str
    message_id: str
    contact_id: str
    message_type: MessageType
    body: str
    timestamp: datetime
    contact_name: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusUpdate:
    """Parsed delivery status update from a provider callback."""

    route_key: str
    message_id: str
    contact_id: str
    status: DeliveryStatus
    timestamp: datetime
    error_code: str | None = None
    error_message: str | None = None


@dataclass
class ConnectionUpdate:
    """Session state pushed by the provider (Evolution connection.update / qrcode.updated)."""

    route_key: str
    state: ConnectionState
    qr_code: str | None = None


@dataclass
class ParsedCallback:
    """Everything extracted from one provider callback body."""

    messages: list[InboundMessage] = field(default_factory=list)
    statuses: list[StatusUpdate] = field(default_factory=list)
    connection_updates: list[ConnectionUpdate] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.messages or self.statuses or self.connection_updates)


def decode_response(
    response: httpx.Response,
    auth_error_codes: frozenset[int] = frozenset(),
) -> dict[str, Any]:
    """
    Decode a provider JSON response or raise the matching bridge error.

    Args:
        response: Provider HTTP response
        auth_error_codes: Provider-specific error codes meaning "bad credentials"

    Returns:
        Decoded JSON object (lists are wrapped as ``{"items": [...]}``)

    Raises:
        AuthRejected: 401/403 or a provider auth error code
        AdapterUnavailable: 5xx
        ProviderRejected: any other 4xx
        MalformedProviderResponse: body is not JSON
    """
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, list):
        data = {"items": data}

    error_code = None
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        error_code = data["error"].get("code")

    if response.status_code in (401, 403) or (error_code is not None and error_code in auth_error_codes):
        raise AuthRejected(
            message=f"Provider rejected credentials (HTTP {response.status_code})",
            code=str(response.status_code),
            details=data if isinstance(data, dict) else {},
        )

    if response.status_code >= 500:
        raise AdapterUnavailable(
            message=f"Provider returned HTTP {response.status_code}",
            code=str(response.status_code),
        )

    if not isinstance(data, dict):
        content_type = response.headers.get("content-type", "")
        raise MalformedProviderResponse(
            message=f"Expected JSON from provider, got {content_type or 'unknown content'}",
            code=str(response.status_code),
            details={"body_preview": response.text[:200]},
        )

    if response.status_code >= 400:
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else error or data.get("message")
        raise ProviderRejected(
            message=str(message or f"HTTP {response.status_code}"),
            code=str(error_code or response.status_code),
            details=data,
        )

    return data


class UpstreamAdapter(ABC):
    """
    Abstract interface for upstream WhatsApp backends.

    Adapters are built from one tenant's backend configuration and raise
    ``AdapterUnavailable``, ``MalformedProviderResponse``, ``AuthRejected``
    or ``ProviderRejected`` on failure.
    """

    backend_kind: BackendKind

    def __init__(
        self,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._default_headers(),
            )
            self._owns_client = True
        return self._client

    def _default_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        url: str,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth_error_codes: frozenset[int] = frozenset(),
    ) -> dict[str, Any]:
        """Make a request with the adapter's fixed auth headers."""
        client = await self._get_client()
        request_headers = {**self._default_headers(), **(headers or {})}

        try:
            response = await client.request(method, url, json=json_data, headers=request_headers)
        except httpx.TimeoutException as e:
            raise AdapterUnavailable(message=f"Provider request timed out: {e}", code="TIMEOUT")
        except httpx.RequestError as e:
            logger.warning(f"HTTP request failed: {e}", extra={"url": url})
            raise AdapterUnavailable(message=f"HTTP request failed: {e}", code="HTTP_ERROR")

        return decode_response(response, auth_error_codes)

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    @abstractmethod
    async def connect(self) -> ConnectResult:
        """
        Start or confirm a session.

        QR backends return a QR code while pairing; Cloud validates the
        configured phone number.
        """
        ...

    @abstractmethod
    async def get_state(self) -> StateSnapshot:
        """Query the live session state."""
        ...

    @abstractmethod
    async def send_message(self, contact_id: str, body: str) -> SendResult:
        """
        Send a text message.

        Args:
            contact_id: Recipient phone number
            body: Message text

        Returns:
            SendResult with the provider message id when available
        """
        ...

    async def list_contacts(self) -> list[Contact]:
        """List contacts known to the session. Backends without a contact book return []."""
        return []

    @abstractmethod
    def parse_inbound(self, payload: dict[str, Any]) -> ParsedCallback:
        """
        Parse a provider callback body.

        Args:
            payload: Parsed JSON callback

        Returns:
            Messages, delivery statuses and connection updates found in the body
        """
        ...
