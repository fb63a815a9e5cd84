"""
Bridge Payload Models

Pydantic models for the JSON body POSTed to tenant webhooks, plus the
message enums shared by providers and the message store.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from whatsapp_bridge.contracts.event_types import WebhookEventType


class MessageType(str, Enum):
    """Message kinds kept in the conversation store."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class MessageDirection(str, Enum):
    """Direction of a stored message."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeliveryStatus(str, Enum):
    """
    Delivery status of a stored message.

    Moves forward only: pending -> sent -> delivered, or to failed from any
    non-terminal status.
    """

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)


class WebhookData(BaseModel):
    """
    ``data`` object of an outbound webhook.

    Which optional fields are present depends on the event type and the
    originating backend, never on the caller.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., alias="userId", description="Tenant (dashboard user) ID")
    user_name: str = Field(..., alias="userName", description="Tenant display name")
    connected: bool | None = Field(None, description="Session is live after this event")
    qr_code_data: str | None = Field(None, alias="qrCodeData", description="QR code (base64 image)")
    phone_number_id: str | None = Field(None, alias="phoneNumberId", description="Cloud API phone number ID")
    reason: str | None = Field(None, description="Why the connection is in error")
    contact_number: str | None = Field(None, alias="contactNumber")
    message_id: str | None = Field(None, alias="messageId", description="Provider message ID")
    message_type: MessageType | None = Field(None, alias="messageType")
    body: str | None = None
    timestamp: datetime = Field(..., description="When the event occurred (UTC)")


class WebhookPayload(BaseModel):
    """Outbound webhook body: ``{"event": ..., "data": {...}}``."""

    event: WebhookEventType
    data: WebhookData

    def to_json_body(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting fields that do not apply."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
