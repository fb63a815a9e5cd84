"""
WhatsApp Bridge Contracts

Event types, envelope and payload definitions shared across the bridge.
"""

from whatsapp_bridge.contracts.envelope import WebhookEvent, ensure_utc, utc_now
from whatsapp_bridge.contracts.event_types import (
    STATE_EVENTS,
    BackendKind,
    ConnectionState,
    WebhookEventType,
)
from whatsapp_bridge.contracts.payloads import (
    DeliveryStatus,
    MessageDirection,
    MessageType,
    WebhookData,
    WebhookPayload,
)

__all__ = [
    "BackendKind",
    "ConnectionState",
    "WebhookEventType",
    "STATE_EVENTS",
    "WebhookEvent",
    "utc_now",
    "ensure_utc",
    "DeliveryStatus",
    "MessageDirection",
    "MessageType",
    "WebhookData",
    "WebhookPayload",
]
