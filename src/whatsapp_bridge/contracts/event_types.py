"""
Bridge Event Types

Backend kinds, connection states and the downstream webhook event names.
"""

from enum import Enum


class BackendKind(str, Enum):
    """Upstream WhatsApp integration a tenant is using."""

    QR = "qr"  # QR-paired session gateway (Evolution API)
    CLOUD = "cloud"  # Meta WhatsApp Business Cloud API

    def __str__(self) -> str:
        return self.value


class ConnectionState(str, Enum):
    """
    Live state of a tenant's session on one backend.

    Only the connection monitor changes these; the value is kept in memory
    for edge detection and never persisted.
    """

    UNKNOWN = "unknown"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class WebhookEventType(str, Enum):
    """
    Events delivered to tenant-configured webhook URLs.

    Connection events come from the monitor, MESSAGE_RECEIVED from the
    inbound message path.
    """

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    QR_CODE_GENERATED = "qr_code_generated"
    CONNECTION_ERROR = "connection_error"
    MESSAGE_RECEIVED = "message_received"

    def __str__(self) -> str:
        return self.value


# Event announced when the monitor records a new state.
# UNKNOWN is never entered after startup, so it has no event.
STATE_EVENTS: dict[ConnectionState, WebhookEventType] = {
    ConnectionState.CONNECTED: WebhookEventType.CONNECTED,
    ConnectionState.DISCONNECTED: WebhookEventType.DISCONNECTED,
    ConnectionState.CONNECTING: WebhookEventType.QR_CODE_GENERATED,
    ConnectionState.ERROR: WebhookEventType.CONNECTION_ERROR,
}

CONNECTION_EVENTS = frozenset(STATE_EVENTS.values())
