"""
WhatsApp Upstream Adapters

Adapter implementations for the two upstream backends.
Supports Evolution API (QR session), Meta Cloud API and Stub (development).
"""

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
from whatsapp_bridge.providers.factory import AdapterFactory, BackendConfig, get_adapter

__all__ = [
    "UpstreamAdapter",
    "StateSnapshot",
    "ConnectResult",
    "SendResult",
    "Contact",
    "InboundMessage",
    "StatusUpdate",
    "ConnectionUpdate",
    "ParsedCallback",
    "AdapterFactory",
    "BackendConfig",
    "get_adapter",
]
