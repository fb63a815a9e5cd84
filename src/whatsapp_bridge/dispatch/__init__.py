"""Webhook dispatcher: per-tenant queues and provider-aware payloads."""

from whatsapp_bridge.dispatch.dispatcher import DispatchOutcome, WebhookDispatcher
from whatsapp_bridge.dispatch.payloads import build_payload

__all__ = [
    "WebhookDispatcher",
    "DispatchOutcome",
    "build_payload",
]
