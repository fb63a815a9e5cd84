"""
Evolution API Webhook Utilities

Helper functions for processing Evolution API webhooks.
"""

import hmac
import logging
from typing import Any

from whatsapp_bridge.providers.evolution.client import normalize_event_name

logger = logging.getLogger(__name__)


def extract_instance_name(payload: dict[str, Any]) -> str | None:
    """
    Extract instance name from webhook payload.

    This is used for tenant resolution before full parsing.
    """
    instance = payload.get("instance")
    if isinstance(instance, dict):
        instance = instance.get("instanceName")
    return instance or None


def is_message_webhook(payload: dict[str, Any]) -> bool:
    """Check if this webhook contains messages."""
    return normalize_event_name(payload.get("event") or "") == "messages.upsert"


def is_connection_webhook(payload: dict[str, Any]) -> bool:
    """Check if this webhook reports a session change (state or new QR code)."""
    return normalize_event_name(payload.get("event") or "") in ("connection.update", "qrcode.updated")


def validate_api_key(request_headers: dict[str, str], expected_api_key: str) -> bool:
    """
    Validate the ``apikey`` header Evolution sends with each webhook.

    Header lookup is case-insensitive when given a Starlette/httpx headers object.
    """
    if not expected_api_key:
        return False

    apikey_header = request_headers.get("apikey") or ""
    return hmac.compare_digest(apikey_header.encode("utf-8"), expected_api_key.encode("utf-8"))
