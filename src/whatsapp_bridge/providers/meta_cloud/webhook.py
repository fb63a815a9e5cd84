"""
Meta Webhook Utilities

Signature check, subscription handshake and routing-key extraction for
Cloud API callbacks. Callback parsing is ``MetaCloudAdapter.parse_inbound``.
"""

import hashlib
import hmac
import logging
from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def validate_signature(payload: bytes, signature_header: str | None, app_secret: str) -> bool:
    """
    Check ``X-Hub-Signature-256`` against the raw request body.

    The header carries ``sha256=<hex digest>`` of the body keyed with the
    app secret. Anything else is rejected.
    """
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Rejected Meta callback signature", extra={"has_header": bool(signature_header)})
        return False

    digest = hmac.new(app_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature_header[len(SIGNATURE_PREFIX) :])


def verify_challenge(
    mode: str | None,
    token: str | None,
    challenge: str | None,
    verify_token: str,
) -> str | None:
    """Handle the GET subscription handshake. Returns the challenge to echo, or None."""
    if mode == "subscribe" and verify_token and token == verify_token:
        logger.info("Webhook verification successful")
        return challenge

    logger.warning(f"Webhook verification failed: mode={mode}, token mismatch")
    return None


def extract_phone_number_id(payload: dict[str, Any]) -> str | None:
    """
    Extract phone_number_id from webhook payload.

    This is used for tenant resolution before full parsing.
    """
    for entry in payload.get("entry", []):
        for change in entry.get("changes", []):
            metadata = (change.get("value") or {}).get("metadata") or {}
            phone_number_id = metadata.get("phone_number_id")
            if phone_number_id:
                return phone_number_id
    return None
