"""Meta Cloud API adapter."""

from whatsapp_bridge.providers.meta_cloud.client import CloudConfig, MetaCloudAdapter, parse_callback
from whatsapp_bridge.providers.meta_cloud.webhook import validate_signature, verify_challenge

__all__ = [
    "CloudConfig",
    "MetaCloudAdapter",
    "parse_callback",
    "validate_signature",
    "verify_challenge",
]
