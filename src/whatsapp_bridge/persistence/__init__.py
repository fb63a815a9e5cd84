"""
WhatsApp Bridge Persistence

SQLAlchemy models and repository for bridge tables.
"""

from whatsapp_bridge.persistence.models import Message, TenantBinding, WebhookEndpoint
from whatsapp_bridge.persistence.repo import BridgeRepository

__all__ = [
    "TenantBinding",
    "WebhookEndpoint",
    "Message",
    "BridgeRepository",
]
