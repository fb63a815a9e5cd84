"""
WhatsApp Bridge Routing

Tenant resolution, tenant settings and the unified conversation view.
"""

from whatsapp_bridge.routing.conversation import ContactSummary, ConversationEntry, ConversationResolver
from whatsapp_bridge.routing.tenant_resolver import TenantResolver, decrypt_secret, encrypt_secret
from whatsapp_bridge.routing.tenant_settings import (
    InMemorySettingsSource,
    SettingsCache,
    SettingsSource,
    SqlSettingsSource,
    TenantSettings,
)

__all__ = [
    "TenantResolver",
    "encrypt_secret",
    "decrypt_secret",
    "ConversationResolver",
    "ConversationEntry",
    "ContactSummary",
    "TenantSettings",
    "SettingsSource",
    "SqlSettingsSource",
    "InMemorySettingsSource",
    "SettingsCache",
]
