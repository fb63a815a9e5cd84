"""HTTP surface: provider callbacks and tenant operations."""

from whatsapp_bridge.api.app import create_app

__all__ = ["create_app"]
