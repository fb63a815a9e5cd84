"""Evolution API (QR session) adapter."""

from whatsapp_bridge.providers.evolution.client import EvolutionAdapter, EvolutionConfig
from whatsapp_bridge.providers.evolution.webhook import extract_instance_name, validate_api_key

__all__ = [
    "EvolutionAdapter",
    "EvolutionConfig",
    "extract_instance_name",
    "validate_api_key",
]
