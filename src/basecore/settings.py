"""
Settings for basecore services.

All values come from environment variables (or a local .env file).
"""

import functools

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration for the bridge services."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Infrastructure
    DATABASE_URL: str = "sqlite:///./whatsapp_bridge.db"
    REDIS_URL: str | None = None
    REDIS_SOCKET_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    LOG_LEVEL: str = "INFO"

    # Connection monitor
    BRIDGE_POLL_INTERVAL_SECONDS: float = Field(default=30.0, gt=0)
    BRIDGE_POLL_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    BRIDGE_FAILURE_THRESHOLD: int = Field(default=3, ge=1)

    # Webhook dispatcher
    BRIDGE_WEBHOOK_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    BRIDGE_WEBHOOK_USER_AGENT: str = "WhatsAppBridge-Webhook/1.0"

    # Secrets at rest (Fernet key); plaintext storage when unset
    BRIDGE_ENCRYPTION_KEY: str | None = None

    # Provider callbacks
    META_VERIFY_TOKEN: str = "whatsapp_bridge_verify_token"
    META_APP_SECRET: str | None = None
    META_GRAPH_API_VERSION: str = "v18.0"
    EVOLUTION_WEBHOOK_API_KEY: str | None = None

    # Worker re-reads the tenant list
    BRIDGE_WORKER_SYNC_SECONDS: float = Field(default=60.0, gt=0)

    # API process also runs the scheduled monitor (single-process deployment)
    BRIDGE_API_RUN_MONITOR: bool = True

    # Development: answer every provider call locally
    BRIDGE_USE_STUB_ADAPTERS: bool = False


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
