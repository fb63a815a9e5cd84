"""
Adapter Factory

Builds the upstream adapter for one tenant backend from its configuration.
"""

import logging
from collections.abc import Callable

from basecore.settings import get_settings
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.errors import ConfigurationError
from whatsapp_bridge.providers.base import UpstreamAdapter
from whatsapp_bridge.providers.evolution.client import EvolutionAdapter, EvolutionConfig
from whatsapp_bridge.providers.meta_cloud.client import CloudConfig, MetaCloudAdapter
from whatsapp_bridge.providers.stub.client import StubAdapter

logger = logging.getLogger(__name__)

BackendConfig = EvolutionConfig | CloudConfig

AdapterFactory = Callable[[BackendKind, BackendConfig], UpstreamAdapter]


def get_adapter(
    backend_kind: BackendKind,
    config: BackendConfig,
    timeout: float | None = None,
) -> UpstreamAdapter:
    """
    Get the adapter for a tenant backend.

    Uses the stub adapter when BRIDGE_USE_STUB_ADAPTERS is set.

    Raises:
        ConfigurationError: config is incomplete or does not match the backend
    """
    settings = get_settings()
    timeout = timeout if timeout is not None else settings.BRIDGE_POLL_TIMEOUT_SECONDS

    if settings.BRIDGE_USE_STUB_ADAPTERS:
        logger.info(f"Using stub adapter for {backend_kind} backend")
        return StubAdapter(backend_kind=backend_kind)

    if backend_kind == BackendKind.QR:
        if not isinstance(config, EvolutionConfig):
            raise ConfigurationError(
                message=f"QR backend needs EvolutionConfig, got {type(config).__name__}",
                code="BACKEND_MISMATCH",
            )
        return EvolutionAdapter(config, timeout=timeout)

    if backend_kind == BackendKind.CLOUD:
        if not isinstance(config, CloudConfig):
            raise ConfigurationError(
                message=f"Cloud backend needs CloudConfig, got {type(config).__name__}",
                code="BACKEND_MISMATCH",
            )
        return MetaCloudAdapter(config, timeout=timeout)

    raise ConfigurationError(message=f"Unknown backend: {backend_kind}", code="UNKNOWN_BACKEND")
