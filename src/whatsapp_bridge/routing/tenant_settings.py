"""
Tenant Settings

Read-only, cached view of each tenant's bridge configuration: which backends
are bound (with their credentials) and where webhooks go. The bridge never
writes settings; the admin CLI and dashboard do, then signal ``refresh``.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from basecore.db import get_sessionmaker
from basecore.settings import get_settings
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.errors import ConfigurationError
from whatsapp_bridge.persistence.models import TenantBinding
from whatsapp_bridge.persistence.repo import BridgeRepository
from whatsapp_bridge.providers.evolution.client import EvolutionConfig
from whatsapp_bridge.providers.factory import BackendConfig
from whatsapp_bridge.providers.meta_cloud.client import CloudConfig
from whatsapp_bridge.routing.tenant_resolver import TenantResolver, decrypt_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantSettings:
    """
    Configuration snapshot for one tenant.

    Attributes:
        tenant_id: Dashboard user id
        tenant_name: Display name sent as ``userName``
        backends: Active backend configurations, at most one per kind
        general_webhook_url: Default webhook URL
        cloud_webhook_url: Override for events from the Cloud backend
    """

    tenant_id: int
    tenant_name: str
    backends: dict[BackendKind, BackendConfig] = field(default_factory=dict)
    general_webhook_url: str | None = None
    cloud_webhook_url: str | None = None

    def webhook_url_for(self, backend_kind: BackendKind) -> str | None:
        """Cloud events prefer the cloud override; everything else uses the general URL."""
        if backend_kind == BackendKind.CLOUD and self.cloud_webhook_url:
            return self.cloud_webhook_url
        return self.general_webhook_url

    @property
    def phone_number_id(self) -> str | None:
        config = self.backends.get(BackendKind.CLOUD)
        return config.phone_number_id if isinstance(config, CloudConfig) else None

    @property
    def instance_name(self) -> str | None:
        config = self.backends.get(BackendKind.QR)
        return config.instance_name if isinstance(config, EvolutionConfig) else None


class SettingsSource(ABC):
    """Where tenant settings are read from."""

    @abstractmethod
    def load(self, tenant_id: int) -> TenantSettings | None:
        """Load a tenant's settings, or None when the tenant has no active binding."""
        ...

    @abstractmethod
    def resolve_route(self, backend_kind: BackendKind, route_key: str) -> int | None:
        """Map a phone_number_id (Cloud) or instance_name (QR) to a tenant id."""
        ...

    @abstractmethod
    def list_tenant_ids(self) -> list[int]:
        """Tenants with at least one active binding."""
        ...


def binding_to_config(binding: TenantBinding, encryption_key: str | None) -> BackendConfig:
    """Build the adapter configuration for a stored binding."""
    backend_kind = BackendKind(binding.backend_kind)

    if backend_kind == BackendKind.CLOUD:
        return CloudConfig(
            phone_number_id=binding.phone_number_id or "",
            access_token=decrypt_secret(binding.access_token_encrypted, encryption_key) or "",
            business_account_id=binding.waba_id,
            api_version=(binding.config or {}).get("api_version") or get_settings().META_GRAPH_API_VERSION,
        )

    return EvolutionConfig(
        api_url=binding.api_url or "",
        api_key=decrypt_secret(binding.api_key_encrypted, encryption_key) or "",
        instance_name=binding.instance_name or "",
    )


class SqlSettingsSource(SettingsSource):
    """Settings stored in the bridge tables."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        encryption_key: str | None = None,
    ):
        self.session_factory = session_factory or get_sessionmaker()
        self.encryption_key = encryption_key if encryption_key is not None else get_settings().BRIDGE_ENCRYPTION_KEY

    def load(self, tenant_id: int) -> TenantSettings | None:
        with self.session_factory() as db:
            repo = BridgeRepository(db)
            bindings = repo.get_active_bindings_for_tenant(tenant_id)
            if not bindings:
                return None

            backends: dict[BackendKind, BackendConfig] = {}
            for binding in bindings:
                try:
                    backends[BackendKind(binding.backend_kind)] = binding_to_config(binding, self.encryption_key)
                except ConfigurationError as e:
                    logger.error(
                        f"Skipping binding with unusable credentials: {e}",
                        extra={"tenant_id": tenant_id, "backend_kind": binding.backend_kind},
                    )

            endpoint = repo.get_webhook_endpoint(tenant_id)
            return TenantSettings(
                tenant_id=tenant_id,
                tenant_name=bindings[0].tenant_name,
                backends=backends,
                general_webhook_url=endpoint.general_url if endpoint else None,
                cloud_webhook_url=endpoint.cloud_url if endpoint else None,
            )

    def resolve_route(self, backend_kind: BackendKind, route_key: str) -> int | None:
        with self.session_factory() as db:
            binding = TenantResolver(db).resolve(backend_kind, route_key)
            return binding.tenant_id if binding else None

    def list_tenant_ids(self) -> list[int]:
        with self.session_factory() as db:
            return BridgeRepository(db).list_active_tenant_ids()


class InMemorySettingsSource(SettingsSource):
    """Settings held in memory. Used by tests and the stub development setup."""

    def __init__(self, tenants: list[TenantSettings] | None = None):
        self._tenants: dict[int, TenantSettings] = {}
        for tenant in tenants or []:
            self.put(tenant)

    def put(self, tenant: TenantSettings) -> None:
        self._tenants[tenant.tenant_id] = tenant

    def remove(self, tenant_id: int) -> None:
        self._tenants.pop(tenant_id, None)

    def load(self, tenant_id: int) -> TenantSettings | None:
        tenant = self._tenants.get(tenant_id)
        if tenant is None or not tenant.backends:
            return None
        return tenant

    def resolve_route(self, backend_kind: BackendKind, route_key: str) -> int | None:
        for tenant in self._tenants.values():
            if backend_kind == BackendKind.CLOUD and tenant.phone_number_id == route_key:
                return tenant.tenant_id
            if backend_kind == BackendKind.QR and tenant.instance_name == route_key:
                return tenant.tenant_id
        return None

    def list_tenant_ids(self) -> list[int]:
        return sorted(tenant_id for tenant_id, tenant in self._tenants.items() if tenant.backends)


class SettingsCache:
    """
    Cached read access to tenant settings.

    Entries stay until ``refresh(tenant_id)`` is called; callback routing keys
    are cached the same way.
    """

    def __init__(self, source: SettingsSource):
        self.source = source
        self._tenants: dict[int, TenantSettings] = {}
        self._routes: dict[tuple[BackendKind, str], int] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: int) -> TenantSettings | None:
        with self._lock:
            cached = self._tenants.get(tenant_id)
        if cached is not None:
            return cached
        return self.refresh(tenant_id)

    def refresh(self, tenant_id: int) -> TenantSettings | None:
        """Reload a tenant from the source, dropping its cached routes."""
        tenant = self.source.load(tenant_id)
        with self._lock:
            self._routes = {key: value for key, value in self._routes.items() if value != tenant_id}
            if tenant is None:
                self._tenants.pop(tenant_id, None)
            else:
                self._tenants[tenant_id] = tenant

        logger.info(
            "Tenant settings refreshed",
            extra={"tenant_id": tenant_id, "active": tenant is not None},
        )
        return tenant

    def list_tenant_ids(self) -> list[int]:
        return self.source.list_tenant_ids()

    def _resolve(self, backend_kind: BackendKind, route_key: str) -> TenantSettings | None:
        key = (backend_kind, route_key)
        with self._lock:
            tenant_id = self._routes.get(key)

        if tenant_id is None:
            tenant_id = self.source.resolve_route(backend_kind, route_key)
            if tenant_id is None:
                return None
            with self._lock:
                self._routes[key] = tenant_id

        tenant = self.get(tenant_id)
        if tenant is None or backend_kind not in tenant.backends:
            return None
        return tenant

    def resolve_by_phone_number_id(self, phone_number_id: str) -> TenantSettings | None:
        """Tenant owning a Cloud phone number (``meta_phone_number_id``)."""
        return self._resolve(BackendKind.CLOUD, phone_number_id)

    def resolve_by_instance_name(self, instance_name: str) -> TenantSettings | None:
        """Tenant owning an Evolution instance."""
        return self._resolve(BackendKind.QR, instance_name)

    def resolve(self, backend_kind: BackendKind, route_key: str) -> TenantSettings | None:
        return self._resolve(backend_kind, route_key)
