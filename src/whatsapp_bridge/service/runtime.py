"""
Bridge Runtime

Wires the settings cache, connection monitor, webhook dispatcher and message
store together, and owns per-tenant activation and teardown.
"""

import logging
from collections.abc import Callable

import httpx
from sqlalchemy.orm import Session

from basecore.redis import get_redis_client
from basecore.settings import get_settings
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.dispatch.dispatcher import WebhookDispatcher
from whatsapp_bridge.monitor.connection_monitor import ConnectionMonitor
from whatsapp_bridge.monitor.state import PollOutcome
from whatsapp_bridge.providers.factory import AdapterFactory
from whatsapp_bridge.routing.tenant_settings import SettingsCache, SettingsSource, SqlSettingsSource
from whatsapp_bridge.service.inbound_handler import InboundHandler
from whatsapp_bridge.service.message_store import MessageStore
from whatsapp_bridge.service.outbound_handler import OutboundHandler
from whatsapp_bridge.streams.producer import FailedDeliveryProducer

logger = logging.getLogger(__name__)


class BridgeRuntime:
    """
    One bridge process: monitor + dispatcher + store.

    ``schedule_polling`` is False for processes that only answer on-demand
    checks (the monitor then polls when asked, never on a timer).
    """

    def __init__(
        self,
        settings_cache: SettingsCache,
        store: MessageStore,
        dispatcher: WebhookDispatcher,
        monitor: ConnectionMonitor,
        adapter_factory: AdapterFactory | None = None,
        schedule_polling: bool = True,
    ):
        self.settings_cache = settings_cache
        self.store = store
        self.dispatcher = dispatcher
        self.monitor = monitor
        self.schedule_polling = schedule_polling
        self.inbound = InboundHandler(settings_cache, store, dispatcher, monitor)
        self.outbound = OutboundHandler(settings_cache, store, adapter_factory)

    @classmethod
    def build(
        cls,
        source: SettingsSource | None = None,
        session_factory: Callable[[], Session] | None = None,
        adapter_factory: AdapterFactory | None = None,
        webhook_client: httpx.AsyncClient | None = None,
        schedule_polling: bool = True,
    ) -> "BridgeRuntime":
        """Build a runtime from process settings, with optional overrides for tests."""
        settings = get_settings()
        settings_cache = SettingsCache(
            source or SqlSettingsSource(session_factory, settings.BRIDGE_ENCRYPTION_KEY)
        )

        redis_client = get_redis_client()
        failure_producer = FailedDeliveryProducer(redis_client) if redis_client is not None else None
        if failure_producer is None:
            logger.info("REDIS_URL not set, failed deliveries are only logged")

        dispatcher = WebhookDispatcher(settings_cache, client=webhook_client, failure_producer=failure_producer)
        monitor = ConnectionMonitor(settings_cache, emit=dispatcher.submit, adapter_factory=adapter_factory)

        return cls(
            settings_cache=settings_cache,
            store=MessageStore(session_factory),
            dispatcher=dispatcher,
            monitor=monitor,
            adapter_factory=adapter_factory,
            schedule_polling=schedule_polling,
        )

    # =========================================================================
    # Tenant lifecycle
    # =========================================================================

    async def activate(self, tenant_id: int) -> int:
        """Start monitoring a tenant. Returns the number of monitored backends."""
        self.dispatcher.reopen(tenant_id)
        keys = await self.monitor.start_tenant(tenant_id, schedule=self.schedule_polling)
        return len(keys)

    async def deactivate(self, tenant_id: int) -> None:
        """Stop polling first, then deliver what is already queued."""
        await self.monitor.stop_tenant(tenant_id)
        await self.dispatcher.drain(tenant_id)
        logger.info("Tenant deactivated", extra={"tenant_id": tenant_id})

    async def refresh_tenant(self, tenant_id: int) -> bool:
        """
        Apply a settings change for one tenant.

        Returns:
            False when the tenant no longer has an active binding
        """
        if tenant_id not in self.settings_cache.list_tenant_ids():
            # Queued events still go to the URLs cached before the change
            if self.monitor.is_monitored(tenant_id):
                await self.deactivate(tenant_id)
            self.settings_cache.refresh(tenant_id)
            return False

        self.settings_cache.refresh(tenant_id)
        if self.monitor.is_monitored(tenant_id):
            await self.monitor.reload_tenant(tenant_id)
        else:
            await self.activate(tenant_id)
        return True

    async def start_all(self) -> int:
        """Activate every tenant with an active binding. Returns the tenant count."""
        tenant_ids = self.settings_cache.list_tenant_ids()
        for tenant_id in tenant_ids:
            await self.activate(tenant_id)
        logger.info("Bridge runtime started", extra={"tenants": len(tenant_ids)})
        return len(tenant_ids)

    async def shutdown(self) -> None:
        """Stop every poll, then drain every dispatch queue."""
        await self.monitor.stop()
        await self.dispatcher.close()
        logger.info("Bridge runtime stopped")

    # =========================================================================
    # On-demand operations
    # =========================================================================

    async def force_check(self, tenant_id: int) -> list[PollOutcome]:
        if not self.monitor.is_monitored(tenant_id):
            await self.activate(tenant_id)
        return await self.monitor.force_check(tenant_id)

    async def connect(self, tenant_id: int, backend_kind: BackendKind) -> PollOutcome:
        if not self.monitor.is_monitored(tenant_id):
            await self.activate(tenant_id)
        return await self.monitor.connect(tenant_id, backend_kind)

    def status(self) -> dict:
        return {
            "monitored": self.monitor.status(),
            "pending_webhooks": self.dispatcher.pending(),
        }
