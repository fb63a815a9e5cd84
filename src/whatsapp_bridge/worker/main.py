"""
WhatsApp Bridge Worker

Runs the connection monitor and webhook dispatcher without the HTTP surface.

- Activates every tenant with an active binding
- Re-reads the tenant list every BRIDGE_WORKER_SYNC_SECONDS so bindings
  added or removed from the CLI are picked up
- Graceful shutdown on SIGINT/SIGTERM: stop polling, then drain dispatch
"""

import asyncio
import logging
import signal

from basecore.db import init_db
from basecore.logging import setup_logging
from basecore.settings import get_settings
from whatsapp_bridge.service.runtime import BridgeRuntime

logger = logging.getLogger(__name__)


async def sync_tenants(runtime: BridgeRuntime, active: set[int]) -> set[int]:
    """Activate new tenants and tear down tenants that lost their bindings."""
    current = set(runtime.settings_cache.list_tenant_ids())

    for tenant_id in sorted(current - active):
        await runtime.refresh_tenant(tenant_id)
    for tenant_id in sorted(active - current):
        await runtime.refresh_tenant(tenant_id)

    return current


async def main_loop(runtime: BridgeRuntime | None = None, shutdown: asyncio.Event | None = None) -> None:
    """Main worker loop."""
    settings = get_settings()
    runtime = runtime or BridgeRuntime.build()
    shutdown = shutdown or asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, shutdown.set)
        except (NotImplementedError, RuntimeError):
            # Not on the main thread (tests) or unsupported platform
            pass

    await runtime.start_all()
    active = set(runtime.settings_cache.list_tenant_ids())
    logger.info(
        "Starting WhatsApp bridge worker",
        extra={"tenants": len(active), "poll_interval": runtime.monitor.poll_interval},
    )

    while not shutdown.is_set():
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=settings.BRIDGE_WORKER_SYNC_SECONDS)
        except asyncio.TimeoutError:
            pass
        if shutdown.is_set():
            break

        try:
            active = await sync_tenants(runtime, active)
        except Exception as e:
            logger.error(f"Error syncing tenants: {e}", exc_info=True)

    logger.info("WhatsApp bridge worker shutting down gracefully")
    await runtime.shutdown()


def main():
    """Entry point."""
    setup_logging()
    logger.info("WhatsApp bridge worker starting...")
    init_db()
    asyncio.run(main_loop())


if __name__ == "__main__":
    main()
