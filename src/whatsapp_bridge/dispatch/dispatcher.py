"""
Webhook Dispatcher

Delivers webhook events to tenant URLs without blocking the producer.

- ``submit`` is a non-blocking handoff into a FIFO queue per (tenant, backend)
- each queue is served by its own worker task, so a slow tenant URL never
  delays other tenants
- one POST per event, no automatic retry; failures are logged and, when
  Redis is configured, kept in the failed-delivery stream for manual replay
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from uuid import UUID

import httpx
import redis

from basecore.settings import get_settings
from whatsapp_bridge.contracts.envelope import WebhookEvent
from whatsapp_bridge.contracts.event_types import BackendKind, WebhookEventType
from whatsapp_bridge.dispatch.payloads import build_payload
from whatsapp_bridge.errors import DeliveryFailed, WebhookUnconfigured
from whatsapp_bridge.routing.tenant_settings import SettingsCache
from whatsapp_bridge.streams.producer import FailedDeliveryProducer

logger = logging.getLogger(__name__)

QueueKey = tuple[int, BackendKind]

# Queue sentinel: worker exits after everything queued before it
_STOP = object()


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one delivery attempt."""

    event_id: UUID
    event_type: WebhookEventType
    tenant_id: int
    backend_kind: BackendKind
    delivered: bool
    reason: str  # delivered, unconfigured, failed
    url: str | None = None
    status_code: int | None = None
    error: str | None = None


class WebhookDispatcher:
    """
    Resolves the target URL for each event and POSTs the JSON payload.

    Cloud events go to the tenant's cloud URL when one is configured, every
    other event to the general URL.
    """

    def __init__(
        self,
        settings_cache: SettingsCache,
        client: httpx.AsyncClient | None = None,
        failure_producer: FailedDeliveryProducer | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        history_size: int = 100,
    ):
        settings = get_settings()
        self.settings_cache = settings_cache
        self.failure_producer = failure_producer
        self.timeout = timeout or settings.BRIDGE_WEBHOOK_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.BRIDGE_WEBHOOK_USER_AGENT
        self._client = client
        self._owns_client = client is None
        self._queues: dict[QueueKey, asyncio.Queue] = {}
        self._workers: dict[QueueKey, asyncio.Task] = {}
        self._drained: set[int] = set()
        self._drain_locks: dict[int, asyncio.Lock] = {}
        self.recent_outcomes: deque[DispatchOutcome] = deque(maxlen=history_size)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    # =========================================================================
    # Queueing
    # =========================================================================

    def submit(self, event: WebhookEvent) -> bool:
        """
        Queue an event for delivery. Never blocks.

        Returns:
            False when the tenant has been drained and the event is dropped
        """
        if event.tenant_id in self._drained:
            logger.info(
                "Tenant drained, dropping event",
                extra={"tenant_id": event.tenant_id, "event_type": event.event_type.value},
            )
            return False

        key = event.key
        queue = self._queues.get(key)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[key] = queue
            self._workers[key] = asyncio.create_task(
                self._worker(key, queue),
                name=f"dispatch-{key[0]}-{key[1].value}",
            )

        queue.put_nowait(event)
        return True

    async def _worker(self, key: QueueKey, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                if event is _STOP:
                    return
                await self.dispatch(event)
            except Exception as e:
                # One bad event must not stop the tenant's queue
                logger.error(
                    f"Unexpected error dispatching event: {e}",
                    extra={"tenant_id": key[0], "backend_kind": key[1].value},
                    exc_info=True,
                )
            finally:
                queue.task_done()

    async def drain(self, tenant_id: int) -> None:
        """
        Attempt every event already queued for the tenant, then stop its workers.

        Events submitted for the tenant afterwards are dropped until ``reopen``.
        Overlapping drains of one tenant wait for the first to finish.
        """
        self._drained.add(tenant_id)
        lock = self._drain_locks.setdefault(tenant_id, asyncio.Lock())

        async with lock:
            keys = [key for key in self._queues if key[0] == tenant_id]
            for key in keys:
                self._queues[key].put_nowait(_STOP)
            for key in keys:
                await self._workers[key]
                del self._queues[key]
                del self._workers[key]

        logger.info("Drained webhook queues", extra={"tenant_id": tenant_id, "queues": len(keys)})

    def reopen(self, tenant_id: int) -> None:
        """Accept events for a previously drained tenant again."""
        self._drained.discard(tenant_id)

    def pending(self, tenant_id: int | None = None) -> int:
        """Events queued and not yet attempted."""
        return sum(
            queue.qsize() for key, queue in self._queues.items() if tenant_id is None or key[0] == tenant_id
        )

    async def close(self) -> None:
        """Drain every tenant and close the HTTP client."""
        for tenant_id in sorted({key[0] for key in self._queues}):
            await self.drain(tenant_id)
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    # =========================================================================
    # Delivery
    # =========================================================================

    async def dispatch(self, event: WebhookEvent, record_failure: bool = True) -> DispatchOutcome:
        """
        Deliver one event now. Never raises for delivery problems.

        Args:
            event: Event to deliver
            record_failure: Append a failed attempt to the failed-delivery stream

        Returns:
            DispatchOutcome describing the attempt
        """
        tenant = self.settings_cache.get(event.tenant_id)
        url = tenant.webhook_url_for(event.backend_kind) if tenant else None

        if tenant is None or not url:
            error = WebhookUnconfigured(
                message=f"No webhook URL for tenant {event.tenant_id} ({event.backend_kind.value})",
                code="UNCONFIGURED",
            )
            logger.info(
                str(error),
                extra={"tenant_id": event.tenant_id, "event_type": event.event_type.value},
            )
            return self._remember(
                DispatchOutcome(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    tenant_id=event.tenant_id,
                    backend_kind=event.backend_kind,
                    delivered=False,
                    reason="unconfigured",
                    error=str(error),
                )
            )

        body = build_payload(event, tenant).to_json_body()

        try:
            status_code = await self._post(url, body)
        except DeliveryFailed as e:
            status_code = e.details.get("status_code")
            logger.warning(
                f"Webhook delivery failed: {e}",
                extra={
                    "tenant_id": event.tenant_id,
                    "event_type": event.event_type.value,
                    "url": url,
                    "status_code": status_code,
                },
            )
            if record_failure:
                await self._record_failure(event, url, str(e), status_code)
            return self._remember(
                DispatchOutcome(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    tenant_id=event.tenant_id,
                    backend_kind=event.backend_kind,
                    delivered=False,
                    reason="failed",
                    url=url,
                    status_code=status_code,
                    error=str(e),
                )
            )

        logger.info(
            "Webhook delivered",
            extra={
                "tenant_id": event.tenant_id,
                "event_type": event.event_type.value,
                "url": url,
                "status_code": status_code,
            },
        )
        return self._remember(
            DispatchOutcome(
                event_id=event.event_id,
                event_type=event.event_type,
                tenant_id=event.tenant_id,
                backend_kind=event.backend_kind,
                delivered=True,
                reason="delivered",
                url=url,
                status_code=status_code,
            )
        )

    async def _post(self, url: str, body: dict) -> int:
        """POST once; raise DeliveryFailed on network error, timeout or non-2xx."""
        client = await self._get_client()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }

        try:
            response = await client.post(url, json=body, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise DeliveryFailed(message=f"Webhook timed out after {self.timeout}s: {e}", code="TIMEOUT")
        except httpx.RequestError as e:
            raise DeliveryFailed(message=f"Webhook request failed: {e}", code="HTTP_ERROR")

        if not response.is_success:
            raise DeliveryFailed(
                message=f"Webhook answered HTTP {response.status_code}",
                code=str(response.status_code),
                details={"status_code": response.status_code, "body_preview": response.text[:200]},
            )

        return response.status_code

    async def _record_failure(self, event: WebhookEvent, url: str, error: str, status_code: int | None) -> None:
        if self.failure_producer is None:
            return
        # redis-py is blocking; keep it off the event loop
        try:
            await asyncio.to_thread(self.failure_producer.publish_failure, event, url, error, status_code)
        except redis.RedisError as e:
            logger.error(f"Could not record failed delivery: {e}", extra={"event_id": str(event.event_id)})

    def _remember(self, outcome: DispatchOutcome) -> DispatchOutcome:
        self.recent_outcomes.append(outcome)
        return outcome
