"""
Connection Monitor

Polls every active (tenant, backend) session on a fixed interval and emits a
webhook event only when the connection state changes.

- One asyncio task per tenant backend; no global lock
- Polls of the same key are serialized; a scheduled tick that finds the
  previous poll still running is skipped
- Adapter failures never coerce the state to DISCONNECTED; only
  ``failure_threshold`` consecutive failures move it to ERROR
- AuthRejected moves the state to ERROR at once and suspends polling until
  the tenant is reloaded
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from basecore.settings import get_settings
from whatsapp_bridge.contracts.envelope import WebhookEvent, utc_now
from whatsapp_bridge.contracts.event_types import STATE_EVENTS, BackendKind, ConnectionState
from whatsapp_bridge.errors import AdapterUnavailable, AuthRejected, BridgeError, ConfigurationError
from whatsapp_bridge.monitor.state import KeyState, MonitorKey, PollOutcome
from whatsapp_bridge.providers.base import StateSnapshot
from whatsapp_bridge.providers.factory import AdapterFactory, get_adapter
from whatsapp_bridge.routing.tenant_settings import SettingsCache

logger = logging.getLogger(__name__)

EventSink = Callable[[WebhookEvent], Any]


class ConnectionMonitor:
    """
    Reconciles the live connection state of each tenant backend.

    Events are handed to ``emit`` (normally ``WebhookDispatcher.submit``),
    which must not block.
    """

    def __init__(
        self,
        settings_cache: SettingsCache,
        emit: EventSink,
        adapter_factory: AdapterFactory | None = None,
        poll_interval: float | None = None,
        poll_timeout: float | None = None,
        failure_threshold: int | None = None,
    ):
        settings = get_settings()
        self.settings_cache = settings_cache
        self.emit = emit
        self.adapter_factory = adapter_factory or get_adapter
        self.poll_interval = poll_interval or settings.BRIDGE_POLL_INTERVAL_SECONDS
        self.poll_timeout = poll_timeout or settings.BRIDGE_POLL_TIMEOUT_SECONDS
        self.failure_threshold = failure_threshold or settings.BRIDGE_FAILURE_THRESHOLD
        self._keys: dict[MonitorKey, KeyState] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def is_monitored(self, tenant_id: int) -> bool:
        return any(key[0] == tenant_id for key in self._keys)

    def keys_for(self, tenant_id: int) -> list[MonitorKey]:
        return sorted((key for key in self._keys if key[0] == tenant_id), key=lambda k: k[1].value)

    async def start_tenant(self, tenant_id: int, schedule: bool = True) -> list[MonitorKey]:
        """
        Start monitoring every configured backend of a tenant.

        Args:
            tenant_id: Tenant to monitor
            schedule: Start the periodic polling task (False for on-demand checks only)

        Returns:
            Keys now monitored for the tenant
        """
        tenant = self.settings_cache.get(tenant_id)
        if tenant is None:
            logger.warning("No active settings for tenant, not monitoring", extra={"tenant_id": tenant_id})
            return []

        for backend_kind, config in tenant.backends.items():
            key = (tenant_id, backend_kind)
            if key in self._keys:
                continue

            try:
                adapter = self.adapter_factory(backend_kind, config)
            except ConfigurationError as e:
                logger.error(
                    f"Cannot monitor backend: {e}",
                    extra={"tenant_id": tenant_id, "backend_kind": backend_kind.value},
                )
                continue

            key_state = KeyState(tenant_id=tenant_id, backend_kind=backend_kind, adapter=adapter)
            self._keys[key] = key_state
            if schedule:
                key_state.task = asyncio.create_task(
                    self._run(key_state),
                    name=f"monitor-{tenant_id}-{backend_kind.value}",
                )

            logger.info(
                "Monitoring tenant backend",
                extra={"tenant_id": tenant_id, "backend_kind": backend_kind.value, "scheduled": schedule},
            )

        return self.keys_for(tenant_id)

    async def stop_tenant(self, tenant_id: int) -> dict[BackendKind, ConnectionState]:
        """
        Stop polling a tenant and release its adapters.

        A poll in flight is cancelled; no event is emitted after this returns.

        Returns:
            Last-known state per backend
        """
        last_states: dict[BackendKind, ConnectionState] = {}
        for key in self.keys_for(tenant_id):
            key_state = self._keys.pop(key)
            last_states[key_state.backend_kind] = key_state.state

            if key_state.task is not None:
                key_state.task.cancel()
                try:
                    await key_state.task
                except asyncio.CancelledError:
                    pass

            # Wait out an on-demand poll so it cannot emit after teardown
            async with key_state.lock:
                await key_state.adapter.close()

        if last_states:
            logger.info("Stopped monitoring tenant", extra={"tenant_id": tenant_id})
        return last_states

    async def reload_tenant(self, tenant_id: int) -> list[MonitorKey]:
        """
        Rebuild adapters from the (already refreshed) settings cache.

        Last-known states of backends that are still configured are kept, so a
        reload alone never re-announces a state. Suspension is lifted.
        """
        scheduled = any(self._keys[key].task is not None for key in self.keys_for(tenant_id))
        last_states = await self.stop_tenant(tenant_id)
        keys = await self.start_tenant(tenant_id, schedule=scheduled or not last_states)

        for key in keys:
            previous = last_states.get(key[1])
            if previous is not None:
                self._keys[key].state = previous
        return keys

    async def stop(self) -> None:
        """Stop monitoring every tenant."""
        for tenant_id in sorted({key[0] for key in self._keys}):
            await self.stop_tenant(tenant_id)

    async def _run(self, key_state: KeyState) -> None:
        """Polling loop for one key: tick now, then every ``poll_interval`` seconds."""
        while True:
            await self._tick(key_state)
            await asyncio.sleep(self.poll_interval)

    async def _tick(self, key_state: KeyState) -> PollOutcome | None:
        if key_state.lock.locked():
            logger.debug(
                "Previous poll still running, skipping tick",
                extra={"tenant_id": key_state.tenant_id, "backend_kind": key_state.backend_kind.value},
            )
            return None

        try:
            async with key_state.lock:
                return await self._poll_locked(key_state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Keep the loop alive; the next tick retries
            logger.error(
                f"Unexpected error while polling: {e}",
                extra={"tenant_id": key_state.tenant_id, "backend_kind": key_state.backend_kind.value},
                exc_info=True,
            )
            return None

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll_once(self, tenant_id: int, backend_kind: BackendKind) -> PollOutcome:
        """
        Poll one tenant backend now, waiting for a poll already in flight.

        Returns:
            PollOutcome; ``skipped`` when the key is not monitored or suspended
        """
        key_state = self._keys.get((tenant_id, backend_kind))
        if key_state is None:
            return PollOutcome(
                tenant_id=tenant_id,
                backend_kind=backend_kind,
                previous_state=ConnectionState.UNKNOWN,
                state=ConnectionState.UNKNOWN,
                skipped=True,
                error="not_monitored",
            )

        async with key_state.lock:
            return await self._poll_locked(key_state)

    async def force_check(self, tenant_id: int) -> list[PollOutcome]:
        """Poll every monitored backend of the tenant immediately, same dedup rule."""
        outcomes = []
        for _, backend_kind in self.keys_for(tenant_id):
            outcomes.append(await self.poll_once(tenant_id, backend_kind))

        logger.info(
            "Forced connection check",
            extra={"tenant_id": tenant_id, "events": sum(1 for o in outcomes if o.changed)},
        )
        return outcomes

    async def _poll_locked(self, key_state: KeyState) -> PollOutcome:
        previous = key_state.state

        if key_state.suspended:
            return PollOutcome(
                tenant_id=key_state.tenant_id,
                backend_kind=key_state.backend_kind,
                previous_state=previous,
                state=previous,
                skipped=True,
                error="suspended",
            )

        key_state.last_checked_at = utc_now()
        try:
            snapshot = await self._get_state(key_state)
        except AuthRejected as e:
            key_state.suspended = True
            key_state.last_error = str(e)
            logger.error(
                f"Provider rejected credentials, suspending polling: {e}",
                extra={"tenant_id": key_state.tenant_id, "backend_kind": key_state.backend_kind.value},
            )
            return self._transition(key_state, ConnectionState.ERROR, reason=f"auth_rejected: {e}")
        except BridgeError as e:
            return self._record_failure(key_state, e)

        key_state.consecutive_failures = 0
        key_state.last_error = None
        key_state.phone = snapshot.phone or key_state.phone
        return self._transition(key_state, snapshot.state)

    async def _get_state(self, key_state: KeyState) -> StateSnapshot:
        try:
            return await asyncio.wait_for(key_state.adapter.get_state(), timeout=self.poll_timeout)
        except asyncio.TimeoutError:
            raise AdapterUnavailable(
                message=f"State query exceeded {self.poll_timeout}s",
                code="TIMEOUT",
            )

    def _record_failure(self, key_state: KeyState, error: BridgeError) -> PollOutcome:
        key_state.consecutive_failures += 1
        key_state.last_error = str(error)

        logger.warning(
            f"State query failed ({key_state.consecutive_failures}/{self.failure_threshold}): {error}",
            extra={
                "tenant_id": key_state.tenant_id,
                "backend_kind": key_state.backend_kind.value,
                "code": error.code,
            },
        )

        if key_state.consecutive_failures >= self.failure_threshold:
            return self._transition(key_state, ConnectionState.ERROR, reason=str(error))

        # Below the threshold the last-known state stands
        return PollOutcome(
            tenant_id=key_state.tenant_id,
            backend_kind=key_state.backend_kind,
            previous_state=key_state.state,
            state=key_state.state,
            error=str(error),
        )

    # =========================================================================
    # Session start and pushed updates
    # =========================================================================

    async def connect(self, tenant_id: int, backend_kind: BackendKind) -> PollOutcome:
        """
        Ask the provider to start a session.

        A QR code moves the state to CONNECTING and is delivered as
        ``qrCodeData`` on the ``qr_code_generated`` event.
        """
        key_state = self._keys.get((tenant_id, backend_kind))
        if key_state is None:
            return PollOutcome(
                tenant_id=tenant_id,
                backend_kind=backend_kind,
                previous_state=ConnectionState.UNKNOWN,
                state=ConnectionState.UNKNOWN,
                skipped=True,
                error="not_monitored",
            )

        async with key_state.lock:
            try:
                result = await asyncio.wait_for(key_state.adapter.connect(), timeout=self.poll_timeout)
            except asyncio.TimeoutError:
                return self._record_failure(
                    key_state, AdapterUnavailable(message="Connect request timed out", code="TIMEOUT")
                )
            except AuthRejected as e:
                key_state.suspended = True
                key_state.last_error = str(e)
                return self._transition(key_state, ConnectionState.ERROR, reason=f"auth_rejected: {e}")
            except BridgeError as e:
                return self._record_failure(key_state, e)

            key_state.consecutive_failures = 0
            return self._transition(key_state, result.state, qr_code=result.qr_code)

    async def apply_update(
        self,
        tenant_id: int,
        backend_kind: BackendKind,
        state: ConnectionState,
        qr_code: str | None = None,
    ) -> PollOutcome:
        """Apply a state pushed by the provider (Evolution connection.update / qrcode.updated)."""
        key_state = self._keys.get((tenant_id, backend_kind))
        if key_state is None:
            return PollOutcome(
                tenant_id=tenant_id,
                backend_kind=backend_kind,
                previous_state=ConnectionState.UNKNOWN,
                state=ConnectionState.UNKNOWN,
                skipped=True,
                error="not_monitored",
            )

        async with key_state.lock:
            if key_state.suspended:
                return PollOutcome(
                    tenant_id=tenant_id,
                    backend_kind=backend_kind,
                    previous_state=key_state.state,
                    state=key_state.state,
                    skipped=True,
                    error="suspended",
                )
            key_state.consecutive_failures = 0
            return self._transition(key_state, state, qr_code=qr_code)

    # =========================================================================
    # Edge detection
    # =========================================================================

    def _transition(
        self,
        key_state: KeyState,
        new_state: ConnectionState,
        reason: str | None = None,
        qr_code: str | None = None,
    ) -> PollOutcome:
        """
        Record the new state and emit its event, only if it differs.

        A QR code that differs from the last one announced is re-emitted while
        the key stays CONNECTING. Caller holds the lock.
        """
        previous = key_state.state
        fresh_qr = (
            new_state == ConnectionState.CONNECTING and bool(qr_code) and qr_code != key_state.last_qr_code
        )
        if (new_state == previous and not fresh_qr) or new_state not in STATE_EVENTS:
            return PollOutcome(
                tenant_id=key_state.tenant_id,
                backend_kind=key_state.backend_kind,
                previous_state=previous,
                state=previous,
                error=reason,
            )

        payload: dict[str, Any] = {"connected": new_state == ConnectionState.CONNECTED}
        if qr_code:
            payload["qr_code_data"] = qr_code
        if reason and new_state == ConnectionState.ERROR:
            payload["reason"] = reason

        event = WebhookEvent.create(
            event_type=STATE_EVENTS[new_state],
            tenant_id=key_state.tenant_id,
            backend_kind=key_state.backend_kind,
            payload=payload,
        )

        key_state.state = new_state
        key_state.last_qr_code = qr_code if new_state == ConnectionState.CONNECTING else None
        self.emit(event)

        logger.info(
            f"Connection state {previous.value} -> {new_state.value}",
            extra={
                "tenant_id": key_state.tenant_id,
                "backend_kind": key_state.backend_kind.value,
                "event_type": event.event_type.value,
            },
        )

        return PollOutcome(
            tenant_id=key_state.tenant_id,
            backend_kind=key_state.backend_kind,
            previous_state=previous,
            state=new_state,
            event=event,
            error=reason,
        )

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_state(self, tenant_id: int, backend_kind: BackendKind) -> ConnectionState:
        key_state = self._keys.get((tenant_id, backend_kind))
        return key_state.state if key_state else ConnectionState.UNKNOWN

    def reset(self, tenant_id: int) -> None:
        """Forget last-known states so the next poll re-announces the current one."""
        for key in self.keys_for(tenant_id):
            key_state = self._keys[key]
            key_state.state = ConnectionState.UNKNOWN
            key_state.consecutive_failures = 0
            key_state.last_qr_code = None
            key_state.last_error = None
        logger.info("Reset monitor state", extra={"tenant_id": tenant_id})

    def status(self) -> list[dict]:
        """Snapshot of every monitored key."""
        return [self._keys[key].to_status() for key in sorted(self._keys, key=lambda k: (k[0], k[1].value))]
