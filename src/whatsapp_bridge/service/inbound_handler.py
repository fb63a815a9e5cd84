"""
Inbound Callback Handler

Processes provider callbacks (Meta Cloud API and Evolution API):
1. Parses the callback body
2. Resolves the tenant from phone_number_id / instance_name
3. Records new messages (idempotent)
4. Queues a message_received webhook for each new message
5. Applies delivery status updates
6. Feeds pushed session updates to the connection monitor
"""

import logging
from dataclasses import dataclass
from typing import Any

from whatsapp_bridge.contracts.envelope import WebhookEvent
from whatsapp_bridge.contracts.event_types import BackendKind, WebhookEventType
from whatsapp_bridge.dispatch.dispatcher import WebhookDispatcher
from whatsapp_bridge.monitor.connection_monitor import ConnectionMonitor
from whatsapp_bridge.providers.base import InboundMessage, ParsedCallback
from whatsapp_bridge.providers.evolution.client import parse_callback as parse_evolution_callback
from whatsapp_bridge.providers.meta_cloud.client import parse_callback as parse_cloud_callback
from whatsapp_bridge.routing.tenant_settings import SettingsCache
from whatsapp_bridge.service.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class InboundResult:
    """Counts for one processed callback."""

    messages: int = 0
    duplicates: int = 0
    unrouted: int = 0
    statuses: int = 0
    connection_updates: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "messages": self.messages,
            "duplicates": self.duplicates,
            "unrouted": self.unrouted,
            "statuses": self.statuses,
            "connection_updates": self.connection_updates,
        }


def parse_callback(backend_kind: BackendKind, payload: dict[str, Any]) -> ParsedCallback:
    if backend_kind == BackendKind.CLOUD:
        return parse_cloud_callback(payload)
    return parse_evolution_callback(payload)


class InboundHandler:
    """
    Handles provider callbacks.

    Responsibilities:
    - Persist inbound messages exactly once
    - Notify the tenant webhook of new messages
    - Move outbound messages' delivery status forward
    - Forward Evolution connection/QR updates to the monitor
    """

    def __init__(
        self,
        settings_cache: SettingsCache,
        store: MessageStore,
        dispatcher: WebhookDispatcher,
        monitor: ConnectionMonitor | None = None,
    ):
        self.settings_cache = settings_cache
        self.store = store
        self.dispatcher = dispatcher
        self.monitor = monitor

    async def handle_callback(self, backend_kind: BackendKind, payload: dict[str, Any]) -> InboundResult:
        """
        Process one provider callback body.

        Args:
            backend_kind: Backend the callback came from
            payload: Parsed JSON body

        Returns:
            InboundResult with per-kind counts
        """
        parsed = parse_callback(backend_kind, payload)
        result = InboundResult()

        for message in parsed.messages:
            self._handle_message(backend_kind, message, result)

        for status in parsed.statuses:
            tenant = self.settings_cache.resolve(backend_kind, status.route_key)
            if tenant is None:
                result.unrouted += 1
                continue

            outcome = self.store.update_delivery_status_by_provider_id(
                tenant_id=tenant.tenant_id,
                backend_kind=backend_kind,
                provider_message_id=status.message_id,
                status=status.status,
                error_code=status.error_code,
                error_message=status.error_message,
            )
            if outcome.applied:
                result.statuses += 1

        for update in parsed.connection_updates:
            tenant = self.settings_cache.resolve(backend_kind, update.route_key)
            if tenant is None:
                result.unrouted += 1
                continue
            if self.monitor is None:
                continue

            outcome = await self.monitor.apply_update(
                tenant.tenant_id,
                backend_kind,
                update.state,
                qr_code=update.qr_code,
            )
            if not outcome.skipped:
                result.connection_updates += 1

        return result

    def _handle_message(self, backend_kind: BackendKind, message: InboundMessage, result: InboundResult) -> None:
        tenant = self.settings_cache.resolve(backend_kind, message.route_key)
        if tenant is None:
            logger.warning(
                "Could not resolve tenant for inbound message",
                extra={"backend_kind": backend_kind.value, "route_key": message.route_key},
            )
            result.unrouted += 1
            return

        outcome = self.store.record_inbound(
            tenant_id=tenant.tenant_id,
            contact_id=message.contact_id,
            backend_kind=backend_kind,
            provider_message_id=message.message_id,
            body=message.body,
            message_type=message.message_type,
            occurred_at=message.timestamp,
            raw_payload=message.raw_payload,
        )

        if not outcome.created:
            result.duplicates += 1
            return

        result.messages += 1
        self.dispatcher.submit(
            WebhookEvent.create(
                event_type=WebhookEventType.MESSAGE_RECEIVED,
                tenant_id=tenant.tenant_id,
                backend_kind=backend_kind,
                occurred_at=message.timestamp,
                payload={
                    "contact_number": message.contact_id,
                    "message_id": message.message_id,
                    "message_type": message.message_type.value,
                    "body": message.body,
                },
            )
        )
