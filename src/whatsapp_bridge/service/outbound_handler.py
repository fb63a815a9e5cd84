"""
Outbound Message Handler

Sends a message through the tenant's backend and records it once the
provider has accepted it.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import MessageType
from whatsapp_bridge.errors import BridgeError
from whatsapp_bridge.providers.factory import AdapterFactory, get_adapter
from whatsapp_bridge.routing.tenant_settings import SettingsCache
from whatsapp_bridge.service.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    """Result of an outbound send."""

    sent: bool
    message_id: UUID | None = None
    provider_message_id: str | None = None
    error: str | None = None
    error_code: str | None = None


class OutboundHandler:
    """
    Handles outbound messages.

    Nothing is recorded when the provider rejects the send.
    """

    def __init__(
        self,
        settings_cache: SettingsCache,
        store: MessageStore,
        adapter_factory: AdapterFactory | None = None,
    ):
        self.settings_cache = settings_cache
        self.store = store
        self.adapter_factory = adapter_factory or get_adapter

    async def send_message(
        self,
        tenant_id: int,
        backend_kind: BackendKind,
        contact_id: str,
        body: str,
    ) -> SendOutcome:
        """
        Send a text message via the tenant's backend.

        Args:
            tenant_id: Tenant ID
            backend_kind: Backend to send through
            contact_id: Recipient phone number
            body: Message text

        Returns:
            SendOutcome with the stored message id on success
        """
        tenant = self.settings_cache.get(tenant_id)
        config = tenant.backends.get(backend_kind) if tenant else None
        if config is None:
            return SendOutcome(sent=False, error=f"No active {backend_kind.value} binding for tenant")

        try:
            adapter = self.adapter_factory(backend_kind, config)
        except BridgeError as e:
            return SendOutcome(sent=False, error=str(e), error_code=e.code)

        try:
            response = await adapter.send_message(contact_id, body)
        except BridgeError as e:
            logger.error(
                f"Provider error: {e}",
                extra={"tenant_id": tenant_id, "backend_kind": backend_kind.value, "to": contact_id},
            )
            return SendOutcome(sent=False, error=str(e), error_code=e.code)
        finally:
            await adapter.close()

        outcome = self.store.record_outbound(
            tenant_id=tenant_id,
            contact_id=contact_id,
            backend_kind=backend_kind,
            body=body,
            message_type=MessageType.TEXT,
            provider_message_id=response.provider_message_id,
            raw_payload=response.raw_response,
        )

        logger.info(
            "Message sent successfully",
            extra={
                "tenant_id": tenant_id,
                "backend_kind": backend_kind.value,
                "to": contact_id,
                "provider_message_id": outcome.provider_message_id,
            },
        )
        return SendOutcome(
            sent=True,
            message_id=outcome.message_id,
            provider_message_id=outcome.provider_message_id,
        )
