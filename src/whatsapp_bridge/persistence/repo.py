"""
Bridge Repository

Repository pattern for bridge database operations.
Callers own the session and decide when to commit.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from whatsapp_bridge.contracts.envelope import utc_now
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageDirection, MessageType
from whatsapp_bridge.persistence.models import Message, TenantBinding, WebhookEndpoint


class BridgeRepository:
    """Repository for bridge database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Tenant Bindings
    # =========================================================================

    def get_binding_by_phone_number_id(self, phone_number_id: str) -> TenantBinding | None:
        """Get active Cloud binding by phone number ID."""
        return (
            self.db.query(TenantBinding)
            .filter(
                TenantBinding.phone_number_id == phone_number_id,
                TenantBinding.backend_kind == BackendKind.CLOUD.value,
                TenantBinding.is_active == True,  # noqa: E712
            )
            .first()
        )

    def get_binding_by_instance_name(self, instance_name: str) -> TenantBinding | None:
        """Get active QR binding by Evolution instance name."""
        return (
            self.db.query(TenantBinding)
            .filter(
                TenantBinding.instance_name == instance_name,
                TenantBinding.backend_kind == BackendKind.QR.value,
                TenantBinding.is_active == True,  # noqa: E712
            )
            .first()
        )

    def get_binding(self, tenant_id: int, backend_kind: BackendKind) -> TenantBinding | None:
        """Get the binding (active or not) for a tenant backend."""
        return (
            self.db.query(TenantBinding)
            .filter(
                TenantBinding.tenant_id == tenant_id,
                TenantBinding.backend_kind == backend_kind.value,
            )
            .order_by(TenantBinding.is_active.desc(), TenantBinding.updated_at.desc())
            .first()
        )

    def get_active_bindings_for_tenant(self, tenant_id: int) -> list[TenantBinding]:
        """Get all active bindings for a tenant."""
        return (
            self.db.query(TenantBinding)
            .filter(
                TenantBinding.tenant_id == tenant_id,
                TenantBinding.is_active == True,  # noqa: E712
            )
            .order_by(TenantBinding.backend_kind)
            .all()
        )

    def list_active_tenant_ids(self) -> list[int]:
        """Tenants with at least one active binding."""
        rows = (
            self.db.query(TenantBinding.tenant_id)
            .filter(TenantBinding.is_active == True)  # noqa: E712
            .distinct()
            .order_by(TenantBinding.tenant_id)
            .all()
        )
        return [row[0] for row in rows]

    def upsert_binding(
        self,
        tenant_id: int,
        backend_kind: BackendKind,
        tenant_name: str,
        phone_number_id: str | None = None,
        waba_id: str | None = None,
        access_token_encrypted: str | None = None,
        instance_name: str | None = None,
        api_url: str | None = None,
        api_key_encrypted: str | None = None,
        display_number: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> TenantBinding:
        """Create the tenant backend binding, or replace its configuration and reactivate it."""
        binding = self.get_binding(tenant_id, backend_kind)
        if binding is None:
            binding = TenantBinding(tenant_id=tenant_id, backend_kind=backend_kind.value)
            self.db.add(binding)

        binding.tenant_name = tenant_name
        binding.phone_number_id = phone_number_id
        binding.waba_id = waba_id
        binding.access_token_encrypted = access_token_encrypted
        binding.instance_name = instance_name
        binding.api_url = api_url
        binding.api_key_encrypted = api_key_encrypted
        binding.display_number = display_number
        binding.config = config or {}
        binding.is_active = True
        binding.updated_at = utc_now()
        return binding

    def deactivate_binding(self, tenant_id: int, backend_kind: BackendKind) -> bool:
        """Deactivate a tenant backend binding. Returns False when none was active."""
        binding = self.get_binding(tenant_id, backend_kind)
        if binding is None or not binding.is_active:
            return False
        binding.is_active = False
        binding.updated_at = utc_now()
        return True

    # =========================================================================
    # Webhook Endpoints
    # =========================================================================

    def get_webhook_endpoint(self, tenant_id: int) -> WebhookEndpoint | None:
        """Get webhook URLs for a tenant."""
        return self.db.query(WebhookEndpoint).filter(WebhookEndpoint.tenant_id == tenant_id).first()

    def set_webhook_endpoint(
        self,
        tenant_id: int,
        general_url: str | None,
        cloud_url: str | None = None,
    ) -> WebhookEndpoint:
        """Create or replace webhook URLs for a tenant."""
        endpoint = self.get_webhook_endpoint(tenant_id)
        if endpoint is None:
            endpoint = WebhookEndpoint(tenant_id=tenant_id)
            self.db.add(endpoint)

        endpoint.general_url = general_url or None
        endpoint.cloud_url = cloud_url or None
        endpoint.updated_at = utc_now()
        return endpoint

    # =========================================================================
    # Messages
    # =========================================================================

    def get_message(self, message_id: UUID) -> Message | None:
        """Get message by internal ID."""
        return self.db.query(Message).filter(Message.id == message_id).first()

    def get_message_by_identity(
        self,
        tenant_id: int,
        contact_id: str,
        backend_kind: BackendKind,
        provider_message_id: str,
    ) -> Message | None:
        """Get message by its identity tuple (for idempotency)."""
        return (
            self.db.query(Message)
            .filter(
                Message.tenant_id == tenant_id,
                Message.contact_id == contact_id,
                Message.backend_kind == backend_kind.value,
                Message.provider_message_id == provider_message_id,
            )
            .first()
        )

    def get_message_by_provider_id(
        self,
        tenant_id: int,
        backend_kind: BackendKind,
        provider_message_id: str,
    ) -> Message | None:
        """Get message by provider ID when the contact is not known (status callbacks)."""
        return (
            self.db.query(Message)
            .filter(
                Message.tenant_id == tenant_id,
                Message.backend_kind == backend_kind.value,
                Message.provider_message_id == provider_message_id,
            )
            .order_by(Message.created_at.desc())
            .first()
        )

    def create_message(
        self,
        tenant_id: int,
        contact_id: str,
        backend_kind: BackendKind,
        provider_message_id: str,
        direction: MessageDirection,
        message_type: MessageType,
        body: str,
        status: DeliveryStatus,
        created_at: datetime | None = None,
        content_json: dict[str, Any] | None = None,
    ) -> Message:
        """Create a new message record."""
        now = utc_now()
        message = Message(
            tenant_id=tenant_id,
            contact_id=contact_id,
            backend_kind=backend_kind.value,
            provider_message_id=provider_message_id,
            direction=direction.value,
            message_type=message_type.value,
            body=body,
            delivery_status=status.value,
            status_updated_at=now,
            created_at=created_at or now,
            updated_at=now,
            content_json=content_json or {},
        )
        self.db.add(message)
        return message

    def update_message_status(
        self,
        message: Message,
        status: DeliveryStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Update message status."""
        now = utc_now()
        message.delivery_status = status.value
        message.status_updated_at = now
        message.updated_at = now
        if error_code:
            message.error_code = error_code
        if error_message:
            message.error_message = error_message

    def list_messages_for_contact(self, tenant_id: int, contact_id: str) -> list[Message]:
        """All messages with a contact across both backends, in conversation order."""
        return (
            self.db.query(Message)
            .filter(
                Message.tenant_id == tenant_id,
                Message.contact_id == contact_id,
            )
            .order_by(
                Message.created_at.asc(),
                Message.backend_kind.asc(),
                Message.provider_message_id.asc(),
            )
            .all()
        )

    def list_contacts(self, tenant_id: int, limit: int = 100) -> list[tuple[str, datetime, int]]:
        """Contacts with stored messages as (contact_id, last_message_at, message_count), most recent first."""
        last_message_at = func.max(Message.created_at).label("last_message_at")
        rows = (
            self.db.query(Message.contact_id, last_message_at, func.count(Message.id))
            .filter(Message.tenant_id == tenant_id)
            .group_by(Message.contact_id)
            .order_by(last_message_at.desc(), Message.contact_id.asc())
            .limit(limit)
            .all()
        )
        return [(contact_id, last, count) for contact_id, last, count in rows]
