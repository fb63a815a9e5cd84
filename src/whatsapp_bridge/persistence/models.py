"""
WhatsApp Bridge Database Models

Tables owned by the WhatsApp bridge.

Tables:
- bridge_tenant_bindings: Maps a tenant to one upstream backend (QR or Cloud)
- bridge_webhook_endpoints: Downstream webhook URLs per tenant
- bridge_messages: Inbound/outbound messages from both backends
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from basecore.db import Base
from whatsapp_bridge.contracts.envelope import utc_now
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageType

JSONType = JSON().with_variant(JSONB(), "postgresql")


class BridgeModelMixin:
    """Common fields for all bridge models."""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


class TenantBinding(Base, BridgeModelMixin):
    """
    Maps a tenant to an upstream WhatsApp backend (Evolution QR session or Meta Cloud API).

    A tenant has at most one active binding per backend kind.
    The phone_number_id (Cloud) or instance_name (QR) is used to route incoming callbacks.
    """

    __tablename__ = "bridge_tenant_bindings"

    tenant_name = Column(String(255), nullable=False)  # userName in webhook payloads
    backend_kind = Column(String(10), nullable=False)  # qr, cloud

    # Meta Cloud API fields
    phone_number_id = Column(String(100), nullable=True)
    waba_id = Column(String(100), nullable=True)
    access_token_encrypted = Column(Text, nullable=True)

    # Evolution API fields
    instance_name = Column(String(100), nullable=True)
    api_url = Column(String(255), nullable=True)
    api_key_encrypted = Column(Text, nullable=True)

    # Common fields
    display_number = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    config = Column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("phone_number_id", name="uq_bridge_bindings_phone_number_id"),
        UniqueConstraint("instance_name", name="uq_bridge_bindings_instance_name"),
        Index(
            "uq_bridge_bindings_tenant_backend_active",
            "tenant_id",
            "backend_kind",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("idx_bridge_bindings_tenant_active", "tenant_id", "is_active"),
    )


class WebhookEndpoint(Base, BridgeModelMixin):
    """
    Downstream webhook URLs for a tenant.

    ``cloud_url`` overrides ``general_url`` for events raised by the Cloud backend.
    """

    __tablename__ = "bridge_webhook_endpoints"

    general_url = Column(String(2048), nullable=True)
    cloud_url = Column(String(2048), nullable=True)

    __table_args__ = (UniqueConstraint("tenant_id", name="uq_bridge_webhook_endpoints_tenant"),)


class Message(Base, BridgeModelMixin):
    """
    Stores all messages (inbound and outbound) from both backends.

    ``created_at`` is the provider timestamp for inbound messages and the
    send time for outbound ones. Provider message IDs are used for idempotency.
    """

    __tablename__ = "bridge_messages"

    contact_id = Column(String(64), nullable=False)
    backend_kind = Column(String(10), nullable=False)
    provider_message_id = Column(String(128), nullable=False)
    direction = Column(String(10), nullable=False)  # inbound, outbound
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)
    body = Column(Text, nullable=False, default="")
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    content_json = Column(JSONType, nullable=False, default=dict)  # Raw provider payload

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "contact_id",
            "backend_kind",
            "provider_message_id",
            name="uq_bridge_messages_identity",
        ),
        Index("idx_bridge_messages_tenant_contact_created", "tenant_id", "contact_id", "created_at"),
        Index("idx_bridge_messages_provider_id", "tenant_id", "backend_kind", "provider_message_id"),
    )
