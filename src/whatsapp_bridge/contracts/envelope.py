"""
Webhook Event Envelope

Ephemeral wrapper handed from the connection monitor / inbound path to the
webhook dispatcher.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from whatsapp_bridge.contracts.event_types import BackendKind, WebhookEventType


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class WebhookEvent:
    """
    Event waiting to be delivered to a tenant's webhook URL.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: What happened
        tenant_id: Tenant (dashboard user id) the event belongs to
        backend_kind: Backend the event originated from; selects the URL and payload shape
        occurred_at: When the event occurred (UTC)
        payload: Event-specific data merged into the outbound ``data`` object
    """

    event_id: UUID
    event_type: WebhookEventType
    tenant_id: int
    backend_kind: BackendKind
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: WebhookEventType,
        tenant_id: int,
        backend_kind: BackendKind,
        payload: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> "WebhookEvent":
        """Create a new event with auto-generated event_id and timestamp."""
        return cls(
            event_id=uuid4(),
            event_type=event_type,
            tenant_id=tenant_id,
            backend_kind=backend_kind,
            occurred_at=occurred_at or utc_now(),
            payload=payload or {},
        )

    @property
    def key(self) -> tuple[int, BackendKind]:
        """Ordering key: deliveries are FIFO per tenant and backend."""
        return self.tenant_id, self.backend_kind

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "tenant_id": self.tenant_id,
            "backend_kind": self.backend_kind.value,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookEvent":
        """Rebuild an event from ``to_dict`` output."""
        return cls(
            event_id=UUID(str(data["event_id"])),
            event_type=WebhookEventType(data["event_type"]),
            tenant_id=int(data["tenant_id"]),
            backend_kind=BackendKind(data["backend_kind"]),
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
            payload=data.get("payload") or {},
        )

    def to_stream_data(self) -> dict[str, str]:
        """Convert to dictionary suitable for Redis Stream (all string values)."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "tenant_id": str(self.tenant_id),
            "backend_kind": self.backend_kind.value,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": json.dumps(self.payload),
        }

    @classmethod
    def from_stream_data(cls, data: dict[str, str]) -> "WebhookEvent":
        """Parse a Redis Stream entry back into an event."""
        return cls.from_dict({**data, "payload": json.loads(data.get("payload") or "{}")})
