"""
Unified Conversation Resolver

Merges the messages exchanged with one contact over both backends into a
single time-ordered view.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from basecore.db import get_sessionmaker
from whatsapp_bridge.contracts.envelope import ensure_utc
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageDirection, MessageType
from whatsapp_bridge.persistence.models import Message
from whatsapp_bridge.persistence.repo import BridgeRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationEntry:
    """One message in a conversation view."""

    message_id: UUID
    tenant_id: int
    contact_id: str
    backend_kind: BackendKind
    provider_message_id: str
    direction: MessageDirection
    message_type: MessageType
    body: str
    created_at: datetime
    delivery_status: DeliveryStatus

    @classmethod
    def from_model(cls, message: Message) -> "ConversationEntry":
        return cls(
            message_id=message.id,
            tenant_id=message.tenant_id,
            contact_id=message.contact_id,
            backend_kind=BackendKind(message.backend_kind),
            provider_message_id=message.provider_message_id,
            direction=MessageDirection(message.direction),
            message_type=MessageType(message.message_type),
            body=message.body,
            created_at=ensure_utc(message.created_at),
            delivery_status=DeliveryStatus(message.delivery_status),
        )

    @property
    def sort_key(self) -> tuple[datetime, str, str]:
        return self.created_at, self.backend_kind.value, self.provider_message_id

    def to_dict(self) -> dict:
        return {
            "id": str(self.message_id),
            "contactId": self.contact_id,
            "backendKind": self.backend_kind.value,
            "providerMessageId": self.provider_message_id,
            "direction": self.direction.value,
            "type": self.message_type.value,
            "body": self.body,
            "createdAt": self.created_at.isoformat(),
            "deliveryStatus": self.delivery_status.value,
        }


@dataclass(frozen=True)
class ContactSummary:
    """A contact with at least one stored message."""

    contact_id: str
    last_message_at: datetime
    message_count: int


class ConversationResolver:
    """
    Read path for conversations.

    Ordering is ``created_at`` ascending with ties broken by
    ``(backend_kind, provider_message_id)``, so repeated reads of the same
    data return the same sequence.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self.session_factory = session_factory or get_sessionmaker()

    def get_conversation(self, tenant_id: int, contact_id: str) -> list[ConversationEntry]:
        with self.session_factory() as db:
            messages = BridgeRepository(db).list_messages_for_contact(tenant_id, contact_id)
            entries = [ConversationEntry.from_model(message) for message in messages]

        # Stored offsets may differ per row; compare in UTC
        entries.sort(key=lambda entry: entry.sort_key)
        return entries

    def list_contacts(self, tenant_id: int, limit: int = 100) -> list[ContactSummary]:
        """Contacts with a stored conversation, most recent first."""
        with self.session_factory() as db:
            rows = BridgeRepository(db).list_contacts(tenant_id, limit=limit)

        return [
            ContactSummary(contact_id=contact_id, last_message_at=ensure_utc(last), message_count=count)
            for contact_id, last, count in rows
        ]
