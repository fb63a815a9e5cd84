"""
Message Store

Write path for messages from both backends:
- idempotent inbound recording (unique identity + IntegrityError recovery)
- outbound recording after a successful provider send
- forward-only delivery status transitions
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from basecore.db import get_sessionmaker
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageDirection, MessageType
from whatsapp_bridge.errors import DuplicateInboundMessage
from whatsapp_bridge.persistence.models import Message
from whatsapp_bridge.persistence.repo import BridgeRepository
from whatsapp_bridge.routing.conversation import ContactSummary, ConversationEntry, ConversationResolver

logger = logging.getLogger(__name__)

STATUS_RANK = {
    DeliveryStatus.PENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
}


def is_forward_transition(current: DeliveryStatus, new: DeliveryStatus) -> bool:
    """pending -> sent -> delivered, or -> failed from any non-terminal status."""
    if current.is_terminal:
        return False
    if new == DeliveryStatus.FAILED:
        return True
    return STATUS_RANK[new] > STATUS_RANK[current]


@dataclass(frozen=True)
class RecordOutcome:
    """Result of recording a message. ``created`` is False for an idempotency hit."""

    message_id: UUID
    provider_message_id: str
    created: bool


@dataclass(frozen=True)
class StatusUpdateOutcome:
    """Result of a delivery status update."""

    message_id: UUID | None
    previous: DeliveryStatus | None
    current: DeliveryStatus | None
    applied: bool
    reason: str | None = None

    @property
    def rejected(self) -> bool:
        return not self.applied and self.reason == "not_forward"


class MessageStore:
    """
    Persists inbound/outbound messages for the conversation view.

    Each operation opens its own session from ``session_factory`` and commits
    before returning.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self.session_factory = session_factory or get_sessionmaker()
        self.resolver = ConversationResolver(self.session_factory)

    def record_inbound(
        self,
        tenant_id: int,
        contact_id: str,
        backend_kind: BackendKind,
        provider_message_id: str,
        body: str,
        message_type: MessageType = MessageType.TEXT,
        occurred_at: datetime | None = None,
        raw_payload: dict[str, Any] | None = None,
    ) -> RecordOutcome:
        """
        Record an inbound message exactly once.

        A repeated callback is reported with ``created=False`` and the id of
        the row already stored.
        """
        with self.session_factory() as db:
            try:
                message = self._insert_inbound(
                    BridgeRepository(db),
                    tenant_id=tenant_id,
                    contact_id=contact_id,
                    backend_kind=backend_kind,
                    provider_message_id=provider_message_id,
                    body=body,
                    message_type=message_type,
                    occurred_at=occurred_at,
                    raw_payload=raw_payload,
                )
            except DuplicateInboundMessage as e:
                logger.debug(
                    str(e),
                    extra={"tenant_id": tenant_id, "provider_message_id": provider_message_id},
                )
                return RecordOutcome(
                    message_id=e.details["message_id"],
                    provider_message_id=provider_message_id,
                    created=False,
                )

        logger.info(
            "Recorded inbound message",
            extra={
                "tenant_id": tenant_id,
                "backend_kind": backend_kind.value,
                "provider_message_id": provider_message_id,
            },
        )
        return RecordOutcome(message_id=message.id, provider_message_id=provider_message_id, created=True)

    def _insert_inbound(
        self,
        repo: BridgeRepository,
        tenant_id: int,
        contact_id: str,
        backend_kind: BackendKind,
        provider_message_id: str,
        body: str,
        message_type: MessageType,
        occurred_at: datetime | None,
        raw_payload: dict[str, Any] | None,
    ) -> Message:
        """
        Insert and commit, or raise DuplicateInboundMessage.

        Concurrent duplicate callbacks race on the unique identity constraint;
        the loser rolls back and looks up the winner's row.
        """
        existing = repo.get_message_by_identity(tenant_id, contact_id, backend_kind, provider_message_id)
        if existing is not None:
            raise DuplicateInboundMessage(
                message=f"Message {provider_message_id} already recorded",
                code="DUPLICATE",
                details={"message_id": existing.id},
            )

        message = repo.create_message(
            tenant_id=tenant_id,
            contact_id=contact_id,
            backend_kind=backend_kind,
            provider_message_id=provider_message_id,
            direction=MessageDirection.INBOUND,
            message_type=message_type,
            body=body,
            status=DeliveryStatus.DELIVERED,
            created_at=occurred_at,
            content_json=raw_payload,
        )

        try:
            repo.db.commit()
        except IntegrityError:
            repo.db.rollback()
            existing = repo.get_message_by_identity(tenant_id, contact_id, backend_kind, provider_message_id)
            if existing is None:
                raise
            raise DuplicateInboundMessage(
                message=f"Message {provider_message_id} recorded by a concurrent callback",
                code="DUPLICATE",
                details={"message_id": existing.id},
            )

        return message

    def record_outbound(
        self,
        tenant_id: int,
        contact_id: str,
        backend_kind: BackendKind,
        body: str,
        message_type: MessageType = MessageType.TEXT,
        provider_message_id: str | None = None,
        raw_payload: dict[str, Any] | None = None,
    ) -> RecordOutcome:
        """
        Record a message after the provider accepted it.

        Without a provider id a local ``local-<uuid>`` id is assigned.
        """
        provider_message_id = provider_message_id or f"local-{uuid4()}"

        with self.session_factory() as db:
            repo = BridgeRepository(db)

            existing = repo.get_message_by_identity(tenant_id, contact_id, backend_kind, provider_message_id)
            if existing is not None:
                return RecordOutcome(message_id=existing.id, provider_message_id=provider_message_id, created=False)

            message = repo.create_message(
                tenant_id=tenant_id,
                contact_id=contact_id,
                backend_kind=backend_kind,
                provider_message_id=provider_message_id,
                direction=MessageDirection.OUTBOUND,
                message_type=message_type,
                body=body,
                status=DeliveryStatus.SENT,
                content_json=raw_payload,
            )
            try:
                db.commit()
            except IntegrityError:
                # A concurrent record of the same provider id won
                db.rollback()
                existing = repo.get_message_by_identity(tenant_id, contact_id, backend_kind, provider_message_id)
                if existing is None:
                    raise
                return RecordOutcome(message_id=existing.id, provider_message_id=provider_message_id, created=False)

            logger.info(
                "Recorded outbound message",
                extra={
                    "tenant_id": tenant_id,
                    "backend_kind": backend_kind.value,
                    "provider_message_id": provider_message_id,
                },
            )
            return RecordOutcome(message_id=message.id, provider_message_id=provider_message_id, created=True)

    def _apply_status(
        self,
        repo: BridgeRepository,
        message: Message,
        status: DeliveryStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> StatusUpdateOutcome:
        previous = DeliveryStatus(message.delivery_status)

        if previous == status:
            return StatusUpdateOutcome(message.id, previous, previous, applied=False, reason="unchanged")

        if not is_forward_transition(previous, status):
            logger.warning(
                f"Rejected delivery status {previous.value} -> {status.value}",
                extra={"message_id": str(message.id), "tenant_id": message.tenant_id},
            )
            return StatusUpdateOutcome(message.id, previous, previous, applied=False, reason="not_forward")

        repo.update_message_status(message, status, error_code=error_code, error_message=error_message)
        repo.db.commit()
        return StatusUpdateOutcome(message.id, previous, status, applied=True)

    def update_delivery_status(self, message_id: UUID, status: DeliveryStatus) -> StatusUpdateOutcome:
        """Move a message's delivery status forward."""
        with self.session_factory() as db:
            repo = BridgeRepository(db)
            message = repo.get_message(message_id)
            if message is None:
                return StatusUpdateOutcome(None, None, None, applied=False, reason="not_found")
            return self._apply_status(repo, message, status)

    def update_delivery_status_by_provider_id(
        self,
        tenant_id: int,
        backend_kind: BackendKind,
        provider_message_id: str,
        status: DeliveryStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> StatusUpdateOutcome:
        """Apply a provider status callback to the message it refers to."""
        with self.session_factory() as db:
            repo = BridgeRepository(db)
            message = repo.get_message_by_provider_id(tenant_id, backend_kind, provider_message_id)
            if message is None:
                logger.debug(
                    "Status update for unknown message",
                    extra={"tenant_id": tenant_id, "provider_message_id": provider_message_id},
                )
                return StatusUpdateOutcome(None, None, None, applied=False, reason="not_found")
            return self._apply_status(repo, message, status, error_code, error_message)

    def get_conversation(self, tenant_id: int, contact_id: str) -> list[ConversationEntry]:
        return self.resolver.get_conversation(tenant_id, contact_id)

    def list_contacts(self, tenant_id: int, limit: int = 100) -> list[ContactSummary]:
        return self.resolver.list_contacts(tenant_id, limit=limit)
