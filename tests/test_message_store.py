"""
Tests for message recording and delivery status transitions.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import DeliveryStatus, MessageDirection, MessageType
from whatsapp_bridge.persistence.models import Message
from whatsapp_bridge.persistence.repo import BridgeRepository
from whatsapp_bridge.service.message_store import is_forward_transition

OCCURRED_AT = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def create_pending(session_factory, provider_message_id: str = "wamid.pending") -> Message:
    with session_factory() as db:
        message = BridgeRepository(db).create_message(
            tenant_id=2,
            contact_id="5511888888888",
            backend_kind=BackendKind.CLOUD,
            provider_message_id=provider_message_id,
            direction=MessageDirection.OUTBOUND,
            message_type=MessageType.TEXT,
            body="Pedido confirmado",
            status=DeliveryStatus.PENDING,
        )
        db.commit()
        return message


def count_messages(session_factory) -> int:
    with session_factory() as db:
        return db.query(Message).count()


class TestRecordInbound:
    """Tests for idempotent inbound recording."""

    def test_records_message(self, store, session_factory):
        outcome = store.record_inbound(
            tenant_id=2,
            contact_id="5511888888888",
            backend_kind=BackendKind.CLOUD,
            provider_message_id="wamid.HBgM",
            body="Preciso de cimento",
            occurred_at=OCCURRED_AT,
        )

        assert outcome.created is True
        assert outcome.provider_message_id == "wamid.HBgM"

        with session_factory() as db:
            message = BridgeRepository(db).get_message(outcome.message_id)
            assert message.direction == MessageDirection.INBOUND.value
            assert message.delivery_status == DeliveryStatus.DELIVERED.value
            assert message.body == "Preciso de cimento"

    def test_duplicate_callback_is_recorded_once(self, store, session_factory):
        kwargs = dict(
            tenant_id=2,
            contact_id="5511888888888",
            backend_kind=BackendKind.CLOUD,
            provider_message_id="wamid.HBgM",
            body="Preciso de cimento",
            occurred_at=OCCURRED_AT,
        )

        first = store.record_inbound(**kwargs)
        second = store.record_inbound(**kwargs)

        assert first.created is True
        assert second.created is False
        assert second.message_id == first.message_id
        assert count_messages(session_factory) == 1

    def test_same_id_on_other_backend_is_distinct(self, store, session_factory):
        common = dict(tenant_id=2, contact_id="5511888888888", provider_message_id="same-id", body="Oi")

        store.record_inbound(backend_kind=BackendKind.CLOUD, **common)
        outcome = store.record_inbound(backend_kind=BackendKind.QR, **common)

        assert outcome.created is True
        assert count_messages(session_factory) == 2

    def test_same_id_for_other_tenant_is_distinct(self, store, session_factory):
        common = dict(
            contact_id="5511888888888",
            backend_kind=BackendKind.QR,
            provider_message_id="3EB0C767D26A",
            body="Oi",
        )

        store.record_inbound(tenant_id=2, **common)
        outcome = store.record_inbound(tenant_id=3, **common)

        assert outcome.created is True
        assert count_messages(session_factory) == 2


class TestRecordOutbound:
    """Tests for recording messages after a provider send."""

    def test_records_as_sent(self, store, session_factory):
        outcome = store.record_outbound(
            tenant_id=2,
            contact_id="5511888888888",
            backend_kind=BackendKind.CLOUD,
            body="Seu pedido saiu",
            provider_message_id="wamid.OUT1",
        )

        assert outcome.created is True
        with session_factory() as db:
            message = BridgeRepository(db).get_message(outcome.message_id)
            assert message.direction == MessageDirection.OUTBOUND.value
            assert message.delivery_status == DeliveryStatus.SENT.value

    def test_assigns_local_id_without_provider_id(self, store):
        first = store.record_outbound(2, "5511888888888", BackendKind.QR, "Um")
        second = store.record_outbound(2, "5511888888888", BackendKind.QR, "Dois")

        assert first.provider_message_id.startswith("local-")
        assert second.provider_message_id.startswith("local-")
        assert first.provider_message_id != second.provider_message_id

    def test_same_provider_id_recorded_once(self, store):
        first = store.record_outbound(2, "5511888888888", BackendKind.CLOUD, "Um", provider_message_id="wamid.OUT2")
        second = store.record_outbound(2, "5511888888888", BackendKind.CLOUD, "Um", provider_message_id="wamid.OUT2")

        assert second.created is False
        assert second.message_id == first.message_id

    def test_concurrent_record_of_same_provider_id(self, store, session_factory, monkeypatch):
        first = store.record_outbound(2, "5511888888888", BackendKind.CLOUD, "Um", provider_message_id="wamid.OUT3")

        # The second writer checks before the first row is visible, then loses on commit
        lookup = BridgeRepository.get_message_by_identity
        calls = []

        def late_lookup(repo, *args):
            calls.append(args)
            return None if len(calls) == 1 else lookup(repo, *args)

        monkeypatch.setattr(BridgeRepository, "get_message_by_identity", late_lookup)

        second = store.record_outbound(2, "5511888888888", BackendKind.CLOUD, "Um", provider_message_id="wamid.OUT3")

        assert second.created is False
        assert second.message_id == first.message_id
        assert count_messages(session_factory) == 1


class TestDeliveryStatus:
    """Tests for forward-only status transitions."""

    @pytest.mark.parametrize(
        "current,new,expected",
        [
            (DeliveryStatus.PENDING, DeliveryStatus.SENT, True),
            (DeliveryStatus.PENDING, DeliveryStatus.DELIVERED, True),
            (DeliveryStatus.SENT, DeliveryStatus.DELIVERED, True),
            (DeliveryStatus.PENDING, DeliveryStatus.FAILED, True),
            (DeliveryStatus.SENT, DeliveryStatus.FAILED, True),
            (DeliveryStatus.SENT, DeliveryStatus.PENDING, False),
            (DeliveryStatus.DELIVERED, DeliveryStatus.PENDING, False),
            (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, False),
            (DeliveryStatus.FAILED, DeliveryStatus.SENT, False),
        ],
    )
    def test_is_forward_transition(self, current, new, expected):
        assert is_forward_transition(current, new) is expected

    def test_pending_sent_delivered(self, store, session_factory):
        message = create_pending(session_factory)

        sent = store.update_delivery_status(message.id, DeliveryStatus.SENT)
        delivered = store.update_delivery_status(message.id, DeliveryStatus.DELIVERED)

        assert sent.applied is True
        assert sent.previous == DeliveryStatus.PENDING
        assert delivered.applied is True
        assert delivered.current == DeliveryStatus.DELIVERED

    def test_pending_to_failed(self, store, session_factory):
        message = create_pending(session_factory)

        outcome = store.update_delivery_status(message.id, DeliveryStatus.FAILED)

        assert outcome.applied is True
        assert outcome.current == DeliveryStatus.FAILED

    def test_backward_transition_rejected(self, store, session_factory):
        message = create_pending(session_factory)
        store.update_delivery_status(message.id, DeliveryStatus.DELIVERED)

        outcome = store.update_delivery_status(message.id, DeliveryStatus.PENDING)

        assert outcome.applied is False
        assert outcome.rejected is True
        assert outcome.current == DeliveryStatus.DELIVERED

        with session_factory() as db:
            stored = BridgeRepository(db).get_message(message.id)
            assert stored.delivery_status == DeliveryStatus.DELIVERED.value

    def test_unchanged_status_is_noop(self, store, session_factory):
        message = create_pending(session_factory)

        outcome = store.update_delivery_status(message.id, DeliveryStatus.PENDING)

        assert outcome.applied is False
        assert outcome.rejected is False
        assert outcome.reason == "unchanged"

    def test_unknown_message(self, store):
        outcome = store.update_delivery_status(uuid4(), DeliveryStatus.SENT)

        assert outcome.applied is False
        assert outcome.reason == "not_found"

    def test_update_by_provider_id_keeps_error(self, store, session_factory):
        message = create_pending(session_factory, provider_message_id="wamid.failed")

        outcome = store.update_delivery_status_by_provider_id(
            tenant_id=2,
            backend_kind=BackendKind.CLOUD,
            provider_message_id="wamid.failed",
            status=DeliveryStatus.FAILED,
            error_code="131047",
            error_message="Re-engagement message",
        )

        assert outcome.applied is True
        with session_factory() as db:
            stored = BridgeRepository(db).get_message(message.id)
            assert stored.error_code == "131047"
            assert stored.error_message == "Re-engagement message"

    def test_update_by_provider_id_scoped_to_backend(self, store, session_factory):
        create_pending(session_factory, provider_message_id="wamid.cloud")

        outcome = store.update_delivery_status_by_provider_id(
            tenant_id=2,
            backend_kind=BackendKind.QR,
            provider_message_id="wamid.cloud",
            status=DeliveryStatus.SENT,
        )

        assert outcome.reason == "not_found"
