"""
Webhook Payload Builder

Shapes the outbound JSON body for an event. The shape depends on the event
type and the backend that raised it:

- QR events: userId, userName, connected, qrCodeData?, timestamp
- Cloud events: userId, userName, phoneNumberId, connected, timestamp
- connection_error adds reason
- message_received adds contactNumber, messageId, messageType, body
"""

from whatsapp_bridge.contracts.envelope import WebhookEvent
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.contracts.payloads import WebhookData, WebhookPayload
from whatsapp_bridge.routing.tenant_settings import TenantSettings


def build_payload(event: WebhookEvent, tenant: TenantSettings) -> WebhookPayload:
    """Build the webhook body for ``event`` addressed to ``tenant``."""
    fields = {key: value for key, value in event.payload.items() if value is not None}

    if event.backend_kind == BackendKind.CLOUD:
        fields.setdefault("phone_number_id", tenant.phone_number_id)
    else:
        fields.pop("phone_number_id", None)

    data = WebhookData(
        user_id=tenant.tenant_id,
        user_name=tenant.tenant_name,
        timestamp=event.occurred_at,
        **fields,
    )
    return WebhookPayload(event=event.event_type, data=data)
