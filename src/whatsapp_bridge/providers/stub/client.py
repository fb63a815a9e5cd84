"""
Stub Upstream Adapter

Development adapter that logs all operations without making real API calls.
Useful for local development and testing.
"""

import asyncio
import logging
from collections import deque
from typing import Any
from uuid import uuid4

from whatsapp_bridge.contracts.envelope import utc_now
from whatsapp_bridge.contracts.event_types import BackendKind, ConnectionState
from whatsapp_bridge.providers.base import (
    ConnectResult,
    Contact,
    ParsedCallback,
    SendResult,
    StateSnapshot,
    UpstreamAdapter,
)
from whatsapp_bridge.providers.evolution.client import parse_callback as parse_evolution_callback
from whatsapp_bridge.providers.meta_cloud.client import parse_callback as parse_cloud_callback

logger = logging.getLogger(__name__)

ScriptStep = ConnectionState | Exception


class StubAdapter(UpstreamAdapter):
    """
    Stub adapter for development and testing.

    - ``get_state`` replays a script of states or exceptions, then repeats the last step
    - Generates fake message IDs and records sent messages
    - Optional ``delay`` holds every state query open (for concurrency tests)
    - Parses callbacks in the wire format of the backend it stands in for
    """

    def __init__(
        self,
        backend_kind: BackendKind = BackendKind.QR,
        script: list[ScriptStep] | None = None,
        delay: float = 0.0,
        qr_code: str = "stub-qr-code",
        contacts: list[Contact] | None = None,
        send_error: Exception | None = None,
    ):
        super().__init__()
        self.backend_kind = backend_kind
        self._script: deque[ScriptStep] = deque(script or [ConnectionState.CONNECTED])
        self.delay = delay
        self.qr_code = qr_code
        self.contacts = contacts or []
        self.send_error = send_error
        self.sent_messages: list[dict[str, Any]] = []
        self.state_calls = 0
        self.closed = False

    def push(self, *steps: ScriptStep) -> None:
        """Append steps to the state script."""
        self._script.extend(steps)

    def _next_step(self) -> ScriptStep:
        if len(self._script) > 1:
            return self._script.popleft()
        return self._script[0]

    async def get_state(self) -> StateSnapshot:
        self.state_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        step = self._next_step()
        if isinstance(step, Exception):
            logger.info(f"[STUB] State query raising {type(step).__name__}")
            raise step

        return StateSnapshot(state=step, phone="5500000000000" if step == ConnectionState.CONNECTED else None)

    async def connect(self) -> ConnectResult:
        if self.backend_kind == BackendKind.QR:
            logger.info("[STUB] Returning QR code")
            return ConnectResult(state=ConnectionState.CONNECTING, qr_code=self.qr_code)
        return ConnectResult(state=ConnectionState.CONNECTED)

    async def send_message(self, contact_id: str, body: str) -> SendResult:
        """Log and return a fake message ID."""
        if self.send_error is not None:
            raise self.send_error

        message_id = f"stub_msg_{uuid4().hex[:16]}"
        self.sent_messages.append(
            {
                "to": contact_id,
                "body": body,
                "message_id": message_id,
                "timestamp": utc_now().isoformat(),
            }
        )

        logger.info(
            "[STUB] Sending text message",
            extra={
                "to": contact_id,
                "text": body[:100] + "..." if len(body) > 100 else body,
                "message_id": message_id,
            },
        )
        return SendResult(provider_message_id=message_id)

    async def list_contacts(self) -> list[Contact]:
        return list(self.contacts)

    def parse_inbound(self, payload: dict[str, Any]) -> ParsedCallback:
        if self.backend_kind == BackendKind.QR:
            return parse_evolution_callback(payload)
        return parse_cloud_callback(payload)

    async def close(self) -> None:
        self.closed = True
