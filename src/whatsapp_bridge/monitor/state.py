"""
Monitor State

Last-known connection state per (tenant, backend) and the outcome of one poll.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from whatsapp_bridge.contracts.envelope import WebhookEvent
from whatsapp_bridge.contracts.event_types import BackendKind, ConnectionState
from whatsapp_bridge.providers.base import UpstreamAdapter

MonitorKey = tuple[int, BackendKind]


@dataclass
class KeyState:
    """
    Monitoring state for one tenant backend.

    ``state`` only changes together with the emission of its event, while
    ``lock`` is held. ``last_qr_code`` is the code announced during the current
    CONNECTING period.
    """

    tenant_id: int
    backend_kind: BackendKind
    adapter: UpstreamAdapter
    state: ConnectionState = ConnectionState.UNKNOWN
    consecutive_failures: int = 0
    suspended: bool = False
    last_error: str | None = None
    last_checked_at: datetime | None = None
    phone: str | None = None
    last_qr_code: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    task: asyncio.Task | None = None

    @property
    def key(self) -> MonitorKey:
        return self.tenant_id, self.backend_kind

    def to_status(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "backend_kind": self.backend_kind.value,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "suspended": self.suspended,
            "last_error": self.last_error,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "running": self.task is not None and not self.task.done(),
        }


@dataclass(frozen=True)
class PollOutcome:
    """
    Result of one poll (or connect / pushed update) for a tenant backend.

    ``event`` is set only when the state changed.
    """

    tenant_id: int
    backend_kind: BackendKind
    previous_state: ConnectionState
    state: ConnectionState
    event: WebhookEvent | None = None
    skipped: bool = False
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.event is not None

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "backend_kind": self.backend_kind.value,
            "previous_state": self.previous_state.value,
            "state": self.state.value,
            "event": self.event.event_type.value if self.event else None,
            "skipped": self.skipped,
            "error": self.error,
        }
