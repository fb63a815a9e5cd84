"""Connection monitor: state reconciliation and transition events."""

from whatsapp_bridge.monitor.connection_monitor import ConnectionMonitor
from whatsapp_bridge.monitor.state import KeyState, PollOutcome

__all__ = [
    "ConnectionMonitor",
    "KeyState",
    "PollOutcome",
]
