"""
Bridge Service Layer

Message store, callback/send handlers and the runtime that wires them to the
connection monitor and webhook dispatcher.
"""

from whatsapp_bridge.service.inbound_handler import InboundHandler, InboundResult
from whatsapp_bridge.service.message_store import MessageStore, RecordOutcome, StatusUpdateOutcome
from whatsapp_bridge.service.outbound_handler import OutboundHandler, SendOutcome
from whatsapp_bridge.service.runtime import BridgeRuntime

__all__ = [
    "BridgeRuntime",
    "InboundHandler",
    "InboundResult",
    "MessageStore",
    "OutboundHandler",
    "RecordOutcome",
    "SendOutcome",
    "StatusUpdateOutcome",
]
