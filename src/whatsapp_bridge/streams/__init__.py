"""
Bridge Redis Streams

Failed webhook deliveries kept for manual replay.
"""

from whatsapp_bridge.streams.consumer import FailedDelivery, FailedDeliveryReader
from whatsapp_bridge.streams.groups import FAILED_DELIVERIES_STREAM
from whatsapp_bridge.streams.producer import FailedDeliveryProducer

__all__ = [
    "FailedDeliveryProducer",
    "FailedDeliveryReader",
    "FailedDelivery",
    "FAILED_DELIVERIES_STREAM",
]
