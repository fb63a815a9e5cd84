"""
Failed Delivery Reader

Reads failed webhook deliveries back from the Redis Stream for replay.
"""

import logging
from dataclasses import dataclass

import redis

from whatsapp_bridge.contracts.envelope import WebhookEvent
from whatsapp_bridge.streams.groups import FAILED_DELIVERIES_STREAM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailedDelivery:
    """One entry of the failed-delivery stream."""

    stream_id: str
    event: WebhookEvent
    url: str
    error: str
    status_code: int | None
    failed_at: str


class FailedDeliveryReader:
    """
    Reader for the failed-delivery stream.

    Entries are read with XRANGE (no consumer group) and removed with XDEL
    once an operator has replayed them successfully.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str = FAILED_DELIVERIES_STREAM,
    ):
        self.redis = redis_client
        self.stream_name = stream_name

    def read(self, count: int = 100, tenant_id: int | None = None) -> list[FailedDelivery]:
        """
        Read the oldest failed deliveries.

        Args:
            count: Maximum entries to scan
            tenant_id: Only return entries of this tenant

        Returns:
            Parsed entries, oldest first
        """
        entries = self.redis.xrange(self.stream_name, min="-", max="+", count=count)

        failures = []
        for stream_id, data in entries:
            try:
                event = WebhookEvent.from_stream_data(data)
            except (KeyError, ValueError) as e:
                logger.error(f"Failed to parse entry {stream_id}: {e}")
                continue

            if tenant_id is not None and event.tenant_id != tenant_id:
                continue

            status_code = data.get("status_code")
            failures.append(
                FailedDelivery(
                    stream_id=stream_id,
                    event=event,
                    url=data.get("url", ""),
                    error=data.get("error", ""),
                    status_code=int(status_code) if status_code else None,
                    failed_at=data.get("failed_at", ""),
                )
            )

        return failures

    def remove(self, stream_id: str) -> int:
        """
        Remove a replayed entry.

        Returns:
            Number of entries removed (0 or 1)
        """
        return self.redis.xdel(self.stream_name, stream_id)

    def summary(self) -> dict:
        """Entry count with the oldest and newest stream ids; zero when the stream does not exist yet."""
        try:
            info = self.redis.xinfo_stream(self.stream_name)
        except redis.ResponseError:
            return {"length": 0, "oldest_id": None, "newest_id": None}

        first, last = info.get("first-entry"), info.get("last-entry")
        return {
            "length": info.get("length", 0),
            "oldest_id": first[0] if first else None,
            "newest_id": last[0] if last else None,
        }
