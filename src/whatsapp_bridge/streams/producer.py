"""
Failed Delivery Producer

Appends failed webhook deliveries to a Redis Stream for manual replay.
"""

import logging

import redis

from whatsapp_bridge.contracts.envelope import WebhookEvent, utc_now
from whatsapp_bridge.streams.groups import FAILED_DELIVERIES_MAX_LEN, FAILED_DELIVERIES_STREAM

logger = logging.getLogger(__name__)


class FailedDeliveryProducer:
    """
    Producer for the failed-delivery stream.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str = FAILED_DELIVERIES_STREAM,
        max_len: int = FAILED_DELIVERIES_MAX_LEN,
    ):
        self.redis = redis_client
        self.stream_name = stream_name
        self.max_len = max_len

    def publish_failure(
        self,
        event: WebhookEvent,
        url: str,
        error: str,
        status_code: int | None = None,
    ) -> str:
        """
        Record a failed delivery.

        Returns:
            Stream message ID
        """
        data = event.to_stream_data()
        data.update(
            {
                "url": url,
                "error": error,
                "status_code": str(status_code) if status_code is not None else "",
                "failed_at": utc_now().isoformat(),
            }
        )

        msg_id = self.redis.xadd(
            self.stream_name,
            data,
            maxlen=self.max_len,
            approximate=True,
        )

        logger.debug(
            f"Published to {self.stream_name}",
            extra={
                "stream": self.stream_name,
                "event_type": event.event_type.value,
                "event_id": str(event.event_id),
                "msg_id": msg_id,
            },
        )

        return msg_id
