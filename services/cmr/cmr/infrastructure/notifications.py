"""Outbound delivery-status notifications.

Publishing is fire-and-forget: a failing sink is logged and skipped, it never
fails or rolls back the workflow operation that produced the event.
"""

import json
from functools import lru_cache
from typing import List, Optional, Sequence

import httpx
import redis

from cmr.core_settings import Settings, get_settings
from cmr.domain.events import DeliveryStatusChanged
from shared.core import get_logger

logger = get_logger(__name__)


class LogPublisher:
    def publish(self, event: DeliveryStatusChanged) -> None:
        logger.info(
            f"Delivery status changed: {event.from_status.value} -> {event.to_status.value}",
            extra={'extra_fields': event.to_dict()},
        )


class RedisPublisher:
    """Publishes events as JSON on a Redis pub/sub channel"""

    def __init__(self, url: str, channel: str, client: Optional[redis.Redis] = None):
        self.channel = channel
        self.client = client or redis.from_url(url, socket_connect_timeout=1, socket_timeout=1)

    def publish(self, event: DeliveryStatusChanged) -> None:
        self.client.publish(self.channel, json.dumps(event.to_dict()))


class WebhookPublisher:
    """POSTs events to an HTTP endpoint of the notification layer"""

    def __init__(self, url: str, timeout: float = 2.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self.client = client

    def publish(self, event: DeliveryStatusChanged) -> None:
        if self.client is not None:
            self.client.post(self.url, json=event.to_dict(), timeout=self.timeout).raise_for_status()
            return
        with httpx.Client(timeout=self.timeout) as client:
            client.post(self.url, json=event.to_dict()).raise_for_status()


class FanOutPublisher:
    def __init__(self, publishers: Sequence[object]):
        self.publishers: List[object] = list(publishers)
        self.failures = 0

    def publish(self, event: DeliveryStatusChanged) -> None:
        for publisher in self.publishers:
            try:
                publisher.publish(event)
            except Exception:
                self.failures += 1
                logger.warning(
                    f"Notification via {type(publisher).__name__} failed",
                    exc_info=True,
                    extra={'extra_fields': {'shipment_id': event.shipment_id}},
                )


def build_publisher(settings: Settings) -> FanOutPublisher:
    publishers: List[object] = [LogPublisher()]
    if settings.REDIS_URL:
        publishers.append(RedisPublisher(settings.REDIS_URL, settings.EVENTS_CHANNEL))
    if settings.NOTIFY_WEBHOOK_URL:
        publishers.append(WebhookPublisher(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_TIMEOUT_SECONDS))
    return FanOutPublisher(publishers)


@lru_cache
def get_publisher() -> FanOutPublisher:
    return build_publisher(get_settings())
