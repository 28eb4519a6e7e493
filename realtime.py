import time
from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from pydantic import ValidationError as PydanticValidationError

from logging_config import get_logger
from redis_keys import REDIS_CHANNEL
from schemas.realtime import ChangeEvent

logger = get_logger(__name__)


class Subscription:
    """A live subscription to one realtime topic.

    Iterating yields change events lazily as they arrive. The subscription is
    closed when the ``RealtimeNotifier.subscribe`` context exits, or by
    whoever called ``RealtimeNotifier.open_subscription``.
    """

    def __init__(self, pubsub, topic: str, poll_interval: float = 1.0):
        self.topic = topic
        self.poll_interval = poll_interval
        self.closed = False
        self._pubsub = pubsub

    def get(self, timeout: float = 1.0) -> Optional[ChangeEvent]:
        """Return the next change event, or None if nothing arrives within timeout."""
        deadline = time.monotonic() + timeout
        while not self.closed:
            remaining = max(deadline - time.monotonic(), 0.0)
            message = self._pubsub.get_message(ignore_subscribe_messages=True, timeout=remaining)
            if message and message.get("type") == "message":
                try:
                    return ChangeEvent.model_validate_json(message["data"])
                except PydanticValidationError as e:
                    logger.warning(f"Dropping malformed event on topic {self.topic}: {e}")
            if remaining <= 0:
                return None
        return None

    def __iter__(self) -> Iterator[ChangeEvent]:
        while not self.closed:
            event = self.get(timeout=self.poll_interval)
            if event is not None:
                yield event

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self._pubsub.unsubscribe()
        finally:
            self._pubsub.close()
        logger.debug(f"Closed subscription to topic {self.topic}")


class RealtimeNotifier:
    """Publishes row changes to Redis pub/sub and hands out topic subscriptions."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def channel_name(self, topic: str) -> str:
        return REDIS_CHANNEL.format(topic=topic)

    def publish(self, topic: str, event: ChangeEvent) -> int:
        """Publish an event; failures are logged, the committed write stands."""
        channel = self.channel_name(topic)
        try:
            subscribers = self.redis_client.publish(channel, event.model_dump_json(by_alias=True))
        except redis.RedisError as e:
            logger.error(f"Failed to publish {event.event_type} on {channel}: {e}", exc_info=True)
            return 0
        logger.debug(f"Published {event.event_type} {event.table} event to {channel}, {subscribers} subscribers")
        return subscribers

    def publish_change(self, topic: str, table: str, event_type: str, new: dict = None, old: dict = None) -> int:
        event = ChangeEvent(event_type=event_type, table=table, new=new or {}, old=old or {})
        return self.publish(topic, event)

    def open_subscription(self, topic: str, poll_interval: float = 1.0) -> Subscription:
        """Subscribe to a topic; the caller must close the returned subscription."""
        channel = self.channel_name(topic)
        logger.debug(f"Subscribing to Redis channel {channel}")
        pubsub = self.redis_client.pubsub()
        try:
            pubsub.subscribe(channel)
        except redis.RedisError:
            pubsub.close()
            raise
        return Subscription(pubsub, topic, poll_interval=poll_interval)

    @contextmanager
    def subscribe(self, topic: str, poll_interval: float = 1.0) -> Iterator[Subscription]:
        subscription = self.open_subscription(topic, poll_interval=poll_interval)
        try:
            yield subscription
        finally:
            subscription.close()
