"""
Event Broadcaster - fan-out of domain events.

Events go first to in-process subscribers (e.g. the proximity cache
invalidator), then to every configured sink (Kafka, Redis live updates).
Subscriber failures are logged and skipped; sink failures propagate to the
operation that raised the event.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.kafka_client import publish_message
from ambulance_dispatch.shared.redis_client import publish_realtime_update
from ambulance_dispatch.shared.types import DomainEvent

logger = logging.getLogger(__name__)

# Ambulance event families
LOCATION_UPDATED = "ambulance.location.updated"
STATUS_CHANGED = "ambulance.status.changed"

# Request lifecycle events
REQUEST_CREATED = "request:created"
REQUEST_ACCEPTED = "request:accepted"
REQUEST_STATUS = "request:status"
REQUEST_CANCELLED = "request:cancelled"
REQUEST_COMPLETED = "request:completed"

Handler = Callable[[DomainEvent], None]


class EventSink:
    """Something outside the process that receives every published event."""

    def publish(self, event: DomainEvent) -> None:
        raise NotImplementedError


class KafkaEventSink(EventSink):
    """Forwards the ambulance event families to Kafka, keyed by ambulance id."""

    def __init__(self, producer, topics: Optional[Dict[str, str]] = None):
        self.producer = producer
        self.topics = topics or {
            LOCATION_UPDATED: config.KAFKA_LOCATION_TOPIC,
            STATUS_CHANGED: config.KAFKA_STATUS_TOPIC,
        }

    def publish(self, event: DomainEvent) -> None:
        topic = self.topics.get(event.event_type)
        if topic is None:
            return
        publish_message(self.producer, topic, event.model_dump(mode="json"), key=event.key)


class RedisLiveUpdateSink(EventSink):
    """Publishes every event to a Redis channel for the live-update fan-out."""

    def __init__(self, client):
        self.client = client

    @staticmethod
    def channel_for(event_type: str) -> str:
        # ambulance.location.updated -> ambulance:location:updated
        return event_type.replace(".", ":")

    def publish(self, event: DomainEvent) -> None:
        publish_realtime_update(self.client, self.channel_for(event.event_type), event.model_dump(mode="json"))


class EventBroadcaster:
    """Explicit publish/subscribe hub shared by the dispatch components."""

    def __init__(self, sinks: Optional[Iterable[EventSink]] = None):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._sinks: List[EventSink] = list(sinks or [])

    def add_sink(self, sink: EventSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it again."""
        with self._lock:
            self._subscribers[event_type].append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._subscribers[event_type]:
                    self._subscribers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event_type: str, payload: dict, key: Optional[str] = None) -> DomainEvent:
        event = DomainEvent(event_type=event_type, key=key, payload=payload)
        self.deliver_local(event)

        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            sink.publish(event)

        logger.debug(f"Published {event_type} (key={key})")
        return event

    def deliver_local(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Subscriber failed handling {event.event_type}")
