"""Kafka producer utilities."""
import json
import logging
from typing import Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.errors import TransportError

logger = logging.getLogger(__name__)


def create_producer(bootstrap_servers: Optional[str] = None) -> KafkaProducer:
    """Create a Kafka producer."""
    return KafkaProducer(
        bootstrap_servers=bootstrap_servers or config.KAFKA_BROKER,
        value_serializer=lambda v: json.dumps(v).encode('utf-8'),
        key_serializer=lambda k: k.encode('utf-8') if k else None
    )


def publish_message(producer: KafkaProducer, topic: str, message: dict, key: Optional[str] = None,
                    timeout: Optional[float] = None):
    """Publish a message to a Kafka topic and wait for the broker ack."""
    try:
        future = producer.send(topic, value=message, key=key)
        future.get(timeout=timeout or config.KAFKA_PUBLISH_TIMEOUT_SECONDS)
    except KafkaError as e:
        logger.error(f"Error publishing to {topic}: {e}")
        raise TransportError(f"Failed to publish to {topic}: {e}") from e
