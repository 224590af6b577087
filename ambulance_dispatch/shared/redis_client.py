"""Redis client utilities."""
import json
import logging
from typing import Optional

import redis

from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.errors import TransportError

logger = logging.getLogger(__name__)


def create_redis_client(host: Optional[str] = None, port: Optional[int] = None) -> redis.Redis:
    """Create a Redis client."""
    return redis.Redis(
        host=host or config.REDIS_HOST,
        port=port or config.REDIS_PORT,
        decode_responses=True
    )


def set_json(client: redis.Redis, key: str, data: dict, ttl: Optional[float] = None):
    """Store a JSON document, optionally expiring after ttl seconds."""
    px = int(ttl * 1000) if ttl else None
    try:
        client.set(key, json.dumps(data), px=px)
    except redis.RedisError as e:
        logger.error(f"Error writing {key}: {e}")
        raise TransportError(f"Failed to write {key}: {e}") from e


def get_json(client: redis.Redis, key: str) -> Optional[dict]:
    """Retrieve a JSON document stored with set_json."""
    try:
        data = client.get(key)
    except redis.RedisError as e:
        logger.error(f"Error reading {key}: {e}")
        raise TransportError(f"Failed to read {key}: {e}") from e
    return json.loads(data) if data else None


def delete_matching(client: redis.Redis, pattern: str) -> int:
    """Delete every key matching a glob pattern. Returns the number removed."""
    try:
        keys = list(client.scan_iter(match=pattern))
        if not keys:
            return 0
        return client.delete(*keys)
    except redis.RedisError as e:
        logger.error(f"Error deleting {pattern}: {e}")
        raise TransportError(f"Failed to delete {pattern}: {e}") from e


def publish_realtime_update(client: redis.Redis, channel: str, message: dict):
    """Publish a real-time update to a Redis channel."""
    try:
        client.publish(channel, json.dumps(message))
    except redis.RedisError as e:
        logger.error(f"Error publishing to channel {channel}: {e}")
        raise TransportError(f"Failed to publish to {channel}: {e}") from e
