"""Wiring of the dispatch components from configuration."""
import logging
from dataclasses import dataclass
from typing import Optional

from ambulance_dispatch.services.ambulance_registry import AmbulanceRegistry
from ambulance_dispatch.services.event_broadcaster import (
    EventBroadcaster, KafkaEventSink, RedisLiveUpdateSink,
)
from ambulance_dispatch.services.geo_store import GeoStore
from ambulance_dispatch.services.proximity_ranker import (
    ProximityCache, ProximityRanker, RedisProximityCache,
)
from ambulance_dispatch.services.request_lifecycle import RequestLifecycle
from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.store import InMemoryStore, Store

logger = logging.getLogger(__name__)


@dataclass
class Container:
    store: Store
    broadcaster: EventBroadcaster
    registry: AmbulanceRegistry
    ranker: ProximityRanker
    lifecycle: RequestLifecycle


def build_store(backend: Optional[str] = None) -> Store:
    backend = backend or config.STORE_BACKEND
    if backend == "postgres":
        from ambulance_dispatch.shared.db import PostgresStore
        return PostgresStore(config.DATABASE_URL)
    if backend != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")
    return InMemoryStore()


def build_container(store: Optional[Store] = None, redis_client=None, kafka_producer=None) -> Container:
    """Assemble the components. Kafka and Redis are only connected when enabled."""
    geo = GeoStore()
    store = store if store is not None else build_store()

    broadcaster = EventBroadcaster()
    if config.KAFKA_ENABLED or kafka_producer is not None:
        if kafka_producer is None:
            from ambulance_dispatch.shared.kafka_client import create_producer
            kafka_producer = create_producer()
        broadcaster.add_sink(KafkaEventSink(kafka_producer))
        logger.info(f"Kafka event sink enabled ({config.KAFKA_BROKER})")

    if config.REDIS_ENABLED and redis_client is None:
        from ambulance_dispatch.shared.redis_client import create_redis_client
        redis_client = create_redis_client()
    if redis_client is not None:
        broadcaster.add_sink(RedisLiveUpdateSink(redis_client))
        logger.info("Redis live update sink enabled")

    if config.CACHE_BACKEND == "redis":
        if redis_client is None:
            raise ValueError("CACHE_BACKEND=redis requires REDIS_ENABLED")
        cache = RedisProximityCache(redis_client)
    else:
        cache = ProximityCache()

    registry = AmbulanceRegistry(store, broadcaster, geo=geo)
    ranker = ProximityRanker(store, registry, broadcaster, geo=geo, cache=cache)
    lifecycle = RequestLifecycle(store, registry, broadcaster)

    return Container(
        store=store,
        broadcaster=broadcaster,
        registry=registry,
        ranker=ranker,
        lifecycle=lifecycle,
    )
