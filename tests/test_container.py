"""Tests for component wiring and demo seed data."""
from unittest.mock import MagicMock, patch

import pytest

from ambulance_dispatch.seed import seed_demo_data
from ambulance_dispatch.services.dispatch_api.container import build_container, build_store
from ambulance_dispatch.services.event_broadcaster import KafkaEventSink, LOCATION_UPDATED
from ambulance_dispatch.services.proximity_ranker import ProximityCache, RedisProximityCache
from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.db import PostgresStore
from ambulance_dispatch.shared.store import InMemoryStore
from ambulance_dispatch.shared.types import AmbulanceStatus, EquipmentLevel, Point


class TestBuildContainer:

    def test_defaults_are_in_process(self):
        container = build_container(store=InMemoryStore())

        assert isinstance(container.ranker.cache, ProximityCache)
        assert container.registry.store is container.store
        assert container.lifecycle.registry is container.registry

    def test_kafka_sink_receives_location_events(self):
        producer = MagicMock()
        store = InMemoryStore()
        seed_demo_data(store)
        container = build_container(store=store, kafka_producer=producer)

        container.registry.update_location(1, Point(longitude=3.38, latitude=6.53))

        topic = producer.send.call_args[0][0]
        assert topic == config.KAFKA_LOCATION_TOPIC
        assert producer.send.call_args[1]["key"] == "1"
        assert producer.send.call_args[1]["value"]["event_type"] == LOCATION_UPDATED

    def test_kafka_enabled_creates_producer(self):
        with patch.object(config, "KAFKA_ENABLED", True), \
                patch("ambulance_dispatch.shared.kafka_client.create_producer") as create_producer:
            container = build_container(store=InMemoryStore())

        create_producer.assert_called_once()
        assert any(isinstance(s, KafkaEventSink) for s in container.broadcaster._sinks)

    def test_redis_cache_backend(self):
        with patch.object(config, "CACHE_BACKEND", "redis"):
            container = build_container(store=InMemoryStore(), redis_client=MagicMock())
        assert isinstance(container.ranker.cache, RedisProximityCache)

    def test_redis_cache_requires_client(self):
        with patch.object(config, "CACHE_BACKEND", "redis"):
            with pytest.raises(ValueError):
                build_container(store=InMemoryStore())


class TestBuildStore:

    def test_memory(self):
        assert isinstance(build_store("memory"), InMemoryStore)

    def test_postgres(self):
        assert isinstance(build_store("postgres"), PostgresStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_store("sqlite")


def test_seed_demo_data():
    store = InMemoryStore()

    seed_demo_data(store)

    assert len(store.list_hospitals()) == 12
    assert store.load_hospital(1).name.startswith("Lagos University Teaching Hospital")
    ambulances = store.list_ambulances(AmbulanceStatus.AVAILABLE)
    assert len(ambulances) == 10
    assert store.load_ambulance(3).equipment_level == EquipmentLevel.CRITICAL_CARE
    assert store.load_ambulance(7).call_sign == "KANO-AMB-001"
