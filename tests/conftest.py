"""Shared fixtures for the dispatch tests."""
import math
import time
from types import SimpleNamespace

import pytest

from ambulance_dispatch.services.ambulance_registry import AmbulanceRegistry
from ambulance_dispatch.services.event_broadcaster import EventBroadcaster, EventSink
from ambulance_dispatch.services.geo_store import EARTH_RADIUS_M
from ambulance_dispatch.services.proximity_ranker import ProximityCache, ProximityRanker
from ambulance_dispatch.services.request_lifecycle import RequestLifecycle
from ambulance_dispatch.shared.errors import TransportError
from ambulance_dispatch.shared.store import InMemoryStore
from ambulance_dispatch.shared.types import Ambulance, Hospital, Point

METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180

TICK_SECONDS = 0.01


def north_of(point: Point, meters: float) -> Point:
    """A point the given distance due north along the same meridian."""
    return Point(longitude=point.longitude, latitude=point.latitude + meters / METERS_PER_DEGREE_LAT)


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingSink(EventSink):
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


class FailingSink(EventSink):
    """Raises TransportError for the event types listed in fail_on."""

    def __init__(self):
        self.fail_on = set()

    def publish(self, event):
        if event.event_type in self.fail_on:
            raise TransportError(f"broker unavailable for {event.event_type}")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def helpers():
    return SimpleNamespace(north_of=north_of, wait_until=wait_until)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def events(broadcaster):
    """Every event published on the broadcaster, in order."""
    sink = RecordingSink()
    broadcaster.add_sink(sink)
    return sink.events


@pytest.fixture
def failing_sink(broadcaster):
    sink = FailingSink()
    broadcaster.add_sink(sink)
    return sink


@pytest.fixture
def registry(store, broadcaster):
    registry = AmbulanceRegistry(store, broadcaster, tick_seconds=TICK_SECONDS)
    yield registry
    registry.shutdown()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ProximityCache(ttl_seconds=30, clock=clock)


@pytest.fixture
def ranker(store, registry, broadcaster, cache):
    return ProximityRanker(store, registry, broadcaster, cache=cache)


@pytest.fixture
def lifecycle(store, registry, broadcaster):
    return RequestLifecycle(store, registry, broadcaster)


@pytest.fixture
def hospital(store):
    hospital = Hospital(
        id=3,
        name="University College Hospital (UCH) Ibadan",
        location=Point(longitude=3.8964, latitude=7.3878),
        capacity=850,
        services=["trauma", "cardiac"],
    )
    store.save_hospital(hospital)
    return hospital


@pytest.fixture
def ambulance(store, hospital):
    ambulance = Ambulance(
        id=7,
        call_sign="IBD-AMB-007",
        location=north_of(hospital.location, 500),
    )
    store.save_ambulance(ambulance)
    return ambulance
