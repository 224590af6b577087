"""
Proximity Ranker - nearest ambulances/hospitals with a short-lived cache.

Only nearest_ambulances_for_hospital() is cached. The cache is invalidated
through EventBroadcaster subscriptions registered at construction:

  - ambulance.location.updated: ignored below the movement threshold,
    otherwise drops entries of hospitals within the catchment radius of the
    new location.
  - ambulance.status.changed: drops every entry, since availability changes
    cannot be scoped cheaply.

Between an event and its invalidation a stale result may be served; the TTL
bounds how stale it can get.

Estimated travel time is distance / NOMINAL_SPEED_KMH. With the default
nominal speed of 60 km/h one kilometre is one minute.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ambulance_dispatch.services.ambulance_registry import AmbulanceRegistry
from ambulance_dispatch.services.event_broadcaster import (
    EventBroadcaster, LOCATION_UPDATED, STATUS_CHANGED,
)
from ambulance_dispatch.services.geo_store import GeoStore
from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.errors import NotFoundError, ValidationError
from ambulance_dispatch.shared.redis_client import delete_matching, get_json, set_json
from ambulance_dispatch.shared.store import Store
from ambulance_dispatch.shared.types import (
    Ambulance, AmbulanceStatus, DomainEvent, Hospital, HospitalStatus, Point,
    ProximityResult, RadiusResult, RankedAmbulance, RankedHospital, utcnow,
)

logger = logging.getLogger(__name__)

NEAREST_AVAILABLE = "nearest-available"


@dataclass
class ProximityCacheEntry:
    result: ProximityResult
    computed_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.computed_at >= self.ttl


class ProximityCache:
    """In-process cache keyed by (hospital id, query type)."""

    def __init__(self, ttl_seconds: float = config.PROXIMITY_CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[int, str], ProximityCacheEntry] = {}

    def get(self, hospital_id: int, query_type: str) -> Optional[ProximityResult]:
        key = (hospital_id, query_type)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            return entry.result

    def set(self, hospital_id: int, query_type: str, result: ProximityResult) -> None:
        with self._lock:
            self._entries[(hospital_id, query_type)] = ProximityCacheEntry(
                result=result, computed_at=self._clock(), ttl=self.ttl_seconds,
            )

    def invalidate(self, hospital_id: Optional[int] = None) -> int:
        with self._lock:
            if hospital_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            keys = [k for k in self._entries if k[0] == hospital_id]
            for key in keys:
                del self._entries[key]
            return len(keys)


class RedisProximityCache:
    """Cache shared between service instances, with Redis key expiry as the TTL."""

    def __init__(self, client, ttl_seconds: float = config.PROXIMITY_CACHE_TTL_SECONDS,
                 prefix: str = "proximity"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, hospital_id, query_type: str = "*") -> str:
        return f"{self.prefix}:hospital:{hospital_id}:{query_type}"

    def get(self, hospital_id: int, query_type: str) -> Optional[ProximityResult]:
        data = get_json(self.client, self._key(hospital_id, query_type))
        return ProximityResult.model_validate(data) if data else None

    def set(self, hospital_id: int, query_type: str, result: ProximityResult) -> None:
        set_json(self.client, self._key(hospital_id, query_type), result.model_dump(mode="json"), self.ttl_seconds)

    def invalidate(self, hospital_id: Optional[int] = None) -> int:
        pattern = self._key(hospital_id) if hospital_id is not None else f"{self.prefix}:*"
        return delete_matching(self.client, pattern)


class ProximityRanker:
    """Ranks ambulances and hospitals by geodesic distance."""

    def __init__(self, store: Store, registry: AmbulanceRegistry, broadcaster: EventBroadcaster,
                 geo: Optional[GeoStore] = None, cache=None,
                 invalidation_threshold_m: float = config.CACHE_INVALIDATION_THRESHOLD_METERS,
                 catchment_radius_m: float = config.CACHE_CATCHMENT_RADIUS_METERS,
                 nominal_speed_kmh: float = config.NOMINAL_SPEED_KMH,
                 max_limit: int = config.MAX_PROXIMITY_LIMIT):
        self.store = store
        self.registry = registry
        self.geo = geo or GeoStore()
        self.cache = cache if cache is not None else ProximityCache()
        self.invalidation_threshold_m = invalidation_threshold_m
        self.catchment_radius_m = catchment_radius_m
        self.nominal_speed_kmh = nominal_speed_kmh
        self.max_limit = max_limit

        broadcaster.subscribe(LOCATION_UPDATED, self._on_location_updated)
        broadcaster.subscribe(STATUS_CHANGED, self._on_status_changed)

    def estimated_minutes(self, distance_m: float) -> float:
        return round(distance_m / 1000 / self.nominal_speed_kmh * 60, 1)

    def _clamp_limit(self, limit: int) -> int:
        if limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit}")
        return min(limit, self.max_limit)

    def _hospital(self, hospital_id: int) -> Hospital:
        hospital = self.store.load_hospital(hospital_id)
        if hospital is None:
            raise NotFoundError("Hospital", hospital_id)
        return hospital

    def _ranked_ambulance(self, ambulance: Ambulance, distance_m: float) -> RankedAmbulance:
        return RankedAmbulance(
            id=ambulance.id,
            call_sign=ambulance.call_sign,
            status=ambulance.status,
            vehicle_type=ambulance.vehicle_type,
            equipment_level=ambulance.equipment_level,
            location=ambulance.location,
            distance_meters=distance_m,
            distance_km=distance_m / 1000,
            estimated_minutes=self.estimated_minutes(distance_m),
        )

    def _available_ambulances(self) -> Dict[int, Ambulance]:
        return {a.id: a for a in self.registry.list_by_status(AmbulanceStatus.AVAILABLE) if a.location is not None}

    def _nearest_ambulances(self, origin: Point, limit: int) -> List[RankedAmbulance]:
        ambulances = self._available_ambulances()
        ranked = self.geo.nearest(origin, ((a.id, a.location) for a in ambulances.values()), limit)
        return [self._ranked_ambulance(ambulances[aid], d) for aid, d in ranked]

    # Queries

    def nearest_ambulances_for_hospital(self, hospital_id: int,
                                        limit: int = config.DEFAULT_PROXIMITY_LIMIT) -> ProximityResult:
        limit = self._clamp_limit(limit)
        query_type = f"{NEAREST_AVAILABLE}:{limit}"

        cached = self.cache.get(hospital_id, query_type)
        if cached is not None:
            return cached.model_copy(update={"from_cache": True})

        hospital = self._hospital(hospital_id)
        result = ProximityResult(
            hospital_id=hospital.id,
            hospital_name=hospital.name,
            ambulances=self._nearest_ambulances(hospital.location, limit),
            calculated_at=utcnow(),
            from_cache=False,
        )
        self.cache.set(hospital_id, query_type, result)
        return result

    def ambulances_within_radius(self, hospital_id: int,
                                 radius_m: float = config.DEFAULT_RADIUS_METERS) -> RadiusResult:
        if radius_m < 0:
            raise ValidationError(f"radius must not be negative, got {radius_m}")
        hospital = self._hospital(hospital_id)
        ambulances = self._available_ambulances()
        matches = self.geo.within_radius(
            hospital.location, ((a.id, a.location) for a in ambulances.values()), radius_m
        )
        ranked = [self._ranked_ambulance(ambulances[aid], d) for aid, d in matches]
        return RadiusResult(hospital_id=hospital_id, radius=radius_m, ambulances=ranked, total=len(ranked))

    def nearest_hospitals_to_point(self, point: Point,
                                   limit: int = config.DEFAULT_PROXIMITY_LIMIT) -> List[RankedHospital]:
        limit = self._clamp_limit(limit)
        hospitals = {h.id: h for h in self.store.list_hospitals(HospitalStatus.OPERATIONAL)}
        ranked = self.geo.nearest(point, ((h.id, h.location) for h in hospitals.values()), limit)
        results = []
        for hospital_id, distance in ranked:
            hospital = hospitals[hospital_id]
            results.append(RankedHospital(
                id=hospital.id,
                name=hospital.name,
                capacity=hospital.capacity,
                services=hospital.services,
                status=hospital.status,
                location=hospital.location,
                distance_meters=distance,
                distance_km=distance / 1000,
                estimated_minutes=self.estimated_minutes(distance),
            ))
        return results

    def nearest_ambulances_to_point(self, point: Point,
                                    limit: int = config.DEFAULT_PROXIMITY_LIMIT) -> List[RankedAmbulance]:
        return self._nearest_ambulances(point, self._clamp_limit(limit))

    def invalidate(self, hospital_id: Optional[int] = None) -> int:
        removed = self.cache.invalidate(hospital_id)
        logger.debug(f"Invalidated {removed} proximity cache entries (hospital={hospital_id})")
        return removed

    # Event handlers

    def _on_location_updated(self, event: DomainEvent) -> None:
        distance_moved = event.payload.get("distance_moved") or 0
        if distance_moved < self.invalidation_threshold_m:
            return
        location = Point.from_geojson(event.payload["location"])
        for hospital in self.store.query_hospitals_within_distance(location, self.catchment_radius_m):
            self.invalidate(hospital.id)

    def _on_status_changed(self, event: DomainEvent) -> None:
        logger.debug(
            f"Invalidating all proximity caches (ambulance {event.payload.get('ambulance_id')}: "
            f"{event.payload.get('previous_status')} -> {event.payload.get('new_status')})"
        )
        self.invalidate()
