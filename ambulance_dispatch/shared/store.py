"""
Persistence interface used by the dispatch core, plus the in-memory store.

The core only talks to persistence through the Store protocol so the backing
database can be swapped (see db.PostgresStore). Every load returns a copy:
callers mutate their copy and hand it back through a save call.
"""

import threading
from typing import Dict, List, Optional, Protocol

from ambulance_dispatch.services.geo_store import GeoStore
from ambulance_dispatch.shared.types import (
    Ambulance, AmbulanceStatus, EmergencyRequest, Hospital, HospitalStatus,
    MovementRecord, Point, RequestStatus,
)


class Store(Protocol):
    def load_ambulance(self, ambulance_id: int) -> Optional[Ambulance]: ...

    def save_ambulance(self, ambulance: Ambulance) -> Ambulance: ...

    def list_ambulances(self, status: Optional[AmbulanceStatus] = None) -> List[Ambulance]: ...

    def load_hospital(self, hospital_id: int) -> Optional[Hospital]: ...

    def save_hospital(self, hospital: Hospital) -> Hospital: ...

    def list_hospitals(self, status: Optional[HospitalStatus] = None) -> List[Hospital]: ...

    def query_hospitals_within_distance(self, point: Point, meters: float) -> List[Hospital]: ...

    def load_request(self, request_id: int) -> Optional[EmergencyRequest]: ...

    def save_request(self, request: EmergencyRequest) -> EmergencyRequest: ...

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[EmergencyRequest]: ...

    def count_requests(self, status: Optional[RequestStatus] = None) -> int: ...

    def append_movement_record(self, record: MovementRecord) -> None: ...

    def list_movement_records(self, ambulance_id: int, limit: Optional[int] = None) -> List[MovementRecord]: ...


class InMemoryStore:
    """Thread-safe dict-backed Store."""

    def __init__(self, geo: Optional[GeoStore] = None):
        self._geo = geo or GeoStore()
        self._lock = threading.Lock()
        self._ambulances: Dict[int, Ambulance] = {}
        self._hospitals: Dict[int, Hospital] = {}
        self._requests: Dict[int, EmergencyRequest] = {}
        self._movements: Dict[int, List[MovementRecord]] = {}
        self._next_request_id = 1

    # Ambulances

    def load_ambulance(self, ambulance_id: int) -> Optional[Ambulance]:
        with self._lock:
            ambulance = self._ambulances.get(ambulance_id)
            return ambulance.model_copy(deep=True) if ambulance else None

    def save_ambulance(self, ambulance: Ambulance) -> Ambulance:
        with self._lock:
            self._ambulances[ambulance.id] = ambulance.model_copy(deep=True)
        return ambulance

    def list_ambulances(self, status: Optional[AmbulanceStatus] = None) -> List[Ambulance]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for _, a in sorted(self._ambulances.items())
                if status is None or a.status == status
            ]

    # Hospitals

    def load_hospital(self, hospital_id: int) -> Optional[Hospital]:
        with self._lock:
            hospital = self._hospitals.get(hospital_id)
            return hospital.model_copy(deep=True) if hospital else None

    def save_hospital(self, hospital: Hospital) -> Hospital:
        with self._lock:
            self._hospitals[hospital.id] = hospital.model_copy(deep=True)
        return hospital

    def list_hospitals(self, status: Optional[HospitalStatus] = None) -> List[Hospital]:
        with self._lock:
            return [
                h.model_copy(deep=True)
                for _, h in sorted(self._hospitals.items())
                if status is None or h.status == status
            ]

    def query_hospitals_within_distance(self, point: Point, meters: float) -> List[Hospital]:
        hospitals = self.list_hospitals()
        return [h for h in hospitals if self._geo.distance(point, h.location) <= meters]

    # Requests

    def load_request(self, request_id: int) -> Optional[EmergencyRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def save_request(self, request: EmergencyRequest) -> EmergencyRequest:
        with self._lock:
            if request.id is None:
                request = request.model_copy(update={"id": self._next_request_id})
                self._next_request_id += 1
            self._requests[request.id] = request.model_copy(deep=True)
        return request

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[EmergencyRequest]:
        with self._lock:
            requests = [
                r.model_copy(deep=True)
                for r in self._requests.values()
                if status is None or r.status == status
            ]
        requests.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return requests

    def count_requests(self, status: Optional[RequestStatus] = None) -> int:
        with self._lock:
            return sum(1 for r in self._requests.values() if status is None or r.status == status)

    # Movement history

    def append_movement_record(self, record: MovementRecord) -> None:
        with self._lock:
            self._movements.setdefault(record.ambulance_id, []).append(record.model_copy())

    def list_movement_records(self, ambulance_id: int, limit: Optional[int] = None) -> List[MovementRecord]:
        """Most recent records first."""
        with self._lock:
            records = list(reversed(self._movements.get(ambulance_id, [])))
        return records[:limit] if limit else records
