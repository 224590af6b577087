"""Shared type definitions for the dispatch services."""
import uuid
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AmbulanceStatus(str, Enum):
    """Ambulance availability."""
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class EquipmentLevel(str, Enum):
    """Level of care an ambulance crew can provide."""
    BASIC = "Basic Life Support"
    ADVANCED = "Advanced Life Support"
    CRITICAL_CARE = "Critical Care Transport"


class HospitalStatus(str, Enum):
    """Hospital operational status."""
    OPERATIONAL = "operational"
    LIMITED = "limited"
    CLOSED = "closed"


class RequestStatus(str, Enum):
    """Emergency request lifecycle states."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    EN_ROUTE_TO_USER = "en_route_to_user"
    AT_USER_LOCATION = "at_user_location"
    TRANSPORTING = "transporting"
    AT_HOSPITAL = "at_hospital"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


TERMINAL_REQUEST_STATUSES = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.DECLINED,
    RequestStatus.CANCELLED,
})


class Point(BaseModel):
    """A WGS84 position. Coordinates are ordered (longitude, latitude) like GeoJSON."""
    model_config = ConfigDict(frozen=True)

    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)

    @classmethod
    def from_geojson(cls, data: Dict[str, Any]) -> "Point":
        lon, lat = data["coordinates"]
        return cls(longitude=lon, latitude=lat)

    def geojson(self) -> Dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}


class Hospital(BaseModel):
    """Hospital representation."""
    id: int
    name: str
    location: Point
    capacity: int = 100
    services: List[str] = []
    status: HospitalStatus = HospitalStatus.OPERATIONAL


class Ambulance(BaseModel):
    """Emergency ambulance representation."""
    id: int
    call_sign: str
    location: Optional[Point] = None
    status: AmbulanceStatus = AmbulanceStatus.AVAILABLE
    assigned_hospital_id: Optional[int] = None
    vehicle_type: str = "Type II"
    equipment_level: EquipmentLevel = EquipmentLevel.BASIC
    last_updated: datetime = Field(default_factory=utcnow)


class MovementRecord(BaseModel):
    """One entry of an ambulance's movement history."""
    ambulance_id: int
    location: Point
    speed: Optional[float] = None
    heading: Optional[float] = None
    timestamp: datetime = Field(default_factory=utcnow)


class EmergencyRequest(BaseModel):
    """A user's request for an ambulance."""
    id: Optional[int] = None  # assigned by the store on first save
    user_location: Point
    status: RequestStatus = RequestStatus.PENDING
    hospital_id: Optional[int] = None
    ambulance_id: Optional[int] = None
    requested_ambulance_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    ambulance_reserved: bool = False  # set while this request holds its ambulance


class RequestPage(BaseModel):
    """One page of emergency requests, newest first."""
    data: List[EmergencyRequest]
    total: int
    page: int
    limit: int


class SimulationProgress(BaseModel):
    """Snapshot of an in-flight movement simulation."""
    progress: float  # percent complete
    current_step: int
    total_steps: int
    eta_seconds: float
    speed_kmh: float
    distance_meters: float
    remaining_distance_meters: float
    target_location: Point


class RankedAmbulance(BaseModel):
    id: int
    call_sign: str
    status: AmbulanceStatus
    vehicle_type: str
    equipment_level: EquipmentLevel
    location: Point
    distance_meters: float
    distance_km: float
    estimated_minutes: float


class RankedHospital(BaseModel):
    id: int
    name: str
    capacity: int
    services: List[str]
    status: HospitalStatus
    location: Point
    distance_meters: float
    distance_km: float
    estimated_minutes: float


class ProximityResult(BaseModel):
    """Nearest available ambulances for a hospital."""
    hospital_id: int
    hospital_name: str
    ambulances: List[RankedAmbulance]
    calculated_at: datetime
    from_cache: bool = False


class RadiusResult(BaseModel):
    """Available ambulances within a radius of a hospital."""
    hospital_id: int
    radius: float
    ambulances: List[RankedAmbulance]
    total: int


class DomainEvent(BaseModel):
    """Envelope for every event that leaves a component."""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    key: Optional[str] = None  # partition/ordering key
    timestamp: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any]
