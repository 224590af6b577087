"""
Shared database helper for the dispatch services.

PostgresStore implements the Store protocol on plain PostgreSQL tables with
longitude/latitude columns; distance filtering happens in Python through
GeoStore so no PostGIS extension is required.
"""

import json
import logging
from contextlib import contextmanager
from typing import List, Optional

import psycopg2
import psycopg2.extras

from ambulance_dispatch.services.geo_store import GeoStore
from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.errors import PersistenceError
from ambulance_dispatch.shared.types import (
    Ambulance, AmbulanceStatus, EmergencyRequest, Hospital, HospitalStatus,
    MovementRecord, Point, RequestStatus,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS hospitals (
    id INTEGER PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    longitude DOUBLE PRECISION NOT NULL,
    latitude DOUBLE PRECISION NOT NULL,
    capacity INTEGER NOT NULL DEFAULT 100,
    services JSONB NOT NULL DEFAULT '[]',
    status VARCHAR(20) NOT NULL DEFAULT 'operational'
);
CREATE TABLE IF NOT EXISTS ambulances (
    id INTEGER PRIMARY KEY,
    call_sign VARCHAR(50) UNIQUE NOT NULL,
    longitude DOUBLE PRECISION,
    latitude DOUBLE PRECISION,
    status VARCHAR(20) NOT NULL DEFAULT 'available',
    assigned_hospital_id INTEGER REFERENCES hospitals(id),
    vehicle_type VARCHAR(50) NOT NULL DEFAULT 'Type II',
    equipment_level VARCHAR(50) NOT NULL DEFAULT 'Basic Life Support',
    last_updated TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS ambulance_movements (
    id SERIAL PRIMARY KEY,
    ambulance_id INTEGER NOT NULL REFERENCES ambulances(id) ON DELETE CASCADE,
    longitude DOUBLE PRECISION NOT NULL,
    latitude DOUBLE PRECISION NOT NULL,
    speed DOUBLE PRECISION,
    heading DOUBLE PRECISION,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS ambulance_movements_ambulance_idx ON ambulance_movements (ambulance_id);
CREATE TABLE IF NOT EXISTS emergency_requests (
    id SERIAL PRIMARY KEY,
    longitude DOUBLE PRECISION NOT NULL,
    latitude DOUBLE PRECISION NOT NULL,
    status VARCHAR(30) NOT NULL DEFAULT 'pending',
    hospital_id INTEGER REFERENCES hospitals(id),
    ambulance_id INTEGER REFERENCES ambulances(id),
    requested_ambulance_id INTEGER,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    accepted_at TIMESTAMPTZ,
    declined_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    decline_reason VARCHAR(500),
    ambulance_reserved BOOLEAN NOT NULL DEFAULT FALSE
);
ALTER TABLE emergency_requests ADD COLUMN IF NOT EXISTS ambulance_reserved BOOLEAN NOT NULL DEFAULT FALSE;
"""


def get_connection(database_url: Optional[str] = None):
    """Return a psycopg2 connection using DATABASE_URL env var."""
    return psycopg2.connect(database_url or config.DATABASE_URL)


def _point(row: dict, prefix: str = "") -> Optional[Point]:
    lon, lat = row.get(f"{prefix}longitude"), row.get(f"{prefix}latitude")
    if lon is None or lat is None:
        return None
    return Point(longitude=lon, latitude=lat)


def _ambulance(row: dict) -> Ambulance:
    return Ambulance(
        id=row["id"],
        call_sign=row["call_sign"],
        location=_point(row),
        status=row["status"],
        assigned_hospital_id=row["assigned_hospital_id"],
        vehicle_type=row["vehicle_type"],
        equipment_level=row["equipment_level"],
        last_updated=row["last_updated"],
    )


def _hospital(row: dict) -> Hospital:
    services = row["services"]
    if isinstance(services, str):
        services = json.loads(services)
    return Hospital(
        id=row["id"],
        name=row["name"],
        location=_point(row),
        capacity=row["capacity"],
        services=services,
        status=row["status"],
    )


def _request(row: dict) -> EmergencyRequest:
    return EmergencyRequest(
        id=row["id"],
        user_location=_point(row),
        status=row["status"],
        hospital_id=row["hospital_id"],
        ambulance_id=row["ambulance_id"],
        requested_ambulance_id=row["requested_ambulance_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        accepted_at=row["accepted_at"],
        declined_at=row["declined_at"],
        completed_at=row["completed_at"],
        decline_reason=row["decline_reason"],
        ambulance_reserved=row.get("ambulance_reserved", False),
    )


class PostgresStore:
    """Store backed by PostgreSQL via psycopg2. One connection per call."""

    def __init__(self, database_url: Optional[str] = None, geo: Optional[GeoStore] = None):
        self.database_url = database_url or config.DATABASE_URL
        self._geo = geo or GeoStore()

    @contextmanager
    def _cursor(self):
        try:
            conn = get_connection(self.database_url)
        except psycopg2.Error as e:
            logger.error(f"Database connection failed: {e}")
            raise PersistenceError(f"Database connection failed: {e}") from e
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise PersistenceError(f"Database error: {e}") from e
        finally:
            conn.close()

    def create_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)

    # Ambulances

    def load_ambulance(self, ambulance_id: int) -> Optional[Ambulance]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM ambulances WHERE id = %s", (ambulance_id,))
            row = cur.fetchone()
        return _ambulance(row) if row else None

    def save_ambulance(self, ambulance: Ambulance) -> Ambulance:
        loc = ambulance.location
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO ambulances
                (id, call_sign, longitude, latitude, status, assigned_hospital_id,
                 vehicle_type, equipment_level, last_updated)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    call_sign = EXCLUDED.call_sign,
                    longitude = EXCLUDED.longitude,
                    latitude = EXCLUDED.latitude,
                    status = EXCLUDED.status,
                    assigned_hospital_id = EXCLUDED.assigned_hospital_id,
                    vehicle_type = EXCLUDED.vehicle_type,
                    equipment_level = EXCLUDED.equipment_level,
                    last_updated = EXCLUDED.last_updated
            """, (
                ambulance.id,
                ambulance.call_sign,
                loc.longitude if loc else None,
                loc.latitude if loc else None,
                ambulance.status.value,
                ambulance.assigned_hospital_id,
                ambulance.vehicle_type,
                ambulance.equipment_level.value,
                ambulance.last_updated,
            ))
        return ambulance

    def list_ambulances(self, status: Optional[AmbulanceStatus] = None) -> List[Ambulance]:
        with self._cursor() as cur:
            if status:
                cur.execute("SELECT * FROM ambulances WHERE status = %s ORDER BY id", (status.value,))
            else:
                cur.execute("SELECT * FROM ambulances ORDER BY id")
            rows = cur.fetchall()
        return [_ambulance(r) for r in rows]

    # Hospitals

    def load_hospital(self, hospital_id: int) -> Optional[Hospital]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM hospitals WHERE id = %s", (hospital_id,))
            row = cur.fetchone()
        return _hospital(row) if row else None

    def save_hospital(self, hospital: Hospital) -> Hospital:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO hospitals (id, name, longitude, latitude, capacity, services, status)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    longitude = EXCLUDED.longitude,
                    latitude = EXCLUDED.latitude,
                    capacity = EXCLUDED.capacity,
                    services = EXCLUDED.services,
                    status = EXCLUDED.status
            """, (
                hospital.id,
                hospital.name,
                hospital.location.longitude,
                hospital.location.latitude,
                hospital.capacity,
                json.dumps(hospital.services),
                hospital.status.value,
            ))
        return hospital

    def list_hospitals(self, status: Optional[HospitalStatus] = None) -> List[Hospital]:
        with self._cursor() as cur:
            if status:
                cur.execute("SELECT * FROM hospitals WHERE status = %s ORDER BY id", (status.value,))
            else:
                cur.execute("SELECT * FROM hospitals ORDER BY id")
            rows = cur.fetchall()
        return [_hospital(r) for r in rows]

    def query_hospitals_within_distance(self, point: Point, meters: float) -> List[Hospital]:
        return [h for h in self.list_hospitals() if self._geo.distance(point, h.location) <= meters]

    # Requests

    def load_request(self, request_id: int) -> Optional[EmergencyRequest]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM emergency_requests WHERE id = %s", (request_id,))
            row = cur.fetchone()
        return _request(row) if row else None

    def save_request(self, request: EmergencyRequest) -> EmergencyRequest:
        values = (
            request.user_location.longitude,
            request.user_location.latitude,
            request.status.value,
            request.hospital_id,
            request.ambulance_id,
            request.requested_ambulance_id,
            request.created_at,
            request.updated_at,
            request.accepted_at,
            request.declined_at,
            request.completed_at,
            request.decline_reason,
            request.ambulance_reserved,
        )
        with self._cursor() as cur:
            if request.id is None:
                cur.execute("""
                    INSERT INTO emergency_requests
                    (longitude, latitude, status, hospital_id, ambulance_id, requested_ambulance_id,
                     created_at, updated_at, accepted_at, declined_at, completed_at, decline_reason,
                     ambulance_reserved)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                """, values)
                request = request.model_copy(update={"id": cur.fetchone()["id"]})
            else:
                cur.execute("""
                    UPDATE emergency_requests SET
                        longitude = %s, latitude = %s, status = %s, hospital_id = %s,
                        ambulance_id = %s, requested_ambulance_id = %s, created_at = %s,
                        updated_at = %s, accepted_at = %s, declined_at = %s,
                        completed_at = %s, decline_reason = %s, ambulance_reserved = %s
                    WHERE id = %s
                """, values + (request.id,))
        return request

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[EmergencyRequest]:
        with self._cursor() as cur:
            if status:
                cur.execute(
                    "SELECT * FROM emergency_requests WHERE status = %s ORDER BY created_at DESC, id DESC",
                    (status.value,)
                )
            else:
                cur.execute("SELECT * FROM emergency_requests ORDER BY created_at DESC, id DESC")
            rows = cur.fetchall()
        return [_request(r) for r in rows]

    def count_requests(self, status: Optional[RequestStatus] = None) -> int:
        with self._cursor() as cur:
            if status:
                cur.execute("SELECT COUNT(*) AS count FROM emergency_requests WHERE status = %s", (status.value,))
            else:
                cur.execute("SELECT COUNT(*) AS count FROM emergency_requests")
            return cur.fetchone()["count"]

    # Movement history

    def append_movement_record(self, record: MovementRecord) -> None:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO ambulance_movements
                (ambulance_id, longitude, latitude, speed, heading, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
            """, (
                record.ambulance_id,
                record.location.longitude,
                record.location.latitude,
                record.speed,
                record.heading,
                record.timestamp,
            ))

    def list_movement_records(self, ambulance_id: int, limit: Optional[int] = None) -> List[MovementRecord]:
        with self._cursor() as cur:
            query = "SELECT * FROM ambulance_movements WHERE ambulance_id = %s ORDER BY created_at DESC, id DESC"
            params = (ambulance_id,)
            if limit:
                query += " LIMIT %s"
                params += (limit,)
            cur.execute(query, params)
            rows = cur.fetchall()
        return [
            MovementRecord(
                ambulance_id=r["ambulance_id"],
                location=_point(r),
                speed=r["speed"],
                heading=r["heading"],
                timestamp=r["created_at"],
            )
            for r in rows
        ]
