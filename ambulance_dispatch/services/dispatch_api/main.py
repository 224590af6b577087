"""Dispatch API Service - HTTP surface over the dispatch core."""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ambulance_dispatch.services.dispatch_api.container import Container, build_container
from ambulance_dispatch.shared import config
from ambulance_dispatch.shared.errors import DispatchError, NotFoundError
from ambulance_dispatch.shared.types import (
    AmbulanceStatus, HospitalStatus, Point, RequestStatus,
)

logger = logging.getLogger(__name__)


class LocationUpdate(BaseModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)
    speed: Optional[float] = None
    heading: Optional[float] = None


class DispatchBody(BaseModel):
    hospital_id: int


class StatusBody(BaseModel):
    status: AmbulanceStatus


class SimulateMovementBody(BaseModel):
    target_longitude: float = Field(ge=-180, le=180)
    target_latitude: float = Field(ge=-90, le=90)
    speed_kmh: Optional[float] = None


class TeleportBody(BaseModel):
    target_longitude: float = Field(ge=-180, le=180)
    target_latitude: float = Field(ge=-90, le=90)


class PointQuery(BaseModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)
    limit: int = config.DEFAULT_PROXIMITY_LIMIT


class CreateRequestBody(BaseModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)
    ambulance_id: int
    hospital_id: Optional[int] = None


class AcceptRequestBody(BaseModel):
    hospital_id: Optional[int] = None


class DeclineRequestBody(BaseModel):
    reason: Optional[str] = None


class RequestStatusBody(BaseModel):
    status: RequestStatus


def _ok(data, **extra) -> dict:
    return {"success": True, "data": data, **extra}


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Build the FastAPI app around a wired Container."""
    container = container or build_container()
    registry = container.registry
    ranker = container.ranker
    lifecycle = container.lifecycle
    store = container.store

    app = FastAPI(title="Ambulance Dispatch Service", version="1.0.0")
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse({"success": False, "error": str(exc)}, status_code=exc.status_code)

    @app.on_event("shutdown")
    def shutdown():
        """Stop movement simulations on service shutdown."""
        registry.shutdown()

    # Ambulances

    @app.get("/api/ambulances")
    def list_ambulances(status: Optional[AmbulanceStatus] = None):
        ambulances = registry.list_by_status(status)
        return _ok(ambulances, total=len(ambulances))

    @app.get("/api/ambulances/{ambulance_id}")
    def get_ambulance(ambulance_id: int):
        return _ok(registry.get(ambulance_id))

    @app.patch("/api/ambulances/{ambulance_id}/location")
    def update_location(ambulance_id: int, body: LocationUpdate):
        point = Point(longitude=body.longitude, latitude=body.latitude)
        return _ok(registry.update_location(ambulance_id, point, body.speed, body.heading))

    @app.patch("/api/ambulances/{ambulance_id}/dispatch")
    def dispatch_ambulance(ambulance_id: int, body: DispatchBody):
        return _ok(registry.dispatch(ambulance_id, body.hospital_id))

    @app.patch("/api/ambulances/{ambulance_id}/status")
    def set_ambulance_status(ambulance_id: int, body: StatusBody):
        return _ok(registry.set_status(ambulance_id, body.status))

    @app.patch("/api/ambulances/{ambulance_id}/complete")
    def complete_assignment(ambulance_id: int):
        return _ok(registry.complete_assignment(ambulance_id))

    @app.patch("/api/ambulances/{ambulance_id}/simulate-movement")
    def simulate_movement(ambulance_id: int, body: SimulateMovementBody):
        target = Point(longitude=body.target_longitude, latitude=body.target_latitude)
        progress = registry.start_movement_simulation(ambulance_id, target, body.speed_kmh)
        return _ok(progress, message=f"Ambulance movement simulation started at {progress.speed_kmh} km/h")

    @app.delete("/api/ambulances/{ambulance_id}/simulation")
    def stop_simulation(ambulance_id: int):
        registry.get(ambulance_id)
        return _ok({"stopped": registry.stop_movement_simulation(ambulance_id)})

    @app.patch("/api/ambulances/{ambulance_id}/teleport")
    def teleport(ambulance_id: int, body: TeleportBody):
        target = Point(longitude=body.target_longitude, latitude=body.target_latitude)
        return _ok(registry.teleport(ambulance_id, target))

    @app.get("/api/ambulances/{ambulance_id}/simulation-progress")
    def simulation_progress(ambulance_id: int):
        registry.get(ambulance_id)
        return _ok(registry.get_simulation_progress(ambulance_id))

    @app.get("/api/ambulances/{ambulance_id}/movements")
    def list_movements(ambulance_id: int, limit: Optional[int] = None):
        movements = registry.list_movements(ambulance_id, limit)
        return _ok(movements, total=len(movements))

    # Hospitals

    @app.get("/api/hospitals")
    def list_hospitals(status: Optional[HospitalStatus] = None):
        hospitals = store.list_hospitals(status)
        return _ok(hospitals, total=len(hospitals))

    @app.get("/api/hospitals/{hospital_id}")
    def get_hospital(hospital_id: int):
        hospital = store.load_hospital(hospital_id)
        if hospital is None:
            raise NotFoundError("Hospital", hospital_id)
        return _ok(hospital)

    # Proximity

    @app.get("/api/proximity/hospital/{hospital_id}/nearest")
    def nearest_ambulances(hospital_id: int, limit: int = config.DEFAULT_PROXIMITY_LIMIT):
        return _ok(ranker.nearest_ambulances_for_hospital(hospital_id, limit))

    @app.get("/api/proximity/hospital/{hospital_id}/within-radius")
    def ambulances_within_radius(hospital_id: int, radius: float = config.DEFAULT_RADIUS_METERS):
        return _ok(ranker.ambulances_within_radius(hospital_id, radius))

    @app.post("/api/proximity/nearest-hospitals")
    def nearest_hospitals(body: PointQuery):
        point = Point(longitude=body.longitude, latitude=body.latitude)
        hospitals = ranker.nearest_hospitals_to_point(point, body.limit)
        return _ok(hospitals, total=len(hospitals))

    @app.post("/api/proximity/nearest-ambulances")
    def nearest_ambulances_to_point(body: PointQuery):
        point = Point(longitude=body.longitude, latitude=body.latitude)
        ambulances = ranker.nearest_ambulances_to_point(point, body.limit)
        return _ok(ambulances, total=len(ambulances))

    @app.delete("/api/proximity/cache")
    def invalidate_cache(hospital_id: Optional[int] = None):
        return _ok({"invalidated": ranker.invalidate(hospital_id)})

    # Requests

    @app.post("/api/requests", status_code=201)
    def create_request(body: CreateRequestBody):
        point = Point(longitude=body.longitude, latitude=body.latitude)
        return _ok(lifecycle.create(point, body.ambulance_id, body.hospital_id))

    @app.get("/api/requests")
    def list_requests(status: Optional[RequestStatus] = None, page: Optional[int] = None,
                      limit: Optional[int] = None):
        result = lifecycle.list(status, page, limit)
        return _ok(result.data, total=result.total, page=result.page, limit=result.limit)

    @app.get("/api/requests/pending-count")
    def pending_count():
        return _ok({"count": lifecycle.pending_count()})

    @app.get("/api/requests/{request_id}")
    def get_request(request_id: int):
        return _ok(lifecycle.get(request_id))

    @app.patch("/api/requests/{request_id}/accept")
    def accept_request(request_id: int, body: Optional[AcceptRequestBody] = None):
        hospital_id = body.hospital_id if body else None
        return _ok(lifecycle.accept(request_id, hospital_id))

    @app.patch("/api/requests/{request_id}/decline")
    def decline_request(request_id: int, body: Optional[DeclineRequestBody] = None):
        return _ok(lifecycle.decline(request_id, body.reason if body else None))

    @app.patch("/api/requests/{request_id}/status")
    def update_request_status(request_id: int, body: RequestStatusBody):
        return _ok(lifecycle.update_status(request_id, body.status))

    @app.delete("/api/requests/{request_id}")
    def cancel_request(request_id: int):
        return _ok(lifecycle.cancel(request_id))

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "ambulance-dispatch",
            "active_simulations": registry.active_simulations(),
        }

    return app


def run():
    import uvicorn

    from ambulance_dispatch.seed import seed_demo_data

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    container = build_container()
    if hasattr(container.store, "create_schema"):
        container.store.create_schema()
    if config.SEED_DEMO_DATA and not container.store.list_hospitals():
        seed_demo_data(container.store)

    uvicorn.run(create_app(container), host=config.SERVICE_HOST, port=config.SERVICE_PORT)


if __name__ == "__main__":
    run()
