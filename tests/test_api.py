"""Integration tests for the dispatch HTTP API."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from ambulance_dispatch.seed import AMBULANCES, HOSPITALS, seed_demo_data
from ambulance_dispatch.services.dispatch_api.container import build_container
from ambulance_dispatch.services.dispatch_api.main import create_app
from ambulance_dispatch.shared.errors import PersistenceError
from ambulance_dispatch.shared.store import InMemoryStore


@pytest.fixture
def container():
    store = InMemoryStore()
    seed_demo_data(store)
    return build_container(store=store)


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as client:
        yield client


class TestAmbulanceRoutes:

    def test_list_ambulances(self, client):
        response = client.get("/api/ambulances")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["total"] == len(AMBULANCES)
        assert body["data"][0]["call_sign"] == "LASG-AMB-001"
        assert body["data"][0]["location"] == {"longitude": 3.3792, "latitude": 6.5244}

    def test_filter_by_status(self, client):
        client.patch("/api/ambulances/2/status", json={"status": "offline"})

        body = client.get("/api/ambulances", params={"status": "offline"}).json()

        assert [a["id"] for a in body["data"]] == [2]

    def test_unknown_ambulance_is_404(self, client):
        response = client.get("/api/ambulances/99")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Ambulance with ID 99 not found"}

    def test_dispatch_and_conflict(self, client):
        first = client.patch("/api/ambulances/1/dispatch", json={"hospital_id": 1})
        second = client.patch("/api/ambulances/1/dispatch", json={"hospital_id": 1})

        assert first.status_code == 200
        assert first.json()["data"]["status"] == "busy"
        assert first.json()["data"]["assigned_hospital_id"] == 1
        assert second.status_code == 409

    def test_complete(self, client):
        client.patch("/api/ambulances/1/dispatch", json={"hospital_id": 1})

        body = client.patch("/api/ambulances/1/complete").json()

        assert body["data"]["status"] == "available"
        assert body["data"]["assigned_hospital_id"] is None

    def test_update_location_and_movements(self, client):
        response = client.patch("/api/ambulances/1/location",
                                json={"longitude": 3.38, "latitude": 6.53, "speed": 35})

        assert response.status_code == 200
        movements = client.get("/api/ambulances/1/movements").json()
        assert movements["total"] == 1
        assert movements["data"][0]["speed"] == 35

    def test_location_out_of_range_rejected(self, client):
        response = client.patch("/api/ambulances/1/location", json={"longitude": 200, "latitude": 6.5})
        assert response.status_code == 422

    def test_simulation_lifecycle(self, client):
        started = client.patch("/api/ambulances/1/simulate-movement",
                               json={"target_longitude": 3.40, "target_latitude": 6.55, "speed_kmh": 30})

        assert started.status_code == 200
        assert started.json()["data"]["speed_kmh"] == 30
        progress = client.get("/api/ambulances/1/simulation-progress").json()
        assert progress["data"]["target_location"] == {"longitude": 3.40, "latitude": 6.55}
        assert client.get("/health").json()["active_simulations"] == [1]

        stopped = client.delete("/api/ambulances/1/simulation").json()
        assert stopped["data"] == {"stopped": True}
        assert client.get("/api/ambulances/1/simulation-progress").json()["data"] is None

    def test_simulation_rejects_bad_speed(self, client):
        response = client.patch("/api/ambulances/1/simulate-movement",
                                json={"target_longitude": 3.40, "target_latitude": 6.55, "speed_kmh": 0})
        assert response.status_code == 400

    def test_teleport(self, client):
        body = client.patch("/api/ambulances/1/teleport",
                            json={"target_longitude": 3.41, "target_latitude": 6.45}).json()
        assert body["data"]["location"] == {"longitude": 3.41, "latitude": 6.45}


class TestHospitalAndProximityRoutes:

    def test_hospitals(self, client):
        body = client.get("/api/hospitals").json()
        assert body["total"] == len(HOSPITALS)
        assert client.get("/api/hospitals/3").json()["data"]["capacity"] == 850
        assert client.get("/api/hospitals/300").status_code == 404

    def test_nearest_ambulances_cached(self, client):
        first = client.get("/api/proximity/hospital/1/nearest", params={"limit": 2}).json()
        second = client.get("/api/proximity/hospital/1/nearest", params={"limit": 2}).json()

        assert [a["call_sign"] for a in first["data"]["ambulances"]] == ["LASG-AMB-001", "LASG-AMB-002"]
        assert first["data"]["from_cache"] is False
        assert second["data"]["from_cache"] is True

        cleared = client.delete("/api/proximity/cache", params={"hospital_id": 1}).json()
        assert cleared["data"] == {"invalidated": 1}

    def test_nearest_invalid_limit(self, client):
        assert client.get("/api/proximity/hospital/1/nearest", params={"limit": 0}).status_code == 400

    def test_within_radius(self, client):
        body = client.get("/api/proximity/hospital/2/within-radius", params={"radius": 5000}).json()
        assert [a["call_sign"] for a in body["data"]["ambulances"]] == ["FCT-AMB-001", "FCT-AMB-002"]

    def test_nearest_hospitals_to_point(self, client):
        body = client.post("/api/proximity/nearest-hospitals",
                           json={"longitude": 3.42, "latitude": 6.44, "limit": 2}).json()
        assert [h["id"] for h in body["data"]] == [11, 1]

    def test_nearest_ambulances_to_point(self, client):
        body = client.post("/api/proximity/nearest-ambulances",
                           json={"longitude": 7.5, "latitude": 9.06, "limit": 1}).json()
        assert body["data"][0]["call_sign"] == "FCT-AMB-001"


class TestRequestRoutes:

    def test_request_lifecycle(self, client):
        created = client.post("/api/requests", json={
            "longitude": 8.52, "latitude": 12.0, "ambulance_id": 7, "hospital_id": 4,
        })
        assert created.status_code == 201
        request_id = created.json()["data"]["id"]
        assert client.get("/api/requests/pending-count").json()["data"] == {"count": 1}

        accepted = client.patch(f"/api/requests/{request_id}/accept", json={})
        assert accepted.json()["data"]["status"] == "accepted"
        assert client.get("/api/ambulances/7").json()["data"]["status"] == "busy"

        moving = client.patch(f"/api/requests/{request_id}/status", json={"status": "en_route_to_user"})
        assert moving.json()["data"]["status"] == "en_route_to_user"

        cancelled = client.delete(f"/api/requests/{request_id}")
        assert cancelled.json()["data"]["status"] == "cancelled"
        assert client.get("/api/ambulances/7").json()["data"]["status"] == "available"

    def test_decline_then_cancel_is_400(self, client):
        request_id = client.post("/api/requests", json={
            "longitude": 8.52, "latitude": 12.0, "ambulance_id": 7,
        }).json()["data"]["id"]

        declined = client.patch(f"/api/requests/{request_id}/decline", json={"reason": "duplicate"})

        assert declined.json()["data"]["decline_reason"] == "duplicate"
        assert client.delete(f"/api/requests/{request_id}").status_code == 400

    def test_list_requests_paginated(self, client):
        for _ in range(3):
            client.post("/api/requests", json={"longitude": 8.52, "latitude": 12.0, "ambulance_id": 7})

        body = client.get("/api/requests", params={"page": 1, "limit": 2}).json()

        assert body["total"] == 3
        assert len(body["data"]) == 2
        assert body["page"] == 1

    def test_unknown_status_rejected(self, client):
        request_id = client.post("/api/requests", json={
            "longitude": 8.52, "latitude": 12.0, "ambulance_id": 7,
        }).json()["data"]["id"]
        response = client.patch(f"/api/requests/{request_id}/status", json={"status": "teleported"})
        assert response.status_code == 422

    def test_persistence_failure_is_503(self, container, client):
        container.store.list_requests = MagicMock(side_effect=PersistenceError("db down"))
        response = client.get("/api/requests")
        assert response.status_code == 503


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["active_simulations"] == []
