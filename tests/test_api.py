import pytest
from fastapi.testclient import TestClient

from fleettrack.api import dependencies
from fleettrack.main import create_app
from fleettrack.models.domain import Machine, Vehicle
from fleettrack.persistence.memory import InMemoryTripStore
from fleettrack.services.routing.models import Route, RouteStop
from fleettrack.services.routing.service import RouteOptimizationService
from fleettrack.services.tracking.reconciliation import OdometerReconciler
from fleettrack.services.tracking.service import TripService

HEADERS = {"X-Organization-Id": "org-1", "X-User-Id": "emp-1"}
OTHER_ORG = {"X-Organization-Id": "org-2", "X-User-Id": "emp-9"}


@pytest.fixture
def store() -> InMemoryTripStore:
    store = InMemoryTripStore()
    store.add_vehicle(Vehicle(id="veh-1", organization_id="org-1", plate_number="01A123BC", current_odometer=1000.0))
    store.add_route(
        Route(
            id="r1",
            organization_id="org-1",
            stops=[
                RouteStop(id=f"s{i}", sequence=i + 1, latitude=41.3, longitude=lon)
                for i, lon in enumerate([69.20, 69.23, 69.21, 69.22])
            ],
        )
    )
    return store


@pytest.fixture
def api_client(store: InMemoryTripStore) -> TestClient:
    app = create_app()
    trip_service = TripService(store)
    app.dependency_overrides[dependencies.get_trip_service] = lambda: trip_service
    app.dependency_overrides[dependencies.get_reconciler] = lambda: OdometerReconciler(store)
    app.dependency_overrides[dependencies.get_route_service] = lambda: RouteOptimizationService(store)
    return TestClient(app)


def _start(client: TestClient, **payload) -> dict:
    response = client.post("/api/trips/start", json=payload, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(api_client: TestClient):
    assert api_client.get("/api/health").json() == {"status": "ok"}


def test_trip_lifecycle(api_client: TestClient):
    trip = _start(api_client, vehicle_id="veh-1", start_odometer=1000, task_ids=["task-1"])
    assert trip["status"] == "active"
    assert trip["vehicle"]["plate_number"] == "01A123BC"
    assert trip["task_links"][0]["status"] == "pending"

    point = api_client.post(
        f"/api/trips/{trip['id']}/points",
        json={"latitude": 41.2995, "longitude": 69.2401, "recorded_at": "2024-05-01T08:00:00Z"},
        headers=HEADERS,
    )
    assert point.status_code == 201
    assert point.json()["is_filtered"] is False

    batch = api_client.post(
        f"/api/trips/{trip['id']}/points/batch",
        json={
            "points": [
                {"latitude": 41.3005, "longitude": 69.2401, "recorded_at": "2024-05-01T08:01:00Z"},
                {"latitude": 41.3015, "longitude": 69.2401, "accuracy": 120, "recorded_at": "2024-05-01T08:02:00Z"},
            ]
        },
        headers=HEADERS,
    )
    assert batch.status_code == 201
    assert [p["filter_reason"] for p in batch.json()] == [None, "LOW_ACCURACY"]

    route = api_client.get(f"/api/trips/{trip['id']}/route", headers=HEADERS).json()
    assert len(route) == 2

    active = api_client.get("/api/trips/active", headers=HEADERS).json()
    assert active["id"] == trip["id"]
    assert active["total_points"] == 2

    ended = api_client.post(f"/api/trips/{trip['id']}/end", json={"end_odometer": 1000.2}, headers=HEADERS)
    assert ended.status_code == 200
    assert ended.json()["status"] == "completed"

    listing = api_client.get("/api/trips", params={"status": "completed"}, headers=HEADERS).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == trip["id"]


def test_error_mapping(api_client: TestClient):
    trip = _start(api_client)

    conflict = api_client.post("/api/trips/start", json={}, headers=HEADERS)
    assert conflict.status_code == 409
    assert conflict.json() == {
        "error": True,
        "error_code": "RESOURCE_CONFLICT",
        "message": "Employee already has an active trip. End it before starting a new one.",
    }

    missing = api_client.get("/api/trips/does-not-exist", headers=HEADERS)
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "RESOURCE_NOT_FOUND"

    forbidden = api_client.get(f"/api/trips/{trip['id']}", headers=OTHER_ORG)
    assert forbidden.status_code == 403
    assert forbidden.json()["error_code"] == "FORBIDDEN"

    api_client.post(f"/api/trips/{trip['id']}/cancel", json={"reason": "rain"}, headers=HEADERS)
    late = api_client.post(
        f"/api/trips/{trip['id']}/points", json={"latitude": 41.3, "longitude": 69.2}, headers=HEADERS
    )
    assert late.status_code == 409
    assert late.json()["error_code"] == "INVALID_STATE"


def test_odometer_validation_error(api_client: TestClient):
    trip = _start(api_client, vehicle_id="veh-1", start_odometer=1000)

    response = api_client.post(f"/api/trips/{trip['id']}/end", json={"end_odometer": 900}, headers=HEADERS)

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_identity_headers_are_required(api_client: TestClient):
    assert api_client.get("/api/trips/active").status_code == 422


def test_anomaly_resolution_and_unresolved_listing(api_client: TestClient):
    trip = _start(api_client, vehicle_id="veh-1", start_odometer=1000)
    api_client.post(f"/api/trips/{trip['id']}/end", json={"end_odometer": 1050}, headers=HEADERS)

    unresolved = api_client.get("/api/trips/anomalies/unresolved", headers=HEADERS).json()
    assert [a["type"] for a in unresolved] == ["MILEAGE_DISCREPANCY"]
    assert unresolved[0]["details"]["actualKm"] == 50.0

    resolved = api_client.post(
        f"/api/trips/anomalies/{unresolved[0]['id']}/resolve", json={"notes": "odometer swapped"}, headers=HEADERS
    )
    assert resolved.status_code == 200
    assert resolved.json()["resolved"] is True
    assert api_client.get("/api/trips/anomalies/unresolved", headers=HEADERS).json() == []


def test_reconciliation_endpoints(api_client: TestClient):
    created = api_client.post(
        "/api/trips/reconciliation",
        json={"vehicle_id": "veh-1", "actual_odometer": 1025},
        headers=HEADERS,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["expected_odometer"] == 1000.0
    assert body["is_anomaly"] is True

    history = api_client.get("/api/trips/reconciliation/veh-1/history", headers=HEADERS).json()
    assert [row["id"] for row in history] == [body["id"]]

    unknown = api_client.post(
        "/api/trips/reconciliation", json={"vehicle_id": "veh-1", "actual_odometer": 1}, headers=OTHER_ORG
    )
    assert unknown.status_code == 404


def test_task_endpoints(api_client: TestClient):
    trip = _start(api_client)

    linked = api_client.post(f"/api/trips/{trip['id']}/tasks", json={"task_id": "task-7"}, headers=HEADERS)
    assert linked.status_code == 201
    duplicate = api_client.post(f"/api/trips/{trip['id']}/tasks", json={"task_id": "task-7"}, headers=HEADERS)
    assert duplicate.status_code == 409

    done = api_client.post(f"/api/trips/{trip['id']}/tasks/task-7/complete", json={}, headers=HEADERS)
    assert done.json()["status"] == "completed"


def test_analytics_endpoints(api_client: TestClient):
    trip = _start(api_client)
    api_client.post(f"/api/trips/{trip['id']}/end", json={}, headers=HEADERS)

    summary = api_client.get("/api/trips/analytics/summary", headers=HEADERS).json()
    assert summary["total_trips"] == 1
    assert summary["completed_trips"] == 1

    stats = api_client.get("/api/trips/analytics/employee", headers=HEADERS).json()
    assert stats["employee_id"] == "emp-1"
    assert stats["total_trips"] == 1


def test_machine_visits_and_gps_task_verification(api_client: TestClient, store: InMemoryTripStore):
    store.add_machine(Machine(id="m-1", organization_id="org-1", name="Gate 3", latitude=41.2995, longitude=69.2401))
    store.add_task("task-1", "m-1")
    trip = _start(api_client, task_ids=["task-1"])
    points = [
        {"latitude": 41.2995, "longitude": 69.2401, "recorded_at": f"2024-05-01T08:0{minute}:00Z"}
        for minute in (0, 2, 4, 6)
    ]
    points.append({"latitude": 41.3005, "longitude": 69.2401, "recorded_at": "2024-05-01T08:07:00Z"})
    api_client.post(f"/api/trips/{trip['id']}/points/batch", json={"points": points}, headers=HEADERS)

    tasks = api_client.get(f"/api/trips/{trip['id']}/tasks", headers=HEADERS).json()
    assert tasks[0]["status"] == "in_progress"
    assert tasks[0]["verified_by_gps"] is True

    visits = api_client.get("/api/trips/analytics/machines", headers=HEADERS).json()
    assert visits == [
        {"machine_id": "m-1", "machine_name": "Gate 3", "visit_count": 1, "total_duration_seconds": 420}
    ]
    assert api_client.get("/api/trips/analytics/machines", headers=OTHER_ORG).json() == []


def test_terminal_trip_rejects_live_location_and_bad_speed(api_client: TestClient):
    trip = _start(api_client)
    bad_speed = api_client.post(
        f"/api/trips/{trip['id']}/points",
        json={"latitude": 41.3, "longitude": 69.2, "speed": -1},
        headers=HEADERS,
    )
    assert bad_speed.status_code == 422

    api_client.post(f"/api/trips/{trip['id']}/end", json={}, headers=HEADERS)
    response = api_client.patch(
        f"/api/trips/{trip['id']}/live-location", json={"is_active": False}, headers=HEADERS
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "INVALID_STATE"


def test_route_optimization_endpoints(api_client: TestClient, store: InMemoryTripStore):
    response = api_client.post(
        "/api/routes/optimize",
        json={
            "stops": [
                {"id": "a", "sequence": 1, "latitude": 41.3, "longitude": 69.20},
                {"id": "b", "sequence": 2, "latitude": 41.3, "longitude": 69.23},
                {"id": "c", "sequence": 3, "latitude": 41.3, "longitude": 69.21},
                {"id": "d", "sequence": 4},
            ]
        },
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["optimized"] is True
    assert [s["id"] for s in payload["stops"]] == ["a", "c", "b", "d"]

    stored = api_client.post("/api/routes/r1/optimize", headers=HEADERS)
    assert stored.status_code == 200
    assert stored.json()["route_id"] == "r1"
    assert sorted(store.get_route("r1").stops, key=lambda s: s.sequence)[1].id == "s2"

    assert api_client.post("/api/routes/r1/optimize", headers=OTHER_ORG).status_code == 404
