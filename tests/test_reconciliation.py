from datetime import datetime, timedelta, timezone

import pytest

from fleettrack.errors import NotFoundError, ValidationError
from fleettrack.models.domain import Trip, TripStatus, Vehicle
from fleettrack.persistence.memory import InMemoryTripStore
from fleettrack.services.tracking.reconciliation import OdometerReconciler

T0 = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def store() -> InMemoryTripStore:
    store = InMemoryTripStore()
    store.add_vehicle(Vehicle(id="veh-1", organization_id="org-1", plate_number="01A123BC", current_odometer=5000.0))
    return store


def _completed_trip(trip_id: str, ended_at: datetime, meters: float) -> Trip:
    return Trip(
        id=trip_id,
        organization_id="org-1",
        employee_id="emp-1",
        vehicle_id="veh-1",
        started_at=ended_at - timedelta(hours=1),
        ended_at=ended_at,
        status=TripStatus.COMPLETED,
        calculated_distance_meters=meters,
    )


def test_reconciliation_records_audit_row_and_updates_vehicle(store: InMemoryTripStore, clock: FrozenClock):
    reconciler = OdometerReconciler(store, clock=clock)

    row = reconciler.perform_reconciliation("org-1", "veh-1", 5004.5, "mgr-1", notes="monthly check")

    assert row.expected_odometer == 5000.0
    assert row.difference_km == 4.5
    assert row.threshold_km == 10.0
    assert row.is_anomaly is False
    assert row.performed_at == T0
    assert row.notes == "monthly check"

    vehicle = store.get_vehicle("veh-1")
    assert vehicle.current_odometer == 5004.5
    assert vehicle.last_odometer_update == T0


def test_large_difference_is_flagged(store: InMemoryTripStore, clock: FrozenClock):
    row = OdometerReconciler(store, clock=clock).perform_reconciliation("org-1", "veh-1", 4980.0, "mgr-1")

    assert row.difference_km == 20.0
    assert row.is_anomaly is True


def test_unknown_or_foreign_vehicle_is_not_found(store: InMemoryTripStore):
    reconciler = OdometerReconciler(store)

    with pytest.raises(NotFoundError):
        reconciler.perform_reconciliation("org-1", "missing", 10.0, "mgr-1")
    with pytest.raises(NotFoundError):
        reconciler.perform_reconciliation("org-2", "veh-1", 10.0, "mgr-1")


def test_negative_reading_is_rejected(store: InMemoryTripStore):
    with pytest.raises(ValidationError):
        OdometerReconciler(store).perform_reconciliation("org-1", "veh-1", -1.0, "mgr-1")


def test_calculated_distance_counts_trips_since_previous_reconciliation(
    store: InMemoryTripStore, clock: FrozenClock
):
    reconciler = OdometerReconciler(store, clock=clock)
    store.create_trip(_completed_trip("t1", T0 - timedelta(days=2), 12_000.0))

    first = reconciler.perform_reconciliation("org-1", "veh-1", 5012.0, "mgr-1")
    assert first.calculated_distance_km == 12.0

    store.create_trip(_completed_trip("t2", T0 + timedelta(days=1), 3_500.0))
    clock.now = T0 + timedelta(days=2)
    second = reconciler.perform_reconciliation("org-1", "veh-1", 5016.0, "mgr-1")

    assert second.calculated_distance_km == 3.5
    assert second.expected_odometer == 5012.0


def test_trip_distances_are_not_modified(store: InMemoryTripStore, clock: FrozenClock):
    store.create_trip(_completed_trip("t1", T0 - timedelta(hours=2), 7_000.0))

    OdometerReconciler(store, clock=clock).perform_reconciliation("org-1", "veh-1", 5100.0, "mgr-1")

    assert store.get_trip("t1").calculated_distance_meters == 7_000.0


def test_history_is_newest_first_and_limited(store: InMemoryTripStore, clock: FrozenClock):
    reconciler = OdometerReconciler(store, clock=clock)
    for day in range(3):
        clock.now = T0 + timedelta(days=day)
        reconciler.perform_reconciliation("org-1", "veh-1", 5000.0 + day, "mgr-1")

    history = reconciler.get_reconciliation_history("veh-1", "org-1", limit=2)

    assert [row.actual_odometer for row in history] == [5002.0, 5001.0]
    assert reconciler.get_reconciliation_history("veh-1", "org-2") == []
