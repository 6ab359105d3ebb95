from datetime import datetime, timedelta, timezone

from fleettrack.models.domain import (
    AnomalySeverity,
    AnomalyType,
    ExcessiveIdleDetails,
    FilterReason,
    GpsJumpDetails,
    Trip,
    TripAnomaly,
    TripPoint,
    TripStatus,
    TripTaskType,
)
from fleettrack.persistence.database import (
    SupabaseTripStore,
    anomaly_from_row,
    anomaly_to_row,
    trip_from_row,
    trip_to_row,
)
from fleettrack.persistence.memory import InMemoryTripStore

T0 = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def _trip(**overrides) -> Trip:
    values = dict(id="t1", organization_id="org-1", employee_id="emp-1", started_at=T0)
    values.update(overrides)
    return Trip(**values)


def _point(index: int, seconds: int, filtered: bool = False) -> TripPoint:
    return TripPoint(
        id=f"p{index}",
        trip_id="t1",
        latitude=41.2995,
        longitude=69.2401,
        captured_at=T0 + timedelta(seconds=seconds),
        is_filtered=filtered,
        filter_reason=FilterReason.LOW_ACCURACY if filtered else None,
    )


def test_memory_store_returns_detached_copies():
    store = InMemoryTripStore()
    store.create_trip(_trip())

    loaded = store.get_trip("t1")
    loaded.total_points = 99
    assert store.get_trip("t1").total_points == 0

    store.update_trip(loaded)
    assert store.get_trip("t1").total_points == 99


def test_memory_store_recent_accepted_points_are_chronological():
    store = InMemoryTripStore()
    store.create_trip(_trip())
    for index, seconds in enumerate([30, 0, 90, 60]):
        store.add_point(_point(index, seconds))
    store.add_point(_point(9, 120, filtered=True))

    recent = store.recent_accepted_points("t1", 3)

    assert [p.id for p in recent] == ["p0", "p3", "p2"]
    assert store.last_accepted_point("t1").id == "p2"
    assert len(store.all_points("t1")) == 5


def test_memory_store_finds_only_active_trip_for_employee():
    store = InMemoryTripStore()
    store.create_trip(_trip(id="old", status=TripStatus.COMPLETED))
    store.create_trip(_trip(id="new"))

    assert store.find_active_trip("emp-1").id == "new"
    assert store.find_active_trip("emp-2") is None


def test_trip_row_conversion_keeps_enums_and_route():
    trip = _trip(
        task_type=TripTaskType.REPAIR,
        planned_route=[(41.3, 69.2), (41.31, 69.21)],
        last_location_update=T0 + timedelta(minutes=1),
    )
    trip.stops = ["not persisted"]

    row = trip_to_row(trip)

    assert row["task_type"] == "repair"
    assert row["status"] == "active"
    assert row["started_at"] == T0.isoformat()
    assert row["planned_route"] == [[41.3, 69.2], [41.31, 69.21]]
    assert "stops" not in row and "vehicle" not in row

    restored = trip_from_row({**row, "started_at": "2024-05-01T08:00:00Z"})
    assert restored.task_type is TripTaskType.REPAIR
    assert restored.started_at == T0
    assert restored.planned_route == [(41.3, 69.2), (41.31, 69.21)]


def test_anomaly_row_uses_camel_case_details():
    anomaly = TripAnomaly(
        id="a1",
        trip_id="t1",
        type=AnomalyType.EXCESSIVE_IDLE,
        severity=AnomalySeverity.WARNING,
        details=ExcessiveIdleDetails(idle_seconds=1900, max_idle_seconds=1800, stop_id="s1"),
        detected_at=T0,
    )

    row = anomaly_to_row(anomaly)
    assert row["details"] == {"idleSeconds": 1900, "maxIdleSeconds": 1800, "stopId": "s1"}

    restored = anomaly_from_row(row)
    assert restored.details == anomaly.details
    assert restored.type is AnomalyType.EXCESSIVE_IDLE


class _Response:
    def __init__(self, data):
        self.data = data


class _Query:
    """Records the calls made on one table and filters rows like PostgREST would."""

    def __init__(self, table: "_Table") -> None:
        self.table = table
        self.rows = list(table.rows)
        self.calls: list[tuple] = []
        table.queries.append(self)

    def select(self, *args, **kwargs):
        self.calls.append(("select", args))
        return self

    def eq(self, column, value):
        self.calls.append(("eq", column, value))
        self.rows = [row for row in self.rows if row.get(column) == value]
        return self

    def in_(self, column, values):
        self.calls.append(("in_", column, list(values)))
        self.rows = [row for row in self.rows if row.get(column) in values]
        return self

    def is_(self, column, value):
        self.calls.append(("is_", column, value))
        if value == "null":
            self.rows = [row for row in self.rows if row.get(column) is None]
        return self

    def gte(self, column, value):
        self.calls.append(("gte", column, value))
        self.rows = [row for row in self.rows if row.get(column) >= value]
        return self

    def lte(self, column, value):
        self.calls.append(("lte", column, value))
        self.rows = [row for row in self.rows if row.get(column) <= value]
        return self

    def order(self, column, desc=False):
        self.calls.append(("order", column, desc))
        self.rows.sort(key=lambda row: row[column], reverse=desc)
        return self

    def limit(self, count):
        self.calls.append(("limit", count))
        self.rows = self.rows[:count]
        return self

    def insert(self, payload):
        self.calls.append(("insert", payload))
        self.table.rows.extend(payload if isinstance(payload, list) else [payload])
        return self

    def execute(self):
        return _Response(self.rows)


class _Table:
    def __init__(self, rows=None) -> None:
        self.rows = list(rows or [])
        self.queries: list[_Query] = []


class _FakeClient:
    def __init__(self, tables: dict[str, _Table]) -> None:
        self.tables = tables

    def table(self, name: str) -> _Query:
        return _Query(self.tables.setdefault(name, _Table()))


def test_supabase_store_recent_points_are_reversed_to_chronological():
    rows = [
        {
            "id": f"p{i}",
            "trip_id": "t1",
            "latitude": 41.2995,
            "longitude": 69.2401,
            "captured_at": (T0 + timedelta(seconds=i * 30)).isoformat(),
            "is_filtered": False,
            "filter_reason": None,
            "distance_from_prev_meters": 0.0,
        }
        for i in range(4)
    ]
    client = _FakeClient({"trip_points": _Table(rows)})
    store = SupabaseTripStore(client)

    recent = store.recent_accepted_points("t1", 2)

    assert [p.id for p in recent] == ["p2", "p3"]
    assert recent[1].captured_at == T0 + timedelta(seconds=90)
    query = client.tables["trip_points"].queries[-1]
    assert ("eq", "is_filtered", False) in query.calls
    assert ("order", "captured_at", True) in query.calls


def test_supabase_store_creates_and_reads_trip():
    client = _FakeClient({})
    store = SupabaseTripStore(client)

    store.create_trip(_trip(vehicle_id="veh-1"))
    loaded = store.get_trip("t1")

    assert loaded.vehicle_id == "veh-1"
    assert loaded.status is TripStatus.ACTIVE
    assert store.get_trip("missing") is None


def test_gps_jump_row_keeps_previous_point_nested():
    anomaly = TripAnomaly(
        id="a2",
        trip_id="t1",
        type=AnomalyType.GPS_JUMP,
        severity=AnomalySeverity.INFO,
        details=GpsJumpDetails(
            previous_latitude=41.2995,
            previous_longitude=69.2401,
            distance_meters=2223.9,
            time_seconds=10.0,
        ),
        detected_at=T0,
    )

    row = anomaly_to_row(anomaly)
    assert row["details"]["previousPoint"] == {"lat": 41.2995, "lng": 69.2401}
    assert anomaly_from_row(row).details == anomaly.details


def test_supabase_store_maps_tasks_to_machines():
    tasks = _Table(
        [
            {"id": "task-1", "machine_id": "m-1", "deleted_at": None},
            {"id": "task-2", "machine_id": None, "deleted_at": None},
            {"id": "task-3", "machine_id": "m-3", "deleted_at": "2024-04-01T00:00:00+00:00"},
            {"id": "task-4", "machine_id": "m-4", "deleted_at": None},
        ]
    )
    client = _FakeClient({"tasks": tasks})
    store = SupabaseTripStore(client)

    assert store.get_task_machine_ids(["task-1", "task-2", "task-3"]) == {"task-1": "m-1"}
    assert store.get_task_machine_ids([]) == {}
    assert len(tasks.queries) == 1


def test_supabase_store_lists_machine_stops_for_organization():
    def stop(stop_id: str, trip_id: str, minutes: int, machine_id=None) -> dict:
        return {
            "id": stop_id,
            "trip_id": trip_id,
            "started_at": (T0 + timedelta(minutes=minutes)).isoformat(),
            "latitude": 41.2995,
            "longitude": 69.2401,
            "machine_id": machine_id,
        }

    client = _FakeClient(
        {
            "trips": _Table(
                [
                    {"id": "t1", "organization_id": "org-1"},
                    {"id": "t2", "organization_id": "org-2"},
                ]
            ),
            "trip_stops": _Table(
                [
                    stop("s1", "t1", 0, "m-1"),
                    stop("s2", "t1", 30),
                    stop("s3", "t2", 10, "m-1"),
                    stop("s4", "t1", 90, "m-2"),
                ]
            ),
        }
    )
    store = SupabaseTripStore(client)

    assert [s.id for s in store.list_machine_stops("org-1")] == ["s1", "s4"]
    assert [s.id for s in store.list_machine_stops("org-1", date_to=T0 + timedelta(hours=1))] == ["s1"]
    assert [s.id for s in store.list_machine_stops("org-1", machine_id="m-2")] == ["s4"]
    assert store.list_machine_stops("org-3") == []
