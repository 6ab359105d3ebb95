"""Supabase-backed persistence for trips, points, stops and anomalies."""

from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Sequence

from ..models.domain import (
    AnomalySeverity,
    AnomalyType,
    FilterReason,
    Machine,
    TaskLinkStatus,
    Trip,
    TripAnomaly,
    TripPoint,
    TripReconciliation,
    TripStatus,
    TripStop,
    TripTaskLink,
    TripTaskType,
    Vehicle,
    details_from_payload,
)
from ..services.routing.models import Route, RouteStop
from .base import AnomalyFilters, TripFilters, TripStore

logger = logging.getLogger(__name__)

_TRIP_RELATIONS = ("vehicle", "task_links", "stops", "anomalies")


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _to_row(record: Any, exclude: Sequence[str] = ()) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for f in fields(record):
        if f.name in exclude:
            continue
        value = getattr(record, f.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        row[f.name] = value
    return row


def _from_row(cls: type, row: dict[str, Any], converters: dict[str, Callable[[Any], Any]]) -> Any:
    names = {f.name for f in fields(cls)}
    kwargs = {key: value for key, value in row.items() if key in names}
    for key, convert in converters.items():
        if kwargs.get(key) is not None:
            kwargs[key] = convert(kwargs[key])
    return cls(**kwargs)


def trip_to_row(trip: Trip) -> dict[str, Any]:
    row = _to_row(trip, exclude=_TRIP_RELATIONS)
    row["planned_route"] = [[lat, lon] for lat, lon in trip.planned_route]
    return row


def trip_from_row(row: dict[str, Any]) -> Trip:
    return _from_row(
        Trip,
        row,
        {
            "started_at": _parse_datetime,
            "ended_at": _parse_datetime,
            "last_location_update": _parse_datetime,
            "status": TripStatus,
            "task_type": TripTaskType,
            "planned_route": lambda route: [(float(lat), float(lon)) for lat, lon in route],
        },
    )


def point_from_row(row: dict[str, Any]) -> TripPoint:
    return _from_row(
        TripPoint,
        row,
        {"captured_at": _parse_datetime, "filter_reason": FilterReason},
    )


def stop_from_row(row: dict[str, Any]) -> TripStop:
    return _from_row(
        TripStop,
        row,
        {"started_at": _parse_datetime, "ended_at": _parse_datetime},
    )


def anomaly_to_row(anomaly: TripAnomaly) -> dict[str, Any]:
    row = _to_row(anomaly, exclude=("details",))
    row["details"] = anomaly.details.to_payload()
    return row


def anomaly_from_row(row: dict[str, Any]) -> TripAnomaly:
    anomaly_type = AnomalyType(row["type"])
    row = {**row, "details": details_from_payload(anomaly_type, row.get("details") or {})}
    return _from_row(
        TripAnomaly,
        row,
        {
            "type": AnomalyType,
            "severity": AnomalySeverity,
            "detected_at": _parse_datetime,
            "resolved_at": _parse_datetime,
        },
    )


def task_link_from_row(row: dict[str, Any]) -> TripTaskLink:
    return _from_row(
        TripTaskLink,
        row,
        {
            "status": TaskLinkStatus,
            "verified_at": _parse_datetime,
            "started_at": _parse_datetime,
            "completed_at": _parse_datetime,
        },
    )


def reconciliation_from_row(row: dict[str, Any]) -> TripReconciliation:
    return _from_row(TripReconciliation, row, {"performed_at": _parse_datetime})


def vehicle_from_row(row: dict[str, Any]) -> Vehicle:
    return _from_row(Vehicle, row, {"last_odometer_update": _parse_datetime, "current_odometer": float})


class SupabaseTripStore(TripStore):
    """``TripStore`` on top of Supabase tables.

    Query errors from the client propagate to the caller.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    def _table(self, name: str):
        return self.client.table(name)

    def _first(self, response) -> dict[str, Any] | None:
        data = response.data or []
        return data[0] if data else None

    # Vehicles and machines
    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        row = self._first(self._table("vehicles").select("*").eq("id", vehicle_id).limit(1).execute())
        return vehicle_from_row(row) if row else None

    def update_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self._table("vehicles").update(
            {
                "current_odometer": vehicle.current_odometer,
                "last_odometer_update": vehicle.last_odometer_update.isoformat()
                if vehicle.last_odometer_update
                else None,
            }
        ).eq("id", vehicle.id).execute()
        return vehicle

    def find_machines(self, organization_id: str) -> list[Machine]:
        response = (
            self._table("machines")
            .select("id, organization_id, name, latitude, longitude")
            .eq("organization_id", organization_id)
            .not_.is_("latitude", "null")
            .execute()
        )
        return [_from_row(Machine, row, {}) for row in response.data or []]

    # Trips
    def create_trip(self, trip: Trip) -> Trip:
        self._table("trips").insert(trip_to_row(trip)).execute()
        return trip

    def get_trip(self, trip_id: str) -> Trip | None:
        row = self._first(self._table("trips").select("*").eq("id", trip_id).limit(1).execute())
        return trip_from_row(row) if row else None

    def update_trip(self, trip: Trip) -> Trip:
        self._table("trips").update(trip_to_row(trip)).eq("id", trip.id).execute()
        return trip

    def find_active_trip(self, employee_id: str) -> Trip | None:
        row = self._first(
            self._table("trips")
            .select("*")
            .eq("employee_id", employee_id)
            .eq("status", TripStatus.ACTIVE.value)
            .limit(1)
            .execute()
        )
        return trip_from_row(row) if row else None

    def list_trips(self, organization_id: str, filters: TripFilters | None = None) -> list[Trip]:
        filters = filters or TripFilters()
        query = self._table("trips").select("*").eq("organization_id", organization_id)
        if filters.employee_id:
            query = query.eq("employee_id", filters.employee_id)
        if filters.vehicle_id:
            query = query.eq("vehicle_id", filters.vehicle_id)
        if filters.status:
            query = query.eq("status", filters.status.value)
        if filters.task_type:
            query = query.eq("task_type", filters.task_type.value)
        if filters.date_from:
            query = query.gte("started_at", filters.date_from.isoformat())
        if filters.date_to:
            query = query.lte("started_at", filters.date_to.isoformat())
        response = query.order("started_at", desc=True).execute()
        return [trip_from_row(row) for row in response.data or []]

    # Points
    def add_point(self, point: TripPoint) -> TripPoint:
        self._table("trip_points").insert(_to_row(point)).execute()
        return point

    def recent_accepted_points(self, trip_id: str, limit: int) -> list[TripPoint]:
        if limit <= 0:
            return []
        response = (
            self._table("trip_points")
            .select("*")
            .eq("trip_id", trip_id)
            .eq("is_filtered", False)
            .order("captured_at", desc=True)
            .limit(limit)
            .execute()
        )
        points = [point_from_row(row) for row in response.data or []]
        points.reverse()
        return points

    def accepted_points(self, trip_id: str) -> list[TripPoint]:
        response = (
            self._table("trip_points")
            .select("*")
            .eq("trip_id", trip_id)
            .eq("is_filtered", False)
            .order("captured_at")
            .execute()
        )
        return [point_from_row(row) for row in response.data or []]

    # Stops
    def add_stop(self, stop: TripStop) -> TripStop:
        self._table("trip_stops").insert(_to_row(stop)).execute()
        return stop

    def update_stop(self, stop: TripStop) -> TripStop:
        self._table("trip_stops").update(_to_row(stop)).eq("id", stop.id).execute()
        return stop

    def list_stops(self, trip_id: str) -> list[TripStop]:
        response = self._table("trip_stops").select("*").eq("trip_id", trip_id).order("started_at").execute()
        return [stop_from_row(row) for row in response.data or []]

    def open_stop(self, trip_id: str) -> TripStop | None:
        row = self._first(
            self._table("trip_stops")
            .select("*")
            .eq("trip_id", trip_id)
            .is_("ended_at", "null")
            .limit(1)
            .execute()
        )
        return stop_from_row(row) if row else None

    def list_machine_stops(
        self,
        organization_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        machine_id: str | None = None,
    ) -> list[TripStop]:
        trip_ids = [
            row["id"]
            for row in self._table("trips").select("id").eq("organization_id", organization_id).execute().data or []
        ]
        if not trip_ids:
            return []

        query = self._table("trip_stops").select("*").in_("trip_id", trip_ids)
        if machine_id:
            query = query.eq("machine_id", machine_id)
        if date_from:
            query = query.gte("started_at", date_from.isoformat())
        if date_to:
            query = query.lte("started_at", date_to.isoformat())
        response = query.order("started_at").execute()
        return [stop_from_row(row) for row in response.data or [] if row.get("machine_id")]

    # Anomalies
    def add_anomaly(self, anomaly: TripAnomaly) -> TripAnomaly:
        self._table("trip_anomalies").insert(anomaly_to_row(anomaly)).execute()
        return anomaly

    def get_anomaly(self, anomaly_id: str) -> TripAnomaly | None:
        row = self._first(self._table("trip_anomalies").select("*").eq("id", anomaly_id).limit(1).execute())
        return anomaly_from_row(row) if row else None

    def update_anomaly(self, anomaly: TripAnomaly) -> TripAnomaly:
        self._table("trip_anomalies").update(anomaly_to_row(anomaly)).eq("id", anomaly.id).execute()
        return anomaly

    def list_anomalies(self, trip_id: str) -> list[TripAnomaly]:
        response = (
            self._table("trip_anomalies")
            .select("*")
            .eq("trip_id", trip_id)
            .order("detected_at", desc=True)
            .execute()
        )
        return [anomaly_from_row(row) for row in response.data or []]

    def list_unresolved_anomalies(
        self, organization_id: str, filters: AnomalyFilters | None = None
    ) -> list[TripAnomaly]:
        filters = filters or AnomalyFilters()
        trips = self._table("trips").select("id").eq("organization_id", organization_id)
        if filters.employee_id:
            trips = trips.eq("employee_id", filters.employee_id)
        trip_ids = [row["id"] for row in trips.execute().data or []]
        if not trip_ids:
            return []

        query = self._table("trip_anomalies").select("*").in_("trip_id", trip_ids).eq("resolved", False)
        if filters.severity:
            query = query.eq("severity", filters.severity.value)
        if filters.type:
            query = query.eq("type", filters.type.value)
        response = query.order("detected_at", desc=True).limit(filters.limit).execute()
        return [anomaly_from_row(row) for row in response.data or []]

    # Task links
    def add_task_links(self, links: Sequence[TripTaskLink]) -> list[TripTaskLink]:
        if links:
            self._table("trip_task_links").insert([_to_row(link) for link in links]).execute()
        return list(links)

    def get_task_link(self, trip_id: str, task_id: str) -> TripTaskLink | None:
        row = self._first(
            self._table("trip_task_links")
            .select("*")
            .eq("trip_id", trip_id)
            .eq("task_id", task_id)
            .limit(1)
            .execute()
        )
        return task_link_from_row(row) if row else None

    def update_task_link(self, link: TripTaskLink) -> TripTaskLink:
        self._table("trip_task_links").update(_to_row(link)).eq("id", link.id).execute()
        return link

    def list_task_links(self, trip_id: str) -> list[TripTaskLink]:
        response = self._table("trip_task_links").select("*").eq("trip_id", trip_id).execute()
        return [task_link_from_row(row) for row in response.data or []]

    def get_task_machine_ids(self, task_ids: Sequence[str]) -> dict[str, str]:
        if not task_ids:
            return {}
        response = (
            self._table("tasks")
            .select("id, machine_id")
            .in_("id", list(task_ids))
            .is_("deleted_at", "null")
            .execute()
        )
        return {row["id"]: row["machine_id"] for row in response.data or [] if row.get("machine_id")}

    # Reconciliations
    def add_reconciliation(self, reconciliation: TripReconciliation) -> TripReconciliation:
        self._table("trip_reconciliations").insert(_to_row(reconciliation)).execute()
        return reconciliation

    def list_reconciliations(
        self, vehicle_id: str, organization_id: str, limit: int | None = None
    ) -> list[TripReconciliation]:
        query = (
            self._table("trip_reconciliations")
            .select("*")
            .eq("vehicle_id", vehicle_id)
            .eq("organization_id", organization_id)
            .order("performed_at", desc=True)
        )
        if limit is not None:
            query = query.limit(limit)
        return [reconciliation_from_row(row) for row in query.execute().data or []]

    # Routes
    def get_route(self, route_id: str) -> Route | None:
        row = self._first(
            self._table("routes").select("id, organization_id, name").eq("id", route_id).limit(1).execute()
        )
        if not row:
            return None
        stops = (
            self._table("route_stops")
            .select("id, sequence, latitude, longitude, status, machine_id")
            .eq("route_id", route_id)
            .order("sequence")
            .execute()
        )
        return Route(
            id=row["id"],
            organization_id=row["organization_id"],
            name=row.get("name") or "",
            stops=[_from_row(RouteStop, stop, {}) for stop in stops.data or []],
        )

    def update_route_stops(self, route_id: str, stops: Sequence[RouteStop]) -> None:
        for stop in stops:
            self._table("route_stops").update({"sequence": stop.sequence}).eq("id", stop.id).eq(
                "route_id", route_id
            ).execute()
        logger.info(f"Persisted {len(stops)} stop sequences for route {route_id}")
