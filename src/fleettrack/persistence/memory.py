"""Process-local store used when no database is configured, and in tests."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from ..models.domain import (
    Machine,
    Trip,
    TripAnomaly,
    TripPoint,
    TripReconciliation,
    TripStatus,
    TripStop,
    TripTaskLink,
    Vehicle,
)
from ..services.routing.models import Route, RouteStop
from .base import AnomalyFilters, TripFilters, TripStore


def _detach_trip(trip: Trip) -> Trip:
    return replace(
        trip,
        planned_route=list(trip.planned_route),
        vehicle=None,
        task_links=[],
        stops=[],
        anomalies=[],
    )


def _detach_route(route: Route) -> Route:
    return replace(route, stops=[replace(stop) for stop in route.stops])


class InMemoryTripStore(TripStore):
    """Dictionary-backed ``TripStore``. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.vehicles: dict[str, Vehicle] = {}
        self.machines: dict[str, Machine] = {}
        self.trips: dict[str, Trip] = {}
        self.points: dict[str, list[TripPoint]] = {}
        self.stops: dict[str, TripStop] = {}
        self.anomalies: dict[str, TripAnomaly] = {}
        self.task_links: dict[str, TripTaskLink] = {}
        self.reconciliations: list[TripReconciliation] = []
        self.routes: dict[str, Route] = {}
        self.task_machines: dict[str, str] = {}

    # Seeding helpers for collaborator-owned records.
    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        with self._lock:
            self.vehicles[vehicle.id] = replace(vehicle)
        return vehicle

    def add_machine(self, machine: Machine) -> Machine:
        with self._lock:
            self.machines[machine.id] = replace(machine)
        return machine

    def add_task(self, task_id: str, machine_id: str | None = None) -> None:
        with self._lock:
            if machine_id:
                self.task_machines[task_id] = machine_id

    def add_route(self, route: Route) -> Route:
        with self._lock:
            self.routes[route.id] = _detach_route(route)
        return route

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        with self._lock:
            vehicle = self.vehicles.get(vehicle_id)
            return replace(vehicle) if vehicle else None

    def update_vehicle(self, vehicle: Vehicle) -> Vehicle:
        with self._lock:
            self.vehicles[vehicle.id] = replace(vehicle)
        return vehicle

    def find_machines(self, organization_id: str) -> list[Machine]:
        with self._lock:
            return [replace(m) for m in self.machines.values() if m.organization_id == organization_id]

    def create_trip(self, trip: Trip) -> Trip:
        with self._lock:
            self.trips[trip.id] = _detach_trip(trip)
            self.points.setdefault(trip.id, [])
        return _detach_trip(trip)

    def get_trip(self, trip_id: str) -> Trip | None:
        with self._lock:
            trip = self.trips.get(trip_id)
            return _detach_trip(trip) if trip else None

    def update_trip(self, trip: Trip) -> Trip:
        with self._lock:
            self.trips[trip.id] = _detach_trip(trip)
        return trip

    def find_active_trip(self, employee_id: str) -> Trip | None:
        with self._lock:
            for trip in self.trips.values():
                if trip.employee_id == employee_id and trip.status is TripStatus.ACTIVE:
                    return _detach_trip(trip)
        return None

    def list_trips(self, organization_id: str, filters: TripFilters | None = None) -> list[Trip]:
        filters = filters or TripFilters()
        with self._lock:
            trips = [trip for trip in self.trips.values() if trip.organization_id == organization_id]
        if filters.employee_id:
            trips = [t for t in trips if t.employee_id == filters.employee_id]
        if filters.vehicle_id:
            trips = [t for t in trips if t.vehicle_id == filters.vehicle_id]
        if filters.status:
            trips = [t for t in trips if t.status is filters.status]
        if filters.task_type:
            trips = [t for t in trips if t.task_type is filters.task_type]
        if filters.date_from:
            trips = [t for t in trips if t.started_at >= filters.date_from]
        if filters.date_to:
            trips = [t for t in trips if t.started_at <= filters.date_to]
        trips.sort(key=lambda t: t.started_at, reverse=True)
        return [_detach_trip(t) for t in trips]

    def add_point(self, point: TripPoint) -> TripPoint:
        with self._lock:
            self.points.setdefault(point.trip_id, []).append(replace(point))
        return point

    def recent_accepted_points(self, trip_id: str, limit: int) -> list[TripPoint]:
        accepted = self.accepted_points(trip_id)
        return accepted[-limit:] if limit > 0 else []

    def accepted_points(self, trip_id: str) -> list[TripPoint]:
        with self._lock:
            points = [replace(p) for p in self.points.get(trip_id, []) if not p.is_filtered]
        points.sort(key=lambda p: p.captured_at)
        return points

    def all_points(self, trip_id: str) -> list[TripPoint]:
        with self._lock:
            return [replace(p) for p in self.points.get(trip_id, [])]

    def add_stop(self, stop: TripStop) -> TripStop:
        with self._lock:
            self.stops[stop.id] = replace(stop)
        return stop

    def update_stop(self, stop: TripStop) -> TripStop:
        with self._lock:
            self.stops[stop.id] = replace(stop)
        return stop

    def list_stops(self, trip_id: str) -> list[TripStop]:
        with self._lock:
            stops = [replace(s) for s in self.stops.values() if s.trip_id == trip_id]
        stops.sort(key=lambda s: s.started_at)
        return stops

    def list_machine_stops(
        self,
        organization_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        machine_id: str | None = None,
    ) -> list[TripStop]:
        with self._lock:
            trip_ids = {trip.id for trip in self.trips.values() if trip.organization_id == organization_id}
            stops = [
                replace(s)
                for s in self.stops.values()
                if s.trip_id in trip_ids
                and s.machine_id
                and (machine_id is None or s.machine_id == machine_id)
                and (date_from is None or s.started_at >= date_from)
                and (date_to is None or s.started_at <= date_to)
            ]
        stops.sort(key=lambda s: s.started_at)
        return stops

    def add_anomaly(self, anomaly: TripAnomaly) -> TripAnomaly:
        with self._lock:
            self.anomalies[anomaly.id] = replace(anomaly)
        return anomaly

    def get_anomaly(self, anomaly_id: str) -> TripAnomaly | None:
        with self._lock:
            anomaly = self.anomalies.get(anomaly_id)
            return replace(anomaly) if anomaly else None

    def update_anomaly(self, anomaly: TripAnomaly) -> TripAnomaly:
        with self._lock:
            self.anomalies[anomaly.id] = replace(anomaly)
        return anomaly

    def list_anomalies(self, trip_id: str) -> list[TripAnomaly]:
        with self._lock:
            anomalies = [replace(a) for a in self.anomalies.values() if a.trip_id == trip_id]
        anomalies.sort(key=lambda a: a.detected_at, reverse=True)
        return anomalies

    def list_unresolved_anomalies(
        self, organization_id: str, filters: AnomalyFilters | None = None
    ) -> list[TripAnomaly]:
        filters = filters or AnomalyFilters()
        with self._lock:
            trips = {
                trip.id: trip
                for trip in self.trips.values()
                if trip.organization_id == organization_id
                and (not filters.employee_id or trip.employee_id == filters.employee_id)
            }
            anomalies = [
                replace(a)
                for a in self.anomalies.values()
                if not a.resolved
                and a.trip_id in trips
                and (filters.severity is None or a.severity is filters.severity)
                and (filters.type is None or a.type is filters.type)
            ]
        anomalies.sort(key=lambda a: a.detected_at, reverse=True)
        return anomalies[: filters.limit]

    def add_task_links(self, links: Sequence[TripTaskLink]) -> list[TripTaskLink]:
        with self._lock:
            for link in links:
                self.task_links[link.id] = replace(link)
        return list(links)

    def get_task_link(self, trip_id: str, task_id: str) -> TripTaskLink | None:
        with self._lock:
            for link in self.task_links.values():
                if link.trip_id == trip_id and link.task_id == task_id:
                    return replace(link)
        return None

    def update_task_link(self, link: TripTaskLink) -> TripTaskLink:
        with self._lock:
            self.task_links[link.id] = replace(link)
        return link

    def list_task_links(self, trip_id: str) -> list[TripTaskLink]:
        with self._lock:
            return [replace(link) for link in self.task_links.values() if link.trip_id == trip_id]

    def get_task_machine_ids(self, task_ids: Sequence[str]) -> dict[str, str]:
        with self._lock:
            return {task_id: self.task_machines[task_id] for task_id in task_ids if task_id in self.task_machines}

    def add_reconciliation(self, reconciliation: TripReconciliation) -> TripReconciliation:
        with self._lock:
            self.reconciliations.append(replace(reconciliation))
        return reconciliation

    def list_reconciliations(
        self, vehicle_id: str, organization_id: str, limit: int | None = None
    ) -> list[TripReconciliation]:
        with self._lock:
            rows = [
                replace(r)
                for r in self.reconciliations
                if r.vehicle_id == vehicle_id and r.organization_id == organization_id
            ]
        rows.sort(key=lambda r: r.performed_at, reverse=True)
        return rows[:limit] if limit is not None else rows

    def get_route(self, route_id: str) -> Route | None:
        with self._lock:
            route = self.routes.get(route_id)
            return _detach_route(route) if route else None

    def update_route_stops(self, route_id: str, stops: Sequence[RouteStop]) -> None:
        sequences = {stop.id: stop.sequence for stop in stops}
        with self._lock:
            route = self.routes.get(route_id)
            if route is None:
                return
            for stop in route.stops:
                if stop.id in sequences:
                    stop.sequence = sequences[stop.id]
