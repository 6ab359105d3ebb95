"""Storage contract for trip tracking records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ..models.domain import (
    AnomalySeverity,
    AnomalyType,
    Machine,
    Trip,
    TripAnomaly,
    TripPoint,
    TripReconciliation,
    TripStatus,
    TripStop,
    TripTaskLink,
    TripTaskType,
    Vehicle,
)
from ..services.routing.models import Route, RouteStop


@dataclass(slots=True)
class TripFilters:
    employee_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    status: Optional[TripStatus] = None
    task_type: Optional[TripTaskType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


@dataclass(slots=True)
class AnomalyFilters:
    employee_id: Optional[str] = None
    severity: Optional[AnomalySeverity] = None
    type: Optional[AnomalyType] = None
    limit: int = 50


class TripStore(ABC):
    """Create/find/update access to the durable store.

    Implementations return detached copies: mutating a returned record has no
    effect until it is passed back through an ``update_*`` call.
    """

    # Vehicles and machines are owned by other services.
    @abstractmethod
    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        raise NotImplementedError

    @abstractmethod
    def update_vehicle(self, vehicle: Vehicle) -> Vehicle:
        raise NotImplementedError

    @abstractmethod
    def find_machines(self, organization_id: str) -> list[Machine]:
        raise NotImplementedError

    # Trips
    @abstractmethod
    def create_trip(self, trip: Trip) -> Trip:
        raise NotImplementedError

    @abstractmethod
    def get_trip(self, trip_id: str) -> Trip | None:
        raise NotImplementedError

    @abstractmethod
    def update_trip(self, trip: Trip) -> Trip:
        raise NotImplementedError

    @abstractmethod
    def find_active_trip(self, employee_id: str) -> Trip | None:
        raise NotImplementedError

    @abstractmethod
    def list_trips(self, organization_id: str, filters: TripFilters | None = None) -> list[Trip]:
        """Trips of an organization matching ``filters``, newest ``started_at`` first."""
        raise NotImplementedError

    # Points
    @abstractmethod
    def add_point(self, point: TripPoint) -> TripPoint:
        raise NotImplementedError

    @abstractmethod
    def recent_accepted_points(self, trip_id: str, limit: int) -> list[TripPoint]:
        """Up to ``limit`` most recent unfiltered points, in chronological order."""
        raise NotImplementedError

    @abstractmethod
    def accepted_points(self, trip_id: str) -> list[TripPoint]:
        raise NotImplementedError

    def last_accepted_point(self, trip_id: str) -> TripPoint | None:
        points = self.recent_accepted_points(trip_id, 1)
        return points[-1] if points else None

    # Stops
    @abstractmethod
    def add_stop(self, stop: TripStop) -> TripStop:
        raise NotImplementedError

    @abstractmethod
    def update_stop(self, stop: TripStop) -> TripStop:
        raise NotImplementedError

    @abstractmethod
    def list_stops(self, trip_id: str) -> list[TripStop]:
        raise NotImplementedError

    def open_stop(self, trip_id: str) -> TripStop | None:
        for stop in self.list_stops(trip_id):
            if stop.is_open:
                return stop
        return None

    def last_closed_stop(self, trip_id: str) -> TripStop | None:
        closed = [stop for stop in self.list_stops(trip_id) if not stop.is_open]
        return max(closed, key=lambda stop: stop.ended_at) if closed else None

    @abstractmethod
    def list_machine_stops(
        self,
        organization_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        machine_id: str | None = None,
    ) -> list[TripStop]:
        """Stops at a known machine across the organization's trips, filtered on ``started_at``."""
        raise NotImplementedError

    # Anomalies
    @abstractmethod
    def add_anomaly(self, anomaly: TripAnomaly) -> TripAnomaly:
        raise NotImplementedError

    @abstractmethod
    def get_anomaly(self, anomaly_id: str) -> TripAnomaly | None:
        raise NotImplementedError

    @abstractmethod
    def update_anomaly(self, anomaly: TripAnomaly) -> TripAnomaly:
        raise NotImplementedError

    @abstractmethod
    def list_anomalies(self, trip_id: str) -> list[TripAnomaly]:
        """Anomalies of a trip, newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_unresolved_anomalies(
        self, organization_id: str, filters: AnomalyFilters | None = None
    ) -> list[TripAnomaly]:
        raise NotImplementedError

    # Task links
    @abstractmethod
    def add_task_links(self, links: Sequence[TripTaskLink]) -> list[TripTaskLink]:
        raise NotImplementedError

    @abstractmethod
    def get_task_link(self, trip_id: str, task_id: str) -> TripTaskLink | None:
        raise NotImplementedError

    @abstractmethod
    def update_task_link(self, link: TripTaskLink) -> TripTaskLink:
        raise NotImplementedError

    @abstractmethod
    def list_task_links(self, trip_id: str) -> list[TripTaskLink]:
        raise NotImplementedError

    @abstractmethod
    def get_task_machine_ids(self, task_ids: Sequence[str]) -> dict[str, str]:
        """Machine assigned to each task, for the tasks that have one. Tasks are owned elsewhere."""
        raise NotImplementedError

    # Reconciliations
    @abstractmethod
    def add_reconciliation(self, reconciliation: TripReconciliation) -> TripReconciliation:
        raise NotImplementedError

    @abstractmethod
    def list_reconciliations(
        self, vehicle_id: str, organization_id: str, limit: int | None = None
    ) -> list[TripReconciliation]:
        """Reconciliations of a vehicle, newest ``performed_at`` first."""
        raise NotImplementedError

    # Routes
    @abstractmethod
    def get_route(self, route_id: str) -> Route | None:
        raise NotImplementedError

    @abstractmethod
    def update_route_stops(self, route_id: str, stops: Sequence[RouteStop]) -> None:
        """Persist the ``sequence`` of each stop; other stop fields are left alone."""
        raise NotImplementedError
