"""Trip lifecycle orchestration: start, GPS ingestion, stops, anomalies, end."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from ...config import settings
from ...errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ...models.domain import (
    TaskLinkStatus,
    Trip,
    TripPoint,
    TripStatus,
    TripStop,
    TripTaskLink,
    TripTaskType,
)
from ...persistence.base import TripFilters, TripStore
from .analytics import (
    EmployeeTripStats,
    MachineVisitStats,
    TripsSummary,
    employee_stats,
    machine_visit_stats,
    summarize_trips,
)
from .anomalies import (
    AnomalyDraft,
    AnomalyService,
    check_gps_jump,
    check_idle,
    check_mileage,
    check_route_deviation,
    check_speed,
)
from .locks import KeyedLocks
from .point_filter import GpsSample, classify_point, validate_sample
from .stops import StopAction, StopDetector, nearest_machine

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


@dataclass(slots=True)
class TripCompletion:
    end_odometer: Optional[float] = None
    notes: Optional[str] = None


@dataclass(slots=True)
class TripPage:
    items: list[Trip]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class TripService:
    """Owns the trip state machine ``active -> completed | cancelled``.

    Writes to one trip are serialized through a per-trip lock; trip starts are
    serialized per employee so that two concurrent starts cannot both succeed.
    """

    def __init__(
        self,
        store: TripStore,
        *,
        anomalies: AnomalyService | None = None,
        stop_detector: StopDetector | None = None,
        trip_locks: KeyedLocks | None = None,
        employee_locks: KeyedLocks | None = None,
        vehicle_locks: KeyedLocks | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.anomalies = anomalies or AnomalyService(store)
        self.stop_detector = stop_detector or StopDetector()
        self.trip_locks = trip_locks or KeyedLocks()
        self.employee_locks = employee_locks or KeyedLocks()
        self.vehicle_locks = vehicle_locks or KeyedLocks()
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_trip(
        self,
        *,
        organization_id: str,
        employee_id: str,
        vehicle_id: str | None = None,
        task_type: TripTaskType | None = None,
        start_odometer: float | None = None,
        task_ids: Sequence[str] | None = None,
        notes: str | None = None,
        planned_route: Sequence[tuple[float, float]] | None = None,
        user_id: str | None = None,
    ) -> Trip:
        if start_odometer is not None and start_odometer < 0:
            raise ValidationError("start_odometer must be >= 0", field="start_odometer")

        with self.employee_locks.hold(employee_id):
            if self.store.find_active_trip(employee_id) is not None:
                raise ConflictError(
                    "Employee already has an active trip. End it before starting a new one."
                )

            if vehicle_id:
                vehicle = self.store.get_vehicle(vehicle_id)
                if vehicle is None or vehicle.organization_id != organization_id:
                    raise NotFoundError("Vehicle", vehicle_id)

            trip = Trip(
                id=str(uuid.uuid4()),
                organization_id=organization_id,
                employee_id=employee_id,
                started_at=self.clock(),
                vehicle_id=vehicle_id,
                task_type=task_type or TripTaskType.OTHER,
                start_odometer=start_odometer,
                notes=notes,
                planned_route=[(float(lat), float(lon)) for lat, lon in (planned_route or [])],
                created_by_id=user_id,
            )
            self.store.create_trip(trip)

            if task_ids:
                links = [
                    TripTaskLink(
                        id=str(uuid.uuid4()),
                        trip_id=trip.id,
                        task_id=task_id,
                        created_by_id=user_id,
                    )
                    for task_id in dict.fromkeys(task_ids)
                ]
                self.store.add_task_links(links)

        logger.info(
            f"Trip {trip.id} started for employee {employee_id} "
            f"(vehicle={vehicle_id}, task_type={trip.task_type.value}, tasks={len(task_ids or [])})"
        )
        return self.get_trip_by_id(trip.id)

    def end_trip(
        self,
        trip_id: str,
        completion: TripCompletion | None = None,
        user_id: str | None = None,
    ) -> Trip:
        completion = completion or TripCompletion()
        with self.trip_locks.hold(trip_id):
            trip = self._require_trip(trip_id)
            if not trip.is_active:
                raise InvalidStateError("Trip is not active")

            end_odometer = completion.end_odometer
            if end_odometer is not None:
                if end_odometer < 0:
                    raise ValidationError("end_odometer must be >= 0", field="end_odometer")
                if trip.start_odometer is not None and end_odometer < trip.start_odometer:
                    raise ValidationError(
                        f"end_odometer {end_odometer} is lower than start_odometer {trip.start_odometer}",
                        field="end_odometer",
                    )

            now = self.clock()
            open_stop = self.store.open_stop(trip_id)
            if open_stop is not None:
                self._close_stop(trip, open_stop, now)

            last_point = self.store.last_accepted_point(trip_id)
            stops = self.store.list_stops(trip_id)
            visited = {stop.machine_id for stop in stops if stop.machine_id}

            mileage = check_mileage(trip, end_odometer)
            if mileage is not None:
                self.anomalies.create_anomaly(trip, mileage, detected_at=now)

            trip.status = TripStatus.COMPLETED
            trip.ended_at = now
            trip.end_odometer = end_odometer
            trip.end_latitude = last_point.latitude if last_point else None
            trip.end_longitude = last_point.longitude if last_point else None
            trip.visited_machines_count = len(visited)
            trip.live_location_active = False
            trip.updated_by_id = user_id
            if completion.notes:
                trip.notes = _append_note(trip.notes, completion.notes)
            self.store.update_trip(trip)

        if trip.vehicle_id and end_odometer is not None:
            with self.vehicle_locks.hold(trip.vehicle_id):
                vehicle = self.store.get_vehicle(trip.vehicle_id)
                if vehicle is not None:
                    vehicle.current_odometer = end_odometer
                    vehicle.last_odometer_update = now
                    self.store.update_vehicle(vehicle)

        logger.info(
            f"Trip {trip_id} completed: {trip.calculated_distance_meters:.0f} m, "
            f"{trip.total_points} points, {trip.total_stops} stops, {trip.total_anomalies} anomalies"
        )
        return self.get_trip_by_id(trip_id)

    def cancel_trip(self, trip_id: str, reason: str | None = None, user_id: str | None = None) -> Trip:
        with self.trip_locks.hold(trip_id):
            trip = self._require_trip(trip_id)
            if not trip.is_active:
                raise InvalidStateError("Only active trips can be cancelled")

            now = self.clock()
            open_stop = self.store.open_stop(trip_id)
            if open_stop is not None:
                self._close_stop(trip, open_stop, now)

            trip.status = TripStatus.CANCELLED
            trip.ended_at = now
            trip.live_location_active = False
            trip.updated_by_id = user_id
            if reason:
                trip.notes = _append_note(trip.notes, f"[Cancelled: {reason}]")
            self.store.update_trip(trip)

        logger.info(f"Trip {trip_id} cancelled by {user_id}: {reason or 'no reason given'}")
        return self.get_trip_by_id(trip_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_active_trip(self, employee_id: str) -> Trip | None:
        trip = self.store.find_active_trip(employee_id)
        if trip is None:
            return None
        return self._load_relations(trip)

    def get_trip_by_id(self, trip_id: str) -> Trip:
        return self._load_relations(self._require_trip(trip_id))

    def list_trips(
        self,
        organization_id: str,
        filters: TripFilters | None = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> TripPage:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be >= 1", field="page")
        trips = self.store.list_trips(organization_id, filters)
        start = (page - 1) * limit
        return TripPage(items=trips[start : start + limit], total=len(trips), page=page, limit=limit)

    def get_trip_route(self, trip_id: str) -> list[TripPoint]:
        self._require_trip(trip_id)
        return self.store.accepted_points(trip_id)

    def get_trip_stops(self, trip_id: str) -> list[TripStop]:
        self._require_trip(trip_id)
        return self.store.list_stops(trip_id)

    def get_trip_anomalies(self, trip_id: str):
        self._require_trip(trip_id)
        return self.anomalies.get_trip_anomalies(trip_id)

    def get_trip_tasks(self, trip_id: str) -> list[TripTaskLink]:
        self._require_trip(trip_id)
        return self.store.list_task_links(trip_id)

    # ------------------------------------------------------------------
    # GPS ingestion
    # ------------------------------------------------------------------

    def add_point(self, trip_id: str, sample: GpsSample) -> TripPoint:
        with self.trip_locks.hold(trip_id):
            return self._add_point(trip_id, sample)

    def add_points_batch(self, trip_id: str, samples: Sequence[GpsSample]) -> list[TripPoint]:
        with self.trip_locks.hold(trip_id):
            return [self._add_point(trip_id, sample) for sample in samples]

    def update_live_location(self, trip_id: str, is_active: bool) -> Trip:
        with self.trip_locks.hold(trip_id):
            trip = self._require_trip(trip_id)
            if not trip.is_active:
                raise InvalidStateError("Live location can only be changed on an active trip")
            trip.live_location_active = is_active
            trip.last_location_update = self.clock()
            return self.store.update_trip(trip)

    def _add_point(self, trip_id: str, sample: GpsSample) -> TripPoint:
        trip = self._require_trip(trip_id)
        if not trip.is_active:
            raise InvalidStateError("Cannot add points to a non-active trip")
        validate_sample(sample)

        captured_at = as_utc(sample.captured_at) or self.clock()
        previous = self.store.last_accepted_point(trip_id)
        verdict = classify_point(sample, captured_at, previous)

        point = TripPoint(
            id=str(uuid.uuid4()),
            trip_id=trip_id,
            latitude=sample.latitude,
            longitude=sample.longitude,
            captured_at=captured_at,
            accuracy=sample.accuracy,
            speed=sample.speed,
            heading=sample.heading,
            altitude=sample.altitude,
            distance_from_prev_meters=verdict.distance_from_prev_m,
            is_filtered=verdict.is_filtered,
            filter_reason=verdict.reason,
        )
        self.store.add_point(point)

        if verdict.is_filtered:
            logger.debug(f"Point {point.id} on trip {trip_id} filtered: {verdict.reason.value}")
            jump = check_gps_jump(point, previous)
            if jump is not None:
                self.anomalies.create_anomaly(trip, jump, detected_at=captured_at)
                self.store.update_trip(trip)
            return point

        if previous is None and not trip.has_start_coordinates:
            trip.start_latitude = point.latitude
            trip.start_longitude = point.longitude

        trip.calculated_distance_meters += verdict.distance_from_prev_m
        trip.total_points += 1
        trip.last_location_update = captured_at

        open_stop = self._detect_stop(trip, point)
        self._evaluate_anomalies(trip, point, verdict.implied_speed_kmh, open_stop)

        self.store.update_trip(trip)
        return point

    # ------------------------------------------------------------------
    # Stops and anomalies
    # ------------------------------------------------------------------

    def _detect_stop(self, trip: Trip, point: TripPoint) -> TripStop | None:
        """Run the stop detector and return the stop that is open afterwards."""
        history = self.store.recent_accepted_points(trip.id, settings.stop_window_points)
        open_stop = self.store.open_stop(trip.id)
        after = None
        if open_stop is None:
            last_closed = self.store.last_closed_stop(trip.id)
            after = last_closed.ended_at if last_closed else None
        decision = self.stop_detector.evaluate(history, open_stop, after)

        if decision.action is StopAction.CLOSE and open_stop is not None:
            self._close_stop(trip, open_stop, point.captured_at)
            return None

        if decision.action is StopAction.OPEN:
            stop = TripStop(
                id=str(uuid.uuid4()),
                trip_id=trip.id,
                started_at=decision.cluster[0].captured_at,
                latitude=decision.latitude,
                longitude=decision.longitude,
            )
            match = nearest_machine(stop.latitude, stop.longitude, self.store.find_machines(trip.organization_id))
            if match is not None and match.within_geofence:
                stop.machine_id = match.machine.id
                stop.machine_name = match.machine.name
                stop.distance_to_machine_meters = round(match.distance_m, 1)
                stop.is_verified = True
            self.store.add_stop(stop)
            logger.info(f"Stop {stop.id} opened on trip {trip.id} at ({stop.latitude:.5f}, {stop.longitude:.5f})")
            if stop.machine_id:
                self._verify_tasks_at_machine(trip.id, stop.machine_id, point.captured_at)
            return stop

        return open_stop

    def _verify_tasks_at_machine(self, trip_id: str, machine_id: str, verified_at: datetime) -> None:
        """Move pending tasks for ``machine_id`` to in progress once the trip stops there."""
        pending = [link for link in self.store.list_task_links(trip_id) if link.status is TaskLinkStatus.PENDING]
        if not pending:
            return
        machines = self.store.get_task_machine_ids([link.task_id for link in pending])
        for link in pending:
            if machines.get(link.task_id) != machine_id:
                continue
            link.status = TaskLinkStatus.IN_PROGRESS
            link.verified_by_gps = True
            link.verified_at = verified_at
            link.started_at = verified_at
            self.store.update_task_link(link)
            logger.info(f"Task {link.task_id} on trip {trip_id} verified by GPS at machine {machine_id}")

    def _close_stop(self, trip: Trip, stop: TripStop, ended_at: datetime) -> None:
        stop.ended_at = ended_at
        stop.duration_seconds = max(0, int((ended_at - stop.started_at).total_seconds()))
        self.store.update_stop(stop)
        trip.total_stops += 1

    def _evaluate_anomalies(
        self,
        trip: Trip,
        point: TripPoint,
        implied_speed_kmh: float | None,
        open_stop: TripStop | None,
    ) -> None:
        drafts: list[AnomalyDraft] = []

        speed = check_speed(trip, point, implied_speed_kmh)
        if speed is not None:
            drafts.append(speed)

        idle = check_idle(open_stop, point.captured_at)
        if idle is not None and open_stop is not None:
            open_stop.idle_flagged = True
            self.store.update_stop(open_stop)
            drafts.append(idle)

        deviation = check_route_deviation(trip, point)
        if deviation is not None:
            trip.off_route = deviation.off_route
            if deviation.draft is not None:
                drafts.append(deviation.draft)

        for draft in drafts:
            self.anomalies.create_anomaly(trip, draft, detected_at=point.captured_at)

    # ------------------------------------------------------------------
    # Task links
    # ------------------------------------------------------------------

    def link_task(self, trip_id: str, task_id: str, user_id: str | None = None) -> TripTaskLink:
        with self.trip_locks.hold(trip_id):
            trip = self._require_trip(trip_id)
            if not trip.is_active:
                raise InvalidStateError("Tasks can only be linked to an active trip")
            if self.store.get_task_link(trip_id, task_id) is not None:
                raise ConflictError("Task is already linked to this trip")
            link = TripTaskLink(
                id=str(uuid.uuid4()),
                trip_id=trip_id,
                task_id=task_id,
                status=TaskLinkStatus.PENDING,
                created_by_id=user_id,
            )
            self.store.add_task_links([link])
        return link

    def complete_linked_task(
        self,
        trip_id: str,
        task_id: str,
        notes: str | None = None,
        user_id: str | None = None,
    ) -> TripTaskLink:
        with self.trip_locks.hold(trip_id):
            link = self.store.get_task_link(trip_id, task_id)
            if link is None:
                raise NotFoundError("Task link", f"{trip_id}/{task_id}")
            link.status = TaskLinkStatus.COMPLETED
            link.completed_at = self.clock()
            link.notes = notes
            link.updated_by_id = user_id
            return self.store.update_task_link(link)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_trips_summary(
        self,
        organization_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> TripsSummary:
        filters = TripFilters(date_from=as_utc(date_from), date_to=as_utc(date_to))
        return summarize_trips(self.store.list_trips(organization_id, filters))

    def get_employee_stats(
        self,
        organization_id: str,
        employee_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> EmployeeTripStats:
        filters = TripFilters(
            employee_id=employee_id,
            status=TripStatus.COMPLETED,
            date_from=as_utc(date_from),
            date_to=as_utc(date_to),
        )
        return employee_stats(employee_id, self.store.list_trips(organization_id, filters))

    def get_machine_visit_stats(
        self,
        organization_id: str,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        machine_id: str | None = None,
    ) -> list[MachineVisitStats]:
        stops = self.store.list_machine_stops(organization_id, as_utc(date_from), as_utc(date_to), machine_id)
        return machine_visit_stats(stops)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_trip(self, trip_id: str) -> Trip:
        trip = self.store.get_trip(trip_id)
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        return trip

    def _load_relations(self, trip: Trip) -> Trip:
        trip.vehicle = self.store.get_vehicle(trip.vehicle_id) if trip.vehicle_id else None
        trip.task_links = self.store.list_task_links(trip.id)
        trip.stops = self.store.list_stops(trip.id)
        trip.anomalies = self.store.list_anomalies(trip.id)
        return trip
