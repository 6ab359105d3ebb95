"""Anomaly rules and anomaly bookkeeping for trips."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ...config import settings
from ...errors import ForbiddenError, NotFoundError
from ...models.domain import (
    AnomalyDetails,
    AnomalySeverity,
    AnomalyType,
    ExcessiveIdleDetails,
    FilterReason,
    GpsJumpDetails,
    MileageDiscrepancyDetails,
    RouteDeviationDetails,
    SpeedViolationDetails,
    Trip,
    TripAnomaly,
    TripPoint,
    TripStop,
)
from ...persistence.base import AnomalyFilters, TripStore
from ..geospatial import distance_to_path_m, haversine_m

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AnomalyDraft:
    type: AnomalyType
    severity: AnomalySeverity
    details: AnomalyDetails
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(slots=True)
class DeviationCheck:
    distance_m: float
    off_route: bool
    draft: AnomalyDraft | None = None


def check_speed(
    trip: Trip,
    point: TripPoint,
    implied_speed_kmh: float | None,
) -> AnomalyDraft | None:
    """Speed ceiling per task type.

    The device-reported speed (m/s) wins when present; otherwise the speed
    implied by the hop from the previous accepted point is used. A hop with
    no elapsed time carries no usable speed.
    """
    if point.speed is not None:
        speed_kmh = point.speed * 3.6
    elif implied_speed_kmh is not None and math.isfinite(implied_speed_kmh):
        speed_kmh = implied_speed_kmh
    else:
        return None

    limit = settings.speed_limit_for(trip.task_type.value)
    if speed_kmh <= limit:
        return None
    return AnomalyDraft(
        type=AnomalyType.SPEED_VIOLATION,
        severity=AnomalySeverity.WARNING,
        details=SpeedViolationDetails(speed_kmh=round(speed_kmh), max_allowed_kmh=limit),
        latitude=point.latitude,
        longitude=point.longitude,
    )


def check_idle(open_stop: TripStop | None, now: datetime, max_idle_seconds: int | None = None) -> AnomalyDraft | None:
    """Flag a stop that has stayed open for too long, once per stop."""
    if open_stop is None or open_stop.idle_flagged:
        return None
    max_idle_seconds = settings.max_idle_seconds if max_idle_seconds is None else max_idle_seconds
    idle_seconds = int((now - open_stop.started_at).total_seconds())
    if idle_seconds <= max_idle_seconds:
        return None
    return AnomalyDraft(
        type=AnomalyType.EXCESSIVE_IDLE,
        severity=AnomalySeverity.WARNING,
        details=ExcessiveIdleDetails(
            idle_seconds=idle_seconds,
            max_idle_seconds=max_idle_seconds,
            stop_id=open_stop.id,
        ),
        latitude=open_stop.latitude,
        longitude=open_stop.longitude,
    )


def check_route_deviation(
    trip: Trip,
    point: TripPoint,
    max_deviation_m: float | None = None,
) -> DeviationCheck | None:
    """Compare a point with the trip's planned route corridor.

    Only the transition from on-route to off-route produces an anomaly; the
    rule re-arms once the trip is back inside the corridor.
    """
    if not trip.planned_route:
        return None
    max_deviation_m = settings.route_deviation_m if max_deviation_m is None else max_deviation_m
    distance = distance_to_path_m(point.latitude, point.longitude, trip.planned_route)
    off_route = distance > max_deviation_m
    draft = None
    if off_route and not trip.off_route:
        draft = AnomalyDraft(
            type=AnomalyType.ROUTE_DEVIATION,
            severity=AnomalySeverity.WARNING,
            details=RouteDeviationDetails(
                distance_meters=round(distance, 1),
                max_deviation_meters=max_deviation_m,
            ),
            latitude=point.latitude,
            longitude=point.longitude,
        )
    return DeviationCheck(distance_m=distance, off_route=off_route, draft=draft)


def check_gps_jump(point: TripPoint, previous: TripPoint | None) -> AnomalyDraft | None:
    """Record a point rejected as an implausible jump, for the audit trail."""
    if previous is None or point.filter_reason is not FilterReason.IMPLAUSIBLE_JUMP:
        return None
    distance = haversine_m(previous.latitude, previous.longitude, point.latitude, point.longitude)
    elapsed = (point.captured_at - previous.captured_at).total_seconds()
    return AnomalyDraft(
        type=AnomalyType.GPS_JUMP,
        severity=AnomalySeverity.INFO,
        details=GpsJumpDetails(
            previous_latitude=previous.latitude,
            previous_longitude=previous.longitude,
            distance_meters=round(distance, 1),
            time_seconds=elapsed,
        ),
        latitude=point.latitude,
        longitude=point.longitude,
    )


def check_mileage(
    trip: Trip,
    end_odometer: float | None,
    threshold_km: float | None = None,
) -> AnomalyDraft | None:
    """Compare the odometer delta reported at trip end with the GPS distance."""
    if trip.vehicle_id is None or trip.start_odometer is None or end_odometer is None:
        return None
    threshold_km = settings.mileage_threshold_km if threshold_km is None else threshold_km
    reported_km = end_odometer - trip.start_odometer
    calculated_km = round(trip.calculated_distance_meters / 1000, 2)
    difference = abs(reported_km - calculated_km)
    if difference <= threshold_km:
        return None
    return AnomalyDraft(
        type=AnomalyType.MILEAGE_DISCREPANCY,
        severity=AnomalySeverity.WARNING,
        details=MileageDiscrepancyDetails(
            expected_km=calculated_km,
            actual_km=reported_km,
            difference_km=round(difference, 2),
        ),
    )


class AnomalyService:
    """Persists anomalies and handles operator resolution."""

    def __init__(self, store: TripStore) -> None:
        self.store = store

    def create_anomaly(self, trip: Trip, draft: AnomalyDraft, detected_at: datetime | None = None) -> TripAnomaly:
        """Persist ``draft`` and bump ``trip.total_anomalies``; the caller saves the trip."""
        anomaly = TripAnomaly(
            id=str(uuid.uuid4()),
            trip_id=trip.id,
            type=draft.type,
            severity=draft.severity,
            details=draft.details,
            detected_at=detected_at or datetime.now(timezone.utc),
            latitude=draft.latitude,
            longitude=draft.longitude,
        )
        self.store.add_anomaly(anomaly)
        trip.total_anomalies += 1
        logger.warning(
            f"Anomaly {anomaly.type.value} ({anomaly.severity.value}) on trip {trip.id}: "
            f"{anomaly.details.to_payload()}"
        )
        return anomaly

    def get_trip_anomalies(self, trip_id: str) -> list[TripAnomaly]:
        return self.store.list_anomalies(trip_id)

    def resolve_anomaly(
        self,
        anomaly_id: str,
        user_id: str,
        organization_id: str,
        notes: str | None = None,
    ) -> TripAnomaly:
        """Mark an anomaly resolved.

        Resolving an already resolved anomaly is allowed and overwrites the
        resolution metadata.
        """
        anomaly = self.store.get_anomaly(anomaly_id)
        if anomaly is None:
            raise NotFoundError("Anomaly", anomaly_id)

        trip = self.store.get_trip(anomaly.trip_id)
        if trip is None:
            raise NotFoundError("Trip", anomaly.trip_id)
        if trip.organization_id != organization_id:
            raise ForbiddenError("Access denied to this anomaly")

        if anomaly.resolved:
            logger.info(f"Anomaly {anomaly_id} already resolved; overwriting resolution by {user_id}")

        anomaly.resolved = True
        anomaly.resolved_by_id = user_id
        anomaly.resolution_notes = notes
        anomaly.resolved_at = datetime.now(timezone.utc)
        return self.store.update_anomaly(anomaly)

    def list_unresolved_anomalies(
        self,
        organization_id: str,
        filters: AnomalyFilters | None = None,
    ) -> list[TripAnomaly]:
        return self.store.list_unresolved_anomalies(organization_id, filters)
