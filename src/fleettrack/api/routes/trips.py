"""Trip tracking endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ...errors import ForbiddenError
from ...models.domain import AnomalySeverity, AnomalyType, Trip, TripStatus, TripTaskType
from ...persistence.base import AnomalyFilters, TripFilters
from ...schemas.trips import (
    CancelTripRequest,
    CompleteTaskRequest,
    EmployeeTripStatsModel,
    EndTripRequest,
    GpsPointRequest,
    GpsPointsBatchRequest,
    LinkTaskRequest,
    LiveLocationRequest,
    MachineVisitStatsModel,
    ReconciliationModel,
    ReconciliationRequest,
    ResolveAnomalyRequest,
    StartTripRequest,
    TripAnomalyModel,
    TripModel,
    TripPageModel,
    TripPointModel,
    TripsSummaryModel,
    TripStopModel,
    TripTaskLinkModel,
)
from ...services.tracking.point_filter import GpsSample
from ...services.tracking.reconciliation import OdometerReconciler
from ...services.tracking.service import TripCompletion, TripService
from ..dependencies import Identity, get_identity, get_reconciler, get_trip_service

router = APIRouter(prefix="/trips", tags=["trips"])


def _sample(payload: GpsPointRequest) -> GpsSample:
    return GpsSample(
        latitude=payload.latitude,
        longitude=payload.longitude,
        captured_at=payload.recorded_at,
        accuracy=payload.accuracy,
        speed=payload.speed,
        heading=payload.heading,
        altitude=payload.altitude,
    )


def _verify_trip_access(service: TripService, trip_id: str, identity: Identity) -> Trip:
    trip = service.get_trip_by_id(trip_id)
    if trip.organization_id != identity.organization_id:
        raise ForbiddenError("Access denied to this trip")
    return trip


# Lifecycle -----------------------------------------------------------------


@router.post("/start", response_model=TripModel, status_code=status.HTTP_201_CREATED)
def start_trip(
    payload: StartTripRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripModel:
    trip = service.start_trip(
        organization_id=identity.organization_id,
        employee_id=identity.user_id,
        vehicle_id=payload.vehicle_id,
        task_type=payload.task_type,
        start_odometer=payload.start_odometer,
        task_ids=payload.task_ids,
        notes=payload.notes,
        planned_route=payload.planned_route,
        user_id=identity.user_id,
    )
    return TripModel.model_validate(trip)


@router.post("/{trip_id}/end", response_model=TripModel)
def end_trip(
    trip_id: str,
    payload: EndTripRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripModel:
    _verify_trip_access(service, trip_id, identity)
    completion = TripCompletion(end_odometer=payload.end_odometer, notes=payload.notes)
    return TripModel.model_validate(service.end_trip(trip_id, completion, identity.user_id))


@router.post("/{trip_id}/cancel", response_model=TripModel)
def cancel_trip(
    trip_id: str,
    payload: CancelTripRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripModel:
    _verify_trip_access(service, trip_id, identity)
    return TripModel.model_validate(service.cancel_trip(trip_id, payload.reason, identity.user_id))


@router.get("/active", response_model=Optional[TripModel])
def get_active_trip(
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> Optional[TripModel]:
    trip = service.get_active_trip(identity.user_id)
    return TripModel.model_validate(trip) if trip else None


@router.get("", response_model=TripPageModel)
def list_trips(
    employee_id: Optional[str] = None,
    vehicle_id: Optional[str] = None,
    trip_status: Optional[TripStatus] = Query(default=None, alias="status"),
    task_type: Optional[TripTaskType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripPageModel:
    filters = TripFilters(
        employee_id=employee_id,
        vehicle_id=vehicle_id,
        status=trip_status,
        task_type=task_type,
        date_from=date_from,
        date_to=date_to,
    )
    result = service.list_trips(identity.organization_id, filters, page=page, limit=limit)
    return TripPageModel(
        items=[TripModel.model_validate(trip) for trip in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


# Anomalies, reconciliation and analytics are declared before /{trip_id}.


@router.get("/anomalies/unresolved", response_model=List[TripAnomalyModel])
def list_unresolved_anomalies(
    employee_id: Optional[str] = None,
    severity: Optional[AnomalySeverity] = None,
    anomaly_type: Optional[AnomalyType] = Query(default=None, alias="type"),
    limit: int = Query(default=50, ge=1, le=500),
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[TripAnomalyModel]:
    filters = AnomalyFilters(employee_id=employee_id, severity=severity, type=anomaly_type, limit=limit)
    anomalies = service.anomalies.list_unresolved_anomalies(identity.organization_id, filters)
    return [TripAnomalyModel.model_validate(anomaly) for anomaly in anomalies]


@router.post("/anomalies/{anomaly_id}/resolve", response_model=TripAnomalyModel)
def resolve_anomaly(
    anomaly_id: str,
    payload: ResolveAnomalyRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripAnomalyModel:
    anomaly = service.anomalies.resolve_anomaly(
        anomaly_id, identity.user_id, identity.organization_id, payload.notes
    )
    return TripAnomalyModel.model_validate(anomaly)


@router.post("/reconciliation", response_model=ReconciliationModel, status_code=status.HTTP_201_CREATED)
def perform_reconciliation(
    payload: ReconciliationRequest,
    identity: Identity = Depends(get_identity),
    reconciler: OdometerReconciler = Depends(get_reconciler),
) -> ReconciliationModel:
    reconciliation = reconciler.perform_reconciliation(
        organization_id=identity.organization_id,
        vehicle_id=payload.vehicle_id,
        actual_odometer=payload.actual_odometer,
        performed_by_id=identity.user_id,
        notes=payload.notes,
    )
    return ReconciliationModel.model_validate(reconciliation)


@router.get("/reconciliation/{vehicle_id}/history", response_model=List[ReconciliationModel])
def reconciliation_history(
    vehicle_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    reconciler: OdometerReconciler = Depends(get_reconciler),
) -> List[ReconciliationModel]:
    rows = reconciler.get_reconciliation_history(vehicle_id, identity.organization_id, limit)
    return [ReconciliationModel.model_validate(row) for row in rows]


@router.get("/analytics/summary", response_model=TripsSummaryModel)
def trips_summary(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripsSummaryModel:
    summary = service.get_trips_summary(identity.organization_id, date_from, date_to)
    return TripsSummaryModel.model_validate(summary)


@router.get("/analytics/employee", response_model=EmployeeTripStatsModel)
def employee_stats(
    employee_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> EmployeeTripStatsModel:
    stats = service.get_employee_stats(
        identity.organization_id, employee_id or identity.user_id, date_from, date_to
    )
    return EmployeeTripStatsModel.model_validate(stats)


@router.get("/analytics/machines", response_model=List[MachineVisitStatsModel])
def machine_visit_stats(
    machine_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[MachineVisitStatsModel]:
    rows = service.get_machine_visit_stats(identity.organization_id, date_from, date_to, machine_id)
    return [MachineVisitStatsModel.model_validate(row) for row in rows]


# Single trip ---------------------------------------------------------------


@router.get("/{trip_id}", response_model=TripModel)
def get_trip(
    trip_id: str,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripModel:
    return TripModel.model_validate(_verify_trip_access(service, trip_id, identity))


@router.get("/{trip_id}/route", response_model=List[TripPointModel])
def get_trip_route(
    trip_id: str,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[TripPointModel]:
    _verify_trip_access(service, trip_id, identity)
    return [TripPointModel.model_validate(point) for point in service.get_trip_route(trip_id)]


@router.get("/{trip_id}/stops", response_model=List[TripStopModel])
def get_trip_stops(
    trip_id: str,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[TripStopModel]:
    _verify_trip_access(service, trip_id, identity)
    return [TripStopModel.model_validate(stop) for stop in service.get_trip_stops(trip_id)]


@router.get("/{trip_id}/anomalies", response_model=List[TripAnomalyModel])
def get_trip_anomalies(
    trip_id: str,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[TripAnomalyModel]:
    _verify_trip_access(service, trip_id, identity)
    return [TripAnomalyModel.model_validate(anomaly) for anomaly in service.get_trip_anomalies(trip_id)]


@router.post("/{trip_id}/points", response_model=TripPointModel, status_code=status.HTTP_201_CREATED)
def add_point(
    trip_id: str,
    payload: GpsPointRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripPointModel:
    _verify_trip_access(service, trip_id, identity)
    return TripPointModel.model_validate(service.add_point(trip_id, _sample(payload)))


@router.post("/{trip_id}/points/batch", response_model=List[TripPointModel], status_code=status.HTTP_201_CREATED)
def add_points_batch(
    trip_id: str,
    payload: GpsPointsBatchRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[TripPointModel]:
    _verify_trip_access(service, trip_id, identity)
    points = service.add_points_batch(trip_id, [_sample(point) for point in payload.points])
    return [TripPointModel.model_validate(point) for point in points]


@router.patch("/{trip_id}/live-location", response_model=TripModel)
def update_live_location(
    trip_id: str,
    payload: LiveLocationRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripModel:
    _verify_trip_access(service, trip_id, identity)
    return TripModel.model_validate(service.update_live_location(trip_id, payload.is_active))


@router.get("/{trip_id}/tasks", response_model=List[TripTaskLinkModel])
def get_trip_tasks(
    trip_id: str,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> List[TripTaskLinkModel]:
    _verify_trip_access(service, trip_id, identity)
    return [TripTaskLinkModel.model_validate(link) for link in service.get_trip_tasks(trip_id)]


@router.post("/{trip_id}/tasks", response_model=TripTaskLinkModel, status_code=status.HTTP_201_CREATED)
def link_task(
    trip_id: str,
    payload: LinkTaskRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripTaskLinkModel:
    _verify_trip_access(service, trip_id, identity)
    return TripTaskLinkModel.model_validate(service.link_task(trip_id, payload.task_id, identity.user_id))


@router.post("/{trip_id}/tasks/{task_id}/complete", response_model=TripTaskLinkModel)
def complete_linked_task(
    trip_id: str,
    task_id: str,
    payload: CompleteTaskRequest,
    identity: Identity = Depends(get_identity),
    service: TripService = Depends(get_trip_service),
) -> TripTaskLinkModel:
    _verify_trip_access(service, trip_id, identity)
    link = service.complete_linked_task(trip_id, task_id, payload.notes, identity.user_id)
    return TripTaskLinkModel.model_validate(link)
