"""Pydantic request/response models for trip endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.domain import (
    AnomalySeverity,
    AnomalyType,
    FilterReason,
    TaskLinkStatus,
    TripStatus,
    TripTaskType,
)


class StartTripRequest(BaseModel):
    vehicle_id: Optional[str] = None
    task_type: Optional[TripTaskType] = None
    start_odometer: Optional[float] = Field(default=None, ge=0)
    task_ids: Optional[List[str]] = Field(default=None, description="Tasks to link as pending on start.")
    notes: Optional[str] = None
    planned_route: Optional[Sequence[tuple[float, float]]] = Field(
        default=None,
        description="Planned path as (lat, lon) pairs, used for route deviation checks.",
    )


class EndTripRequest(BaseModel):
    end_odometer: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class CancelTripRequest(BaseModel):
    reason: Optional[str] = None


class GpsPointRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)
    speed: Optional[float] = Field(default=None, ge=0, description="Device speed in m/s.")
    heading: Optional[float] = Field(default=None, ge=0, le=360)
    altitude: Optional[float] = None
    recorded_at: Optional[datetime] = Field(default=None, description="Capture time; server time when omitted.")


class GpsPointsBatchRequest(BaseModel):
    points: List[GpsPointRequest] = Field(..., min_length=1)


class LiveLocationRequest(BaseModel):
    is_active: bool


class LinkTaskRequest(BaseModel):
    task_id: str


class CompleteTaskRequest(BaseModel):
    notes: Optional[str] = None


class ResolveAnomalyRequest(BaseModel):
    notes: Optional[str] = None


class ReconciliationRequest(BaseModel):
    vehicle_id: str
    actual_odometer: float = Field(..., ge=0)
    notes: Optional[str] = None


class VehicleModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plate_number: str
    current_odometer: float
    last_odometer_update: Optional[datetime] = None


class TripPointModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trip_id: str
    latitude: float
    longitude: float
    captured_at: datetime
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    distance_from_prev_meters: float
    is_filtered: bool
    filter_reason: Optional[FilterReason] = None


class TripStopModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trip_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    latitude: float
    longitude: float
    duration_seconds: Optional[int] = None
    machine_id: Optional[str] = None
    machine_name: Optional[str] = None
    distance_to_machine_meters: Optional[float] = None
    is_verified: bool


class TripAnomalyModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trip_id: str
    type: AnomalyType
    severity: AnomalySeverity
    details: dict
    detected_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    resolved: bool
    resolved_by_id: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @field_validator("details", mode="before")
    @classmethod
    def details_payload(cls, value):
        if hasattr(value, "to_payload"):
            return value.to_payload()
        return value


class TripTaskLinkModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trip_id: str
    task_id: str
    status: TaskLinkStatus
    verified_by_gps: bool = False
    verified_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class TripModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    employee_id: str
    vehicle_id: Optional[str] = None
    task_type: TripTaskType
    status: TripStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    start_odometer: Optional[float] = None
    end_odometer: Optional[float] = None
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    calculated_distance_meters: float
    total_points: int
    total_stops: int
    total_anomalies: int
    visited_machines_count: int
    live_location_active: bool
    last_location_update: Optional[datetime] = None
    notes: Optional[str] = None
    off_route: bool = False
    vehicle: Optional[VehicleModel] = None
    task_links: List[TripTaskLinkModel] = Field(default_factory=list)


class TripPageModel(BaseModel):
    items: List[TripModel]
    total: int
    page: int
    limit: int
    total_pages: int


class ReconciliationModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    vehicle_id: str
    actual_odometer: float
    expected_odometer: float
    difference_km: float
    threshold_km: float
    is_anomaly: bool
    calculated_distance_km: float
    performed_by_id: str
    performed_at: datetime
    notes: Optional[str] = None


class TripsSummaryModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_trips: int
    completed_trips: int
    cancelled_trips: int
    active_trips: int
    total_distance_km: float
    total_machines_visited: int
    total_anomalies: int
    unique_employees: int
    unique_vehicles: int


class EmployeeTripStatsModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: str
    total_trips: int
    total_distance_km: float
    total_machines_visited: int
    total_stops: int
    total_anomalies: int
    avg_duration_minutes: float


class MachineVisitStatsModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: str
    machine_name: Optional[str] = None
    visit_count: int
    total_duration_seconds: int
