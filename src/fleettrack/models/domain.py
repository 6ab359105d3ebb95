"""Domain models for trips, telemetry, anomalies and the vehicles they reference."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class TripStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripTaskType(str, Enum):
    FILLING = "filling"
    COLLECTION = "collection"
    REPAIR = "repair"
    MAINTENANCE = "maintenance"
    INSPECTION = "inspection"
    MERCHANDISING = "merchandising"
    MIXED = "mixed"
    OTHER = "other"


class FilterReason(str, Enum):
    LOW_ACCURACY = "LOW_ACCURACY"
    IMPLAUSIBLE_JUMP = "IMPLAUSIBLE_JUMP"
    OUT_OF_ORDER = "OUT_OF_ORDER"


class AnomalyType(str, Enum):
    SPEED_VIOLATION = "SPEED_VIOLATION"
    EXCESSIVE_IDLE = "EXCESSIVE_IDLE"
    ROUTE_DEVIATION = "ROUTE_DEVIATION"
    MILEAGE_DISCREPANCY = "MILEAGE_DISCREPANCY"
    GPS_JUMP = "GPS_JUMP"


class AnomalySeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class TaskLinkStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(slots=True)
class SpeedViolationDetails:
    speed_kmh: float
    max_allowed_kmh: float

    def to_payload(self) -> dict:
        return {"speedKmh": self.speed_kmh, "maxAllowedKmh": self.max_allowed_kmh}


@dataclass(slots=True)
class ExcessiveIdleDetails:
    idle_seconds: int
    max_idle_seconds: int
    stop_id: str

    def to_payload(self) -> dict:
        return {
            "idleSeconds": self.idle_seconds,
            "maxIdleSeconds": self.max_idle_seconds,
            "stopId": self.stop_id,
        }


@dataclass(slots=True)
class RouteDeviationDetails:
    distance_meters: float
    max_deviation_meters: float

    def to_payload(self) -> dict:
        return {
            "distanceMeters": self.distance_meters,
            "maxDeviationMeters": self.max_deviation_meters,
        }


@dataclass(slots=True)
class MileageDiscrepancyDetails:
    expected_km: float
    actual_km: float
    difference_km: float

    def to_payload(self) -> dict:
        return {
            "expectedKm": self.expected_km,
            "actualKm": self.actual_km,
            "differenceKm": self.difference_km,
        }


@dataclass(slots=True)
class GpsJumpDetails:
    previous_latitude: float
    previous_longitude: float
    distance_meters: float
    time_seconds: float

    def to_payload(self) -> dict:
        return {
            "previousPoint": {"lat": self.previous_latitude, "lng": self.previous_longitude},
            "distanceMeters": self.distance_meters,
            "timeSeconds": self.time_seconds,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "GpsJumpDetails":
        previous = payload["previousPoint"]
        return cls(
            previous_latitude=previous["lat"],
            previous_longitude=previous["lng"],
            distance_meters=payload["distanceMeters"],
            time_seconds=payload["timeSeconds"],
        )


AnomalyDetails = Union[
    SpeedViolationDetails,
    ExcessiveIdleDetails,
    RouteDeviationDetails,
    MileageDiscrepancyDetails,
    GpsJumpDetails,
]

DETAILS_BY_TYPE: dict[AnomalyType, type] = {
    AnomalyType.SPEED_VIOLATION: SpeedViolationDetails,
    AnomalyType.EXCESSIVE_IDLE: ExcessiveIdleDetails,
    AnomalyType.ROUTE_DEVIATION: RouteDeviationDetails,
    AnomalyType.MILEAGE_DISCREPANCY: MileageDiscrepancyDetails,
    AnomalyType.GPS_JUMP: GpsJumpDetails,
}

_PAYLOAD_KEYS: dict[AnomalyType, dict[str, str]] = {
    AnomalyType.SPEED_VIOLATION: {"speedKmh": "speed_kmh", "maxAllowedKmh": "max_allowed_kmh"},
    AnomalyType.EXCESSIVE_IDLE: {
        "idleSeconds": "idle_seconds",
        "maxIdleSeconds": "max_idle_seconds",
        "stopId": "stop_id",
    },
    AnomalyType.ROUTE_DEVIATION: {
        "distanceMeters": "distance_meters",
        "maxDeviationMeters": "max_deviation_meters",
    },
    AnomalyType.MILEAGE_DISCREPANCY: {
        "expectedKm": "expected_km",
        "actualKm": "actual_km",
        "differenceKm": "difference_km",
    },
}


def details_from_payload(anomaly_type: AnomalyType, payload: dict) -> AnomalyDetails:
    """Rebuild the typed details of an anomaly from its stored camelCase payload."""

    if anomaly_type is AnomalyType.GPS_JUMP:
        return GpsJumpDetails.from_payload(payload)
    keys = _PAYLOAD_KEYS[anomaly_type]
    details_cls = DETAILS_BY_TYPE[anomaly_type]
    return details_cls(**{attr: payload[key] for key, attr in keys.items()})


@dataclass(slots=True)
class Vehicle:
    id: str
    organization_id: str
    plate_number: str
    current_odometer: float = 0.0
    last_odometer_update: Optional[datetime] = None


@dataclass(slots=True)
class Machine:
    id: str
    organization_id: str
    name: str
    latitude: float
    longitude: float


@dataclass(slots=True)
class TripPoint:
    """One GPS sample. Append-only once persisted."""

    id: str
    trip_id: str
    latitude: float
    longitude: float
    captured_at: datetime
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    distance_from_prev_meters: float = 0.0
    is_filtered: bool = False
    filter_reason: Optional[FilterReason] = None


@dataclass(slots=True)
class TripStop:
    id: str
    trip_id: str
    started_at: datetime
    latitude: float
    longitude: float
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    machine_id: Optional[str] = None
    machine_name: Optional[str] = None
    distance_to_machine_meters: Optional[float] = None
    is_verified: bool = False
    idle_flagged: bool = False

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@dataclass(slots=True)
class TripAnomaly:
    id: str
    trip_id: str
    type: AnomalyType
    severity: AnomalySeverity
    details: AnomalyDetails
    detected_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    resolved: bool = False
    resolved_by_id: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None


@dataclass(slots=True)
class TripTaskLink:
    id: str
    trip_id: str
    task_id: str
    status: TaskLinkStatus = TaskLinkStatus.PENDING
    verified_by_gps: bool = False
    verified_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by_id: Optional[str] = None
    updated_by_id: Optional[str] = None


@dataclass(slots=True)
class TripReconciliation:
    """Audit row for a manual odometer correction."""

    id: str
    organization_id: str
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


@dataclass(slots=True)
class Trip:
    """Represents one technician vehicle outing and its running aggregates."""

    id: str
    organization_id: str
    employee_id: str
    started_at: datetime
    vehicle_id: Optional[str] = None
    task_type: TripTaskType = TripTaskType.OTHER
    status: TripStatus = TripStatus.ACTIVE
    ended_at: Optional[datetime] = None
    start_odometer: Optional[float] = None
    end_odometer: Optional[float] = None
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    calculated_distance_meters: float = 0.0
    total_points: int = 0
    total_stops: int = 0
    total_anomalies: int = 0
    visited_machines_count: int = 0
    live_location_active: bool = True
    last_location_update: Optional[datetime] = None
    notes: Optional[str] = None
    planned_route: list[tuple[float, float]] = field(default_factory=list)
    off_route: bool = False
    created_by_id: Optional[str] = None
    updated_by_id: Optional[str] = None
    # Relations, populated by TripService.get_trip_by_id and never persisted.
    vehicle: Optional[Vehicle] = None
    task_links: list[TripTaskLink] = field(default_factory=list)
    stops: list[TripStop] = field(default_factory=list)
    anomalies: list[TripAnomaly] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status is TripStatus.ACTIVE

    @property
    def has_start_coordinates(self) -> bool:
        return self.start_latitude is not None and self.start_longitude is not None
