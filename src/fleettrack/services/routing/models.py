"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class RouteStop:
    id: str
    sequence: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: str = "pending"
    machine_id: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class Route:
    id: str
    organization_id: str
    name: str = ""
    stops: List[RouteStop] = field(default_factory=list)


@dataclass(slots=True)
class RouteOptimizationResult:
    stops: List[RouteStop]
    optimized: bool
    original_distance_km: float
    optimized_distance_km: float
    estimated_savings_km: float
    estimated_savings_minutes: float
    route_id: Optional[str] = None
