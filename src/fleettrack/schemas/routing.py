"""Route optimization request/response schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RouteStopInput(BaseModel):
    id: str
    sequence: int = Field(..., ge=1)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    status: str = "pending"
    machine_id: Optional[str] = None


class RouteOptimizationRequest(BaseModel):
    stops: List[RouteStopInput] = Field(..., description="Stops in their current visiting order.")


class RouteStopModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: str
    machine_id: Optional[str] = None


class RouteOptimizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    route_id: Optional[str] = None
    optimized: bool
    original_distance_km: float
    optimized_distance_km: float
    estimated_savings_km: float
    estimated_savings_minutes: float
    stops: List[RouteStopModel]
