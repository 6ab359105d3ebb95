"""Route optimization endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...schemas.routing import RouteOptimizationRequest, RouteOptimizationResponse
from ...services.routing.models import RouteStop
from ...services.routing.service import RouteOptimizationService
from ..dependencies import Identity, get_identity, get_route_service

router = APIRouter(prefix="/routes", tags=["routes"])


@router.post("/optimize", response_model=RouteOptimizationResponse, status_code=status.HTTP_200_OK)
def optimize(
    payload: RouteOptimizationRequest,
    service: RouteOptimizationService = Depends(get_route_service),
) -> RouteOptimizationResponse:
    """Optimize the visiting order of an ad-hoc list of stops."""
    stops = [RouteStop(**stop.model_dump()) for stop in payload.stops]
    return RouteOptimizationResponse.model_validate(service.optimize(stops))


@router.post("/{route_id}/optimize", response_model=RouteOptimizationResponse, status_code=status.HTTP_200_OK)
def optimize_route(
    route_id: str,
    identity: Identity = Depends(get_identity),
    service: RouteOptimizationService = Depends(get_route_service),
) -> RouteOptimizationResponse:
    """Re-sequence a stored route and persist the new order."""
    result = service.optimize_route(route_id, identity.organization_id)
    return RouteOptimizationResponse.model_validate(result)
