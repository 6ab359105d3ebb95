"""Routing orchestration service."""

from __future__ import annotations

import logging
from typing import Sequence

from ...errors import NotFoundError, ValidationError
from ...persistence.base import TripStore
from .models import RouteOptimizationResult, RouteStop
from .optimizer import optimize_stops

logger = logging.getLogger(__name__)


class RouteOptimizationService:
    def __init__(self, store: TripStore) -> None:
        self.store = store

    def optimize(self, stops: Sequence[RouteStop]) -> RouteOptimizationResult:
        """Optimize an ad-hoc list of stops without touching storage."""
        if len({stop.id for stop in stops}) != len(stops):
            raise ValidationError("Route stop ids must be unique", field="stops")
        result = optimize_stops(stops)
        logger.info(
            f"Optimized {len(stops)} stops: {result.original_distance_km} km -> "
            f"{result.optimized_distance_km} km (optimized={result.optimized})"
        )
        return result

    def optimize_route(self, route_id: str, organization_id: str | None = None) -> RouteOptimizationResult:
        """Reorder a stored route's stops and persist the new sequence numbers."""
        route = self.store.get_route(route_id)
        if route is None or (organization_id is not None and route.organization_id != organization_id):
            raise NotFoundError("Route", route_id)

        result = optimize_stops(route.stops)
        result.route_id = route_id
        if result.optimized:
            self.store.update_route_stops(route_id, result.stops)
            logger.info(
                f"Route {route_id} re-sequenced: saved {result.estimated_savings_km} km "
                f"(~{result.estimated_savings_minutes} min)"
            )
        else:
            logger.info(f"Route {route_id} kept its original order ({len(route.stops)} stops)")
        return result
