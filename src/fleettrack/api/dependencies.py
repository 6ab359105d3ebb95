"""Shared FastAPI dependencies: store selection, services and caller identity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Header

from ..db.supabase import get_supabase_client
from ..persistence.base import TripStore
from ..persistence.database import SupabaseTripStore
from ..persistence.memory import InMemoryTripStore
from ..services.routing.service import RouteOptimizationService
from ..services.tracking.locks import KeyedLocks
from ..services.tracking.reconciliation import OdometerReconciler
from ..services.tracking.service import TripService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Identity:
    organization_id: str
    user_id: str


def get_identity(
    x_organization_id: str = Header(..., alias="X-Organization-Id"),
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> Identity:
    return Identity(organization_id=x_organization_id, user_id=x_user_id)


@lru_cache()
def get_trip_store() -> TripStore:
    client = get_supabase_client()
    if client is None:
        return InMemoryTripStore()
    logger.info("Using Supabase trip store")
    return SupabaseTripStore(client)


@lru_cache()
def get_vehicle_locks() -> KeyedLocks:
    return KeyedLocks()


@lru_cache()
def get_trip_service() -> TripService:
    return TripService(get_trip_store(), vehicle_locks=get_vehicle_locks())


@lru_cache()
def get_reconciler() -> OdometerReconciler:
    return OdometerReconciler(get_trip_store(), vehicle_locks=get_vehicle_locks())


@lru_cache()
def get_route_service() -> RouteOptimizationService:
    return RouteOptimizationService(get_trip_store())
