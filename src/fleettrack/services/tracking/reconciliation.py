"""Odometer reconciliation against the vehicle's recorded reading."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from ...config import settings
from ...errors import NotFoundError, ValidationError
from ...models.domain import TripReconciliation, TripStatus
from ...persistence.base import TripFilters, TripStore
from .locks import KeyedLocks
from .service import Clock, utc_now

logger = logging.getLogger(__name__)


class OdometerReconciler:
    def __init__(
        self,
        store: TripStore,
        *,
        vehicle_locks: KeyedLocks | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.vehicle_locks = vehicle_locks or KeyedLocks()
        self.clock = clock or utc_now

    def perform_reconciliation(
        self,
        organization_id: str,
        vehicle_id: str,
        actual_odometer: float,
        performed_by_id: str,
        notes: str | None = None,
    ) -> TripReconciliation:
        """Record a manual odometer reading and make it the vehicle's current one.

        The audit row keeps the previous reading as ``expected_odometer`` and the
        GPS distance of completed trips since the last reconciliation. Trip
        records are left untouched.
        """
        if actual_odometer < 0:
            raise ValidationError("actual_odometer must be >= 0", field="actual_odometer")

        with self.vehicle_locks.hold(vehicle_id):
            vehicle = self.store.get_vehicle(vehicle_id)
            if vehicle is None or vehicle.organization_id != organization_id:
                raise NotFoundError("Vehicle", vehicle_id)

            now = self.clock()
            previous = self.store.list_reconciliations(vehicle_id, organization_id, limit=1)
            since = previous[0].performed_at if previous else None

            expected = vehicle.current_odometer
            difference = abs(actual_odometer - expected)
            threshold = settings.mileage_threshold_km
            reconciliation = TripReconciliation(
                id=str(uuid.uuid4()),
                organization_id=organization_id,
                vehicle_id=vehicle_id,
                actual_odometer=actual_odometer,
                expected_odometer=expected,
                difference_km=round(difference, 2),
                threshold_km=threshold,
                is_anomaly=difference > threshold,
                calculated_distance_km=self._distance_since(organization_id, vehicle_id, since),
                performed_by_id=performed_by_id,
                performed_at=now,
                notes=notes,
            )
            self.store.add_reconciliation(reconciliation)

            vehicle.current_odometer = actual_odometer
            vehicle.last_odometer_update = now
            self.store.update_vehicle(vehicle)

        if reconciliation.is_anomaly:
            logger.warning(
                f"Odometer reconciliation for vehicle {vehicle_id} differs by "
                f"{reconciliation.difference_km} km (threshold {threshold} km)"
            )
        else:
            logger.info(f"Odometer reconciled for vehicle {vehicle_id}: {actual_odometer} km")
        return reconciliation

    def get_reconciliation_history(
        self,
        vehicle_id: str,
        organization_id: str,
        limit: int = 10,
    ) -> list[TripReconciliation]:
        return self.store.list_reconciliations(vehicle_id, organization_id, limit=limit)

    def _distance_since(self, organization_id: str, vehicle_id: str, since: datetime | None) -> float:
        trips = self.store.list_trips(
            organization_id,
            TripFilters(vehicle_id=vehicle_id, status=TripStatus.COMPLETED),
        )
        meters = sum(
            trip.calculated_distance_meters
            for trip in trips
            if since is None or (trip.ended_at is not None and trip.ended_at > since)
        )
        return round(meters / 1000, 2)
