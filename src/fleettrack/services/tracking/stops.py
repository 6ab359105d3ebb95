"""Stationary period detection over a trip's recent accepted points."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import Machine, TripPoint, TripStop
from ..geospatial import centroid, haversine_m


class StopAction(str, Enum):
    NONE = "none"
    OPEN = "open"
    CLOSE = "close"


@dataclass(slots=True)
class StopDecision:
    action: StopAction
    cluster: tuple[TripPoint, ...] = ()
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(slots=True)
class MachineMatch:
    machine: Machine
    distance_m: float
    within_geofence: bool


def nearest_machine(
    lat: float,
    lon: float,
    machines: Sequence[Machine],
    geofence_radius_m: float | None = None,
) -> MachineMatch | None:
    radius = settings.geofence_radius_m if geofence_radius_m is None else geofence_radius_m
    best: MachineMatch | None = None
    for machine in machines:
        distance = haversine_m(lat, lon, machine.latitude, machine.longitude)
        if best is None or distance < best.distance_m:
            best = MachineMatch(machine=machine, distance_m=distance, within_geofence=distance <= radius)
    return best


class StopDetector:
    """Decides whether the newest accepted point opens, keeps or closes a stop."""

    def __init__(
        self,
        radius_m: float | None = None,
        min_duration_seconds: int | None = None,
    ) -> None:
        self.radius_m = settings.stop_radius_m if radius_m is None else radius_m
        self.min_duration_seconds = (
            settings.stop_min_duration_seconds if min_duration_seconds is None else min_duration_seconds
        )

    def stationary_cluster(
        self, history: Sequence[TripPoint], after: datetime | None = None
    ) -> tuple[TripPoint, ...]:
        """Trailing run of points within the radius of the newest one, oldest first.

        Points captured before ``after`` are never part of the run.
        """
        if not history:
            return ()
        current = history[-1]
        run: list[TripPoint] = []
        for point in reversed(history):
            if after is not None and point.captured_at < after:
                break
            if haversine_m(point.latitude, point.longitude, current.latitude, current.longitude) > self.radius_m:
                break
            run.append(point)
        run.reverse()
        return tuple(run)

    def is_stationary(self, cluster: Sequence[TripPoint]) -> bool:
        if len(cluster) < 2:
            return False
        span = (cluster[-1].captured_at - cluster[0].captured_at).total_seconds()
        return span >= self.min_duration_seconds

    def evaluate(
        self,
        history: Sequence[TripPoint],
        open_stop: TripStop | None,
        after: datetime | None = None,
    ) -> StopDecision:
        """``history`` holds accepted points in time order, newest (current) last.

        ``after`` is the end of the trip's last closed stop; a new stop never
        reaches back over it.
        """
        if not history:
            return StopDecision(StopAction.NONE)
        current = history[-1]

        if open_stop is not None:
            moved = haversine_m(current.latitude, current.longitude, open_stop.latitude, open_stop.longitude)
            if moved > self.radius_m:
                return StopDecision(StopAction.CLOSE)
            return StopDecision(StopAction.NONE)

        cluster = self.stationary_cluster(history, after)
        if not self.is_stationary(cluster):
            return StopDecision(StopAction.NONE)

        lat, lon = centroid([(point.latitude, point.longitude) for point in cluster])
        return StopDecision(StopAction.OPEN, cluster=cluster, latitude=lat, longitude=lon)
