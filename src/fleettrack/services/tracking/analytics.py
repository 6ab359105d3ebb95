"""Aggregate counters over finished trips and machine visits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ...models.domain import Trip, TripStatus, TripStop


@dataclass(slots=True)
class TripsSummary:
    total_trips: int = 0
    completed_trips: int = 0
    cancelled_trips: int = 0
    active_trips: int = 0
    total_distance_km: float = 0.0
    total_machines_visited: int = 0
    total_anomalies: int = 0
    unique_employees: int = 0
    unique_vehicles: int = 0


@dataclass(slots=True)
class EmployeeTripStats:
    employee_id: str
    total_trips: int = 0
    total_distance_km: float = 0.0
    total_machines_visited: int = 0
    total_stops: int = 0
    total_anomalies: int = 0
    avg_duration_minutes: float = 0.0


@dataclass(slots=True)
class MachineVisitStats:
    machine_id: str
    machine_name: str | None = None
    visit_count: int = 0
    total_duration_seconds: int = 0


def summarize_trips(trips: Iterable[Trip]) -> TripsSummary:
    summary = TripsSummary()
    employees: set[str] = set()
    vehicles: set[str] = set()
    distance_m = 0.0
    for trip in trips:
        summary.total_trips += 1
        if trip.status is TripStatus.COMPLETED:
            summary.completed_trips += 1
        elif trip.status is TripStatus.CANCELLED:
            summary.cancelled_trips += 1
        else:
            summary.active_trips += 1
        distance_m += trip.calculated_distance_meters
        summary.total_machines_visited += trip.visited_machines_count
        summary.total_anomalies += trip.total_anomalies
        employees.add(trip.employee_id)
        if trip.vehicle_id:
            vehicles.add(trip.vehicle_id)
    summary.total_distance_km = round(distance_m / 1000, 2)
    summary.unique_employees = len(employees)
    summary.unique_vehicles = len(vehicles)
    return summary


def employee_stats(employee_id: str, trips: Iterable[Trip]) -> EmployeeTripStats:
    """Counters over the employee's completed trips only."""
    stats = EmployeeTripStats(employee_id=employee_id)
    distance_m = 0.0
    durations: list[float] = []
    for trip in trips:
        if trip.employee_id != employee_id or trip.status is not TripStatus.COMPLETED:
            continue
        stats.total_trips += 1
        distance_m += trip.calculated_distance_meters
        stats.total_machines_visited += trip.visited_machines_count
        stats.total_stops += trip.total_stops
        stats.total_anomalies += trip.total_anomalies
        if trip.ended_at is not None:
            durations.append((trip.ended_at - trip.started_at).total_seconds())
    stats.total_distance_km = round(distance_m / 1000, 2)
    if durations:
        stats.avg_duration_minutes = round(sum(durations) / len(durations) / 60, 1)
    return stats


def machine_visit_stats(stops: Iterable[TripStop]) -> list[MachineVisitStats]:
    """Visits and dwell time per machine, most visited first. Open stops add no dwell time."""
    by_machine: dict[str, MachineVisitStats] = {}
    for stop in stops:
        if not stop.machine_id:
            continue
        stats = by_machine.setdefault(stop.machine_id, MachineVisitStats(machine_id=stop.machine_id))
        stats.machine_name = stats.machine_name or stop.machine_name
        stats.visit_count += 1
        stats.total_duration_seconds += stop.duration_seconds or 0
    return sorted(by_machine.values(), key=lambda stats: (-stats.visit_count, stats.machine_id))
