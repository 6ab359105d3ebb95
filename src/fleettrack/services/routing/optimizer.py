"""Visit-order optimization for multi-stop service routes.

Nearest-neighbour construction followed by 2-opt improvement over a
great-circle distance matrix. The first stop is treated as the fixed start of
an open path; the tour does not return to it.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from ...config import settings
from ..geospatial import haversine_matrix_km
from .models import RouteOptimizationResult, RouteStop

Matrix = Sequence[Sequence[float]]


def path_distance_km(order: Sequence[int], matrix: Matrix) -> float:
    return sum(matrix[a][b] for a, b in zip(order, order[1:]))


def nearest_neighbor(matrix: Matrix) -> list[int]:
    """Greedy order starting at index 0; ties go to the lowest index."""
    n = len(matrix)
    if n == 0:
        return []
    order = [0]
    visited = {0}
    current = 0
    while len(order) < n:
        best_index = -1
        best_distance = float("inf")
        for candidate in range(n):
            if candidate in visited:
                continue
            distance = matrix[current][candidate]
            if distance < best_distance:
                best_distance = distance
                best_index = candidate
        order.append(best_index)
        visited.add(best_index)
        current = best_index
    return order


def two_opt(order: Sequence[int], matrix: Matrix, epsilon_km: float | None = None) -> list[int]:
    """Improve an open path by segment reversal until a full pass finds nothing.

    For a pair ``(i, j)`` with ``j >= i + 2`` the segment ``i+1..j`` is reversed
    when that shortens the path by more than ``epsilon_km``. Index 0 never moves.
    """
    epsilon = settings.two_opt_epsilon_km if epsilon_km is None else epsilon_km
    route = list(order)
    n = len(route)
    improved = True
    while improved:
        improved = False
        for i in range(n - 2):
            for j in range(i + 2, n):
                a, b, c = route[i], route[i + 1], route[j]
                if j + 1 < n:
                    d = route[j + 1]
                    before = matrix[a][b] + matrix[c][d]
                    after = matrix[a][c] + matrix[b][d]
                else:
                    before = matrix[a][b]
                    after = matrix[a][c]
                if after < before - epsilon:
                    route[i + 1 : j + 1] = reversed(route[i + 1 : j + 1])
                    improved = True
    return route


def _renumber(stops: Sequence[RouteStop]) -> list[RouteStop]:
    return [replace(stop, sequence=index) for index, stop in enumerate(stops, start=1)]


def optimize_stops(
    stops: Sequence[RouteStop],
    *,
    average_speed_kmh: float | None = None,
    epsilon_km: float | None = None,
) -> RouteOptimizationResult:
    """Reorder ``stops`` to shorten the path through them.

    Stops are taken in their current ``sequence`` order. Stops without
    coordinates cannot be placed and are appended after the optimized ones in
    their original relative order. When no shorter order is found the stops
    keep their original order.
    """
    speed = settings.route_average_speed_kmh if average_speed_kmh is None else average_speed_kmh
    epsilon = settings.two_opt_epsilon_km if epsilon_km is None else epsilon_km

    ordered = sorted(stops, key=lambda stop: stop.sequence)
    geocoded = [stop for stop in ordered if stop.has_coordinates]
    ungeocoded = [stop for stop in ordered if not stop.has_coordinates]

    if len(geocoded) < 3:
        original = path_distance_km(
            range(len(geocoded)),
            haversine_matrix_km([(s.latitude, s.longitude) for s in geocoded]).tolist(),
        )
        return RouteOptimizationResult(
            stops=_renumber(ordered),
            optimized=False,
            original_distance_km=round(original, 2),
            optimized_distance_km=round(original, 2),
            estimated_savings_km=0.0,
            estimated_savings_minutes=0.0,
        )

    matrix = haversine_matrix_km([(s.latitude, s.longitude) for s in geocoded]).tolist()
    identity = list(range(len(geocoded)))
    original_distance = path_distance_km(identity, matrix)

    order = two_opt(nearest_neighbor(matrix), matrix, epsilon)
    optimized_distance = path_distance_km(order, matrix)

    if optimized_distance < original_distance - epsilon:
        optimized = True
    else:
        optimized_distance = original_distance
        optimized = False

    savings_km = max(0.0, original_distance - optimized_distance)
    reordered = [geocoded[index] for index in order] + ungeocoded if optimized else list(ordered)
    return RouteOptimizationResult(
        stops=_renumber(reordered),
        optimized=optimized,
        original_distance_km=round(original_distance, 2),
        optimized_distance_km=round(optimized_distance, 2),
        estimated_savings_km=round(savings_km, 2),
        estimated_savings_minutes=round(savings_km / speed * 60, 1) if speed > 0 else 0.0,
    )
