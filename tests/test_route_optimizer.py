import pytest

from fleettrack.services.routing.models import RouteStop
from fleettrack.services.routing.optimizer import (
    nearest_neighbor,
    optimize_stops,
    path_distance_km,
    two_opt,
)


def _stops(longitudes, lat: float = 41.3) -> list[RouteStop]:
    return [
        RouteStop(id=f"s{index}", sequence=index + 1, latitude=lat, longitude=lon)
        for index, lon in enumerate(longitudes)
    ]


def test_fewer_than_three_geocoded_stops_are_not_optimized():
    stops = _stops([69.2, 69.3])
    result = optimize_stops(stops)

    assert result.optimized is False
    assert [s.id for s in result.stops] == ["s0", "s1"]
    assert result.estimated_savings_km == 0.0
    assert result.original_distance_km == result.optimized_distance_km


def test_zigzag_route_is_straightened():
    stops = _stops([69.20, 69.23, 69.21, 69.24, 69.22])
    result = optimize_stops(stops)

    assert result.optimized is True
    assert [s.id for s in result.stops] == ["s0", "s2", "s4", "s1", "s3"]
    assert [s.sequence for s in result.stops] == [1, 2, 3, 4, 5]
    assert result.optimized_distance_km < result.original_distance_km
    assert result.estimated_savings_km == pytest.approx(
        result.original_distance_km - result.optimized_distance_km, abs=0.011
    )
    assert result.estimated_savings_minutes == pytest.approx(result.estimated_savings_km / 40 * 60, abs=0.1)


def test_already_optimal_order_is_kept():
    stops = _stops([69.20, 69.21, 69.22, 69.23])
    result = optimize_stops(stops)

    assert result.optimized is False
    assert [s.id for s in result.stops] == ["s0", "s1", "s2", "s3"]
    assert result.estimated_savings_km == 0.0
    assert result.estimated_savings_minutes == 0.0


def test_stops_without_coordinates_are_appended_in_original_order():
    stops = _stops([69.20, 69.23, 69.21, 69.22])
    stops.insert(1, RouteStop(id="x1", sequence=10, latitude=None, longitude=None))
    stops.append(RouteStop(id="x2", sequence=11, latitude=41.3, longitude=None))

    result = optimize_stops(stops)

    assert result.optimized is True
    assert [s.id for s in result.stops][-2:] == ["x1", "x2"]
    assert [s.id for s in result.stops][:4] == ["s0", "s2", "s3", "s1"]
    assert [s.sequence for s in result.stops] == list(range(1, 7))


def test_input_is_read_in_sequence_order_and_not_mutated():
    stops = _stops([69.20, 69.21, 69.22])
    stops.reverse()

    result = optimize_stops(stops)

    assert [s.id for s in result.stops] == ["s0", "s1", "s2"]
    assert [s.sequence for s in stops] == [3, 2, 1]


def test_savings_minutes_use_average_speed():
    stops = _stops([69.20, 69.30, 69.10, 69.40])
    result = optimize_stops(stops, average_speed_kmh=60.0)

    assert result.optimized is True
    saved = result.estimated_savings_km
    assert result.estimated_savings_minutes == pytest.approx(saved, abs=0.1)


def test_nearest_neighbor_breaks_ties_by_lowest_index():
    matrix = [
        [0, 1, 1, 5],
        [1, 0, 2, 1],
        [1, 2, 0, 1],
        [5, 1, 1, 0],
    ]
    assert nearest_neighbor(matrix) == [0, 1, 3, 2]
    assert nearest_neighbor([]) == []


def test_two_opt_removes_crossing_and_keeps_start():
    # Points on a line at positions 0, 2, 1, 3.
    positions = [0.0, 2.0, 1.0, 3.0]
    matrix = [[abs(a - b) for b in positions] for a in positions]

    improved = two_opt([0, 1, 2, 3], matrix)

    assert improved[0] == 0
    assert path_distance_km(improved, matrix) == 3.0
    assert path_distance_km([0, 1, 2, 3], matrix) == 5.0
