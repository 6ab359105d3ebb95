"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from shapely.geometry import LineString, Point

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = 6371000.0


def _haversine_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    return EARTH_RADIUS_KM * _haversine_angle(lat1, lon1, lat2, lon2)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in meters, the unit the trip engine accumulates in."""

    return EARTH_RADIUS_M * _haversine_angle(lat1, lon1, lat2, lon2)


def haversine_matrix_km(coordinates: Sequence[tuple[float, float]]) -> np.ndarray:
    """Symmetric N x N great-circle distance matrix (km) for (lat, lon) pairs."""

    if not coordinates:
        return np.zeros((0, 0))
    radians = np.radians(np.asarray(coordinates, dtype=float))
    lat = radians[:, 0][:, np.newaxis]
    lon = radians[:, 1][:, np.newaxis]

    d_phi = lat.T - lat
    d_lambda = lon.T - lon
    a = np.sin(d_phi / 2) ** 2 + np.cos(lat) * np.cos(lat.T) * np.sin(d_lambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    matrix = EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    # Force exact symmetry and a zero diagonal regardless of rounding.
    matrix = np.triu(matrix, k=1)
    return matrix + matrix.T


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def centroid(points: Sequence[tuple[float, float]]) -> tuple[float, float]:
    """Spherical mean of (lat, lon) pairs."""

    if not points:
        raise ValueError("centroid requires at least one point")

    x = y = z = 0.0
    for lat, lon in points:
        phi, lam = math.radians(lat), math.radians(lon)
        x += math.cos(phi) * math.cos(lam)
        y += math.cos(phi) * math.sin(lam)
        z += math.sin(phi)
    count = len(points)
    x, y, z = x / count, y / count, z / count

    lon = math.atan2(y, x)
    lat = math.atan2(z, math.sqrt(x * x + y * y))
    return (math.degrees(lat), math.degrees(lon))


def _project(lat: float, lon: float, origin_lat: float, origin_lon: float) -> tuple[float, float]:
    # Local equirectangular projection in meters; adequate for city-scale corridors.
    x = math.radians(lon - origin_lon) * math.cos(math.radians(origin_lat)) * EARTH_RADIUS_M
    y = math.radians(lat - origin_lat) * EARTH_RADIUS_M
    return (x, y)


def distance_to_path_m(lat: float, lon: float, path: Sequence[tuple[float, float]]) -> float:
    """Distance in meters from a point to a polyline of (lat, lon) vertices."""

    if not path:
        raise ValueError("path requires at least one vertex")
    if len(path) == 1:
        return haversine_m(lat, lon, path[0][0], path[0][1])

    projected = [_project(v_lat, v_lon, lat, lon) for v_lat, v_lon in path]
    return LineString(projected).distance(Point(0.0, 0.0))
