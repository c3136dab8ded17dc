"""Geometry helpers."""

from __future__ import annotations

import math
from typing import Any

from pyproj import Geod

_WGS84 = Geod(ellps="WGS84")


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def extract_point_from_geometry(geometry: dict[str, Any] | None) -> tuple[Any, Any]:
    """Return raw ``(lon, lat)`` values from GeoJSON or ArcGIS point geometry.

    Values are returned unconverted so callers can tell a missing coordinate
    from a non-numeric one. Missing parts come back as ``None``.
    """
    if not geometry:
        return None, None
    if "coordinates" in geometry:
        coordinates = geometry.get("coordinates")
        if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
            return None, None
        return coordinates[0], coordinates[1]
    return geometry.get("x"), geometry.get("y")


def planar_distance(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Euclidean distance in coordinate degrees.

    Regional-scale approximation only: a degree of longitude shrinks with
    latitude and this does not correct for it.
    """
    return math.hypot(a[0] - b[0], a[1] - b[1])


def geodesic_distance_km(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    _az12, _az21, metres = _WGS84.inv(lon1, lat1, lon2, lat2)
    return metres / 1000.0


def bbox_diagonal_km(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> float | None:
    if not (-90 <= min_lat <= 90 and -90 <= max_lat <= 90):
        return None
    if not (-180 <= min_lon <= 180 and -180 <= max_lon <= 180):
        return None
    return round(geodesic_distance_km(min_lon, min_lat, max_lon, max_lat), 3)
