# path: asbuilt-gps/asbuilt/utils/geo.py

from __future__ import annotations

from typing import Dict, Sequence
import math

EARTH_RADIUS_M = 6371000.0


def bbox_wgs84(points: Sequence) -> Dict[str, float]:
    # points: anything with .lat / .lng
    lngs = [p.lng for p in points]
    lats = [p.lat for p in points]
    return {
        "min_lat": min(lats),
        "min_lng": min(lngs),
        "max_lat": max(lats),
        "max_lng": max(lngs),
    }


def haversine_m(a_lon: float, a_lat: float, b_lon: float, b_lat: float) -> float:
    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    dphi = math.radians(b_lat - a_lat)
    dlmb = math.radians(b_lon - a_lon)

    s = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Rounding can push s a hair above 1 for antipodal pairs
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, s)))


def path_length_m(points: Sequence) -> float:
    """Sum of great-circle distances between consecutive points, in metres."""
    total = 0.0
    for i in range(1, len(points)):
        a = points[i - 1]
        b = points[i]
        total += haversine_m(a.lng, a.lat, b.lng, b.lat)
    return total


def format_length(length_m: float) -> str:
    if length_m >= 1000:
        return f"{length_m / 1000:.3f} km"
    return f"{length_m:.1f} m"
