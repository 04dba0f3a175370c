# path: asbuilt-gps/asbuilt/utils/projection.py

"""Fixed CRS table and pyproj based reprojection to WGS84.

always_xy=True is used for every transformer, so pairs are always
(easting/longitude, northing/latitude) regardless of the EPSG axis order.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple
import math

from pydantic import BaseModel, ValidationError as ModelValidationError
from pyproj import Transformer
from pyproj.exceptions import ProjError

from asbuilt.errors import GeometryError
from asbuilt.models.point_models import BBoxWGS84, GeoPoint


WGS84 = "EPSG:4326"
PASSTHROUGH_CRS = WGS84

# DHDN -> WGS84 7-parameter shift (Bessel ellipsoid)
_DHDN_TOWGS84 = "+towgs84=598.1,73.7,418.2,0.202,0.045,-2.455,6.7"


class CrsCandidate(BaseModel):
    id: str
    label: str
    definition: str  # PROJ string
    area_of_use: BBoxWGS84


def _gk_zone(zone: int, min_lng: float, max_lng: float) -> CrsCandidate:
    return CrsCandidate(
        id=f"EPSG:{31464 + zone}",
        label=f"DHDN GK{zone}",
        definition=(
            f"+proj=tmerc +lat_0=0 +lon_0={zone * 3} +k=1 +x_0={zone}500000 +y_0=0 "
            f"+ellps=bessel {_DHDN_TOWGS84} +units=m +no_defs"
        ),
        area_of_use=BBoxWGS84(min_lat=47.27, min_lng=min_lng, max_lat=55.09, max_lng=max_lng),
    )


CRS_CANDIDATES: List[CrsCandidate] = [
    CrsCandidate(
        id=WGS84,
        label="WGS84 (lat/lng)",
        definition="+proj=longlat +datum=WGS84 +no_defs",
        area_of_use=BBoxWGS84(min_lat=-90.0, min_lng=-180.0, max_lat=90.0, max_lng=180.0),
    ),
    CrsCandidate(
        id="EPSG:25832",
        label="UTM32 ETRS89",
        definition="+proj=utm +zone=32 +ellps=GRS80 +towgs84=0,0,0 +units=m +no_defs",
        area_of_use=BBoxWGS84(min_lat=38.76, min_lng=6.0, max_lat=84.33, max_lng=12.0),
    ),
    CrsCandidate(
        id="EPSG:32632",
        label="UTM32 WGS84",
        definition="+proj=utm +zone=32 +datum=WGS84 +units=m +no_defs",
        area_of_use=BBoxWGS84(min_lat=0.0, min_lng=6.0, max_lat=84.0, max_lng=12.0),
    ),
    _gk_zone(2, 5.86, 7.5),
    _gk_zone(3, 7.5, 10.5),
    _gk_zone(4, 10.5, 13.5),
    _gk_zone(5, 13.5, 16.5),
]

CANDIDATES_BY_ID: Dict[str, CrsCandidate] = {c.id: c for c in CRS_CANDIDATES}

# Auto-detection order for projected input
DETECTION_ORDER: Tuple[str, ...] = (
    "EPSG:31468", "EPSG:31467", "EPSG:31469", "EPSG:31466", "EPSG:25832", "EPSG:32632",
)


def get_candidate(crs_id: str) -> CrsCandidate:
    try:
        return CANDIDATES_BY_ID[crs_id]
    except KeyError:
        raise GeometryError(f"CRS nicht unterstützt: {crs_id}") from None


@lru_cache(maxsize=None)
def _transformer(crs_id: str, inverse: bool = False) -> Transformer:
    definition = get_candidate(crs_id).definition
    if inverse:
        return Transformer.from_crs(WGS84, definition, always_xy=True)
    return Transformer.from_crs(definition, WGS84, always_xy=True)


def reproject(easting: float, northing: float, crs: str, timestamp: Optional[int] = None) -> GeoPoint:
    """Convert one (easting, northing) pair in *crs* to a canonical GeoPoint.

    Raises GeometryError when the transform fails, is non-finite, or lands
    outside the plausibility window.
    """
    lat_lng = reproject_many([(easting, northing)], crs)[0]
    if lat_lng is None:
        raise GeometryError(f"Umrechnung von ({easting}, {northing}) in {crs} ist nicht endlich")
    lat, lng = lat_lng
    try:
        return GeoPoint(lat=lat, lng=lng, timestamp=timestamp)
    except ModelValidationError as e:
        raise GeometryError(f"{crs}: ({easting}, {northing}) -> ({lat:.6f}, {lng:.6f}) ist nicht plausibel") from e


def reproject_many(pairs: Sequence[Tuple[float, float]], crs: str) -> List[Optional[Tuple[float, float]]]:
    """Vectorised reprojection. Returns (lat, lng) per pair, None where non-finite."""
    get_candidate(crs)
    if not pairs:
        return []
    xs = [float(p[0]) for p in pairs]
    ys = [float(p[1]) for p in pairs]

    if crs == PASSTHROUGH_CRS:
        lngs, lats = xs, ys
    else:
        try:
            lngs, lats = _transformer(crs).transform(xs, ys)
        except ProjError as e:
            raise GeometryError(f"Umrechnung aus {crs} fehlgeschlagen: {e}") from e

    out: List[Optional[Tuple[float, float]]] = []
    for lat, lng in zip(lats, lngs):
        if math.isfinite(lat) and math.isfinite(lng):
            out.append((float(lat), float(lng)))
        else:
            out.append(None)
    return out


def unproject(point: GeoPoint, crs: str) -> Tuple[float, float]:
    """Inverse of reproject: WGS84 point -> (easting, northing) in *crs*."""
    get_candidate(crs)
    if crs == PASSTHROUGH_CRS:
        return point.lng, point.lat
    try:
        e, n = _transformer(crs, inverse=True).transform(point.lng, point.lat)
    except ProjError as exc:
        raise GeometryError(f"Projektion nach {crs} fehlgeschlagen: {exc}") from exc
    if not (math.isfinite(e) and math.isfinite(n)):
        raise GeometryError(f"Projektion von ({point.lat}, {point.lng}) nach {crs} ist nicht endlich")
    return float(e), float(n)
