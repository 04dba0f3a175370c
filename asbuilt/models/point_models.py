# path: asbuilt-gps/asbuilt/models/point_models.py

from __future__ import annotations

import math
from typing import List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator


Confidence = Literal["full", "partial"]
ImportFormat = Literal["csv", "gpx", "kml", "geojson"]


class BBoxWGS84(BaseModel):
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


# grob: DACH / Mitteleuropa
PLAUSIBILITY_WINDOW = BBoxWGS84(min_lat=35.0, min_lng=-10.0, max_lat=65.0, max_lng=30.0)


def is_plausible(lat: float, lng: float) -> bool:
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return PLAUSIBILITY_WINDOW.contains(lat, lng)


class GeoPoint(BaseModel):
    """Canonical WGS84 point. Cannot be built outside the plausibility window."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    lat: float
    lng: float
    timestamp: Optional[int] = Field(default=None, alias="ts")  # epoch ms

    @model_validator(mode="after")
    def validate_window(self):
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            raise ValueError(f"Koordinate nicht endlich: ({self.lat}, {self.lng})")
        if not (-90.0 <= self.lat <= 90.0):
            raise ValueError(f"Breite außerhalb [-90,90]: {self.lat}")
        if not (-180.0 <= self.lng <= 180.0):
            raise ValueError(f"Länge außerhalb [-180,180]: {self.lng}")
        if not PLAUSIBILITY_WINDOW.contains(self.lat, self.lng):
            raise ValueError(f"Punkt außerhalb des Plausibilitätsfensters: ({self.lat}, {self.lng})")
        return self


class GeographicRecord(BaseModel):
    kind: Literal["geographic"] = "geographic"
    lat: float
    lng: float
    timestamp: Optional[int] = None

    def as_xy(self) -> Tuple[float, float]:
        return self.lng, self.lat


class ProjectedRecord(BaseModel):
    kind: Literal["projected"] = "projected"
    easting: float
    northing: float
    timestamp: Optional[int] = None

    def as_xy(self) -> Tuple[float, float]:
        return self.easting, self.northing


RawRecord = Union[GeographicRecord, ProjectedRecord]


class IngestResult(BaseModel):
    format: ImportFormat
    records: List[RawRecord] = Field(default_factory=list)
    total_found: int = Field(ge=0)
    skipped_rows: int = Field(default=0, ge=0)
    truncated: bool = False


class CrsResolution(BaseModel):
    crs: str
    accepted: List[GeoPoint]
    confidence: Confidence
    diagnostics: List[Tuple[str, int]] = Field(default_factory=list)
    rejected_count: int = Field(default=0, ge=0)
    dropped_non_finite: int = Field(default=0, ge=0)


class ImportOutcome(BaseModel):
    format: ImportFormat
    crs: str
    confidence: Confidence
    points: List[GeoPoint]
    total_found: int
    truncated: bool
    skipped_rows: int
    rejected_count: int
    diagnostics: List[Tuple[str, int]] = Field(default_factory=list)
    message: str
