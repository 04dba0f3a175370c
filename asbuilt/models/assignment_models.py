# path: asbuilt-gps/asbuilt/models/assignment_models.py

from __future__ import annotations

import uuid
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, computed_field

from asbuilt.config import DEFAULT_CRS
from asbuilt.models.point_models import BBoxWGS84, GeoPoint
from asbuilt.utils.geo import bbox_wgs84, path_length_m


class LvPosition(BaseModel):
    # Opaque bill-of-quantities line item; the label is shown, never parsed.
    id: str
    label: str
    description: Optional[str] = None


class ProjectMeta(BaseModel):
    title: str = ""
    code: str = ""
    db_id: Optional[str] = None


class Assignment(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    project_id: str = Field(alias="projectId", min_length=1)
    lv_position_id: str = Field(alias="lvPosId", min_length=1)
    points: Tuple[GeoPoint, ...]
    created_at: int = Field(alias="createdAt", ge=0)  # epoch ms
    lv_position: Optional[LvPosition] = Field(default=None, alias="lvPos")


class Draft(BaseModel):
    """Unsaved working state of one project's point assignment."""

    model_config = ConfigDict(populate_by_name=True)

    draft_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="draftId")
    project_id: str = Field(alias="projectId")
    points: List[GeoPoint] = Field(default_factory=list)
    selected_lv_position_id: Optional[str] = Field(default=None, alias="selectedLvId")
    preferred_crs: str = Field(default=DEFAULT_CRS, alias="csvCrs")
    saved_at: Optional[int] = Field(default=None, alias="savedAt")

    @computed_field
    @property
    def point_count(self) -> int:
        return len(self.points)

    @computed_field
    @property
    def path_length_m(self) -> float:
        return path_length_m(self.points)

    @computed_field
    @property
    def bbox(self) -> Optional[BBoxWGS84]:
        if not self.points:
            return None
        return BBoxWGS84(**bbox_wgs84(self.points))


class ReportMetaRow(BaseModel):
    label: str
    value: str


class ReportPointRow(BaseModel):
    index: int = Field(ge=1)
    lat: float
    lng: float
    timestamp: Optional[str] = None


class ReportManifest(BaseModel):
    title: str
    metadata: List[ReportMetaRow]
    point_count: int = Field(ge=0)
    path_length_m: float = Field(ge=0)
    path_length_text: str
    bbox: Optional[BBoxWGS84] = None
    created_at: str
    points: List[ReportPointRow]
    rows_truncated: bool = False
    filename_hint: str
