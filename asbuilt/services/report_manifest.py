# path: asbuilt-gps/asbuilt/services/report_manifest.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
import re

from asbuilt.models.assignment_models import (
    Assignment,
    LvPosition,
    ProjectMeta,
    ReportManifest,
    ReportMetaRow,
    ReportPointRow,
)
from asbuilt.models.point_models import BBoxWGS84
from asbuilt.utils.geo import bbox_wgs84, format_length, path_length_m


REPORT_TITLE = "GPS-basierte Positionszuweisung"
MAX_REPORT_ROWS = 5_000
EMPTY = "—"


def _iso_utc(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def filename_hint(label: str, created_at_ms: int) -> str:
    stamp = datetime.fromtimestamp(created_at_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
    safe = re.sub(r"_+", "_", re.sub(r"[^a-zA-Z0-9._-]+", "_", label or "LV")).strip("_") or "LV"
    return f"gpszuweisung_{safe}_{stamp}.pdf"


def build(assignment: Assignment, project_meta: ProjectMeta, lv_meta: Optional[LvPosition] = None) -> ReportManifest:
    """Renderer-agnostic description of one assignment for the PDF export."""
    lv = lv_meta or assignment.lv_position
    points = assignment.points
    length_m = path_length_m(points)
    lv_label = lv.label if lv else assignment.lv_position_id

    metadata = [
        ("Projekt", project_meta.title or project_meta.code or EMPTY),
        ("Projekt-Code", project_meta.code or assignment.project_id or EMPTY),
        ("Projekt-ID (DB)", project_meta.db_id or EMPTY),
        ("LV-Position", lv_label or EMPTY),
        ("Beschreibung", (lv.description if lv else None) or EMPTY),
        ("Punkte", str(len(points))),
        ("Linienlänge", format_length(length_m)),
        ("Erstellt am", _iso_utc(assignment.created_at)),
    ]

    rows = [
        ReportPointRow(
            index=idx + 1,
            lat=round(p.lat, 7),
            lng=round(p.lng, 7),
            timestamp=_iso_utc(p.timestamp) if p.timestamp is not None else None,
        )
        for idx, p in enumerate(points[:MAX_REPORT_ROWS])
    ]

    return ReportManifest(
        title=REPORT_TITLE,
        metadata=[ReportMetaRow(label=k, value=v) for k, v in metadata],
        point_count=len(points),
        path_length_m=length_m,
        path_length_text=format_length(length_m),
        bbox=BBoxWGS84(**bbox_wgs84(points)) if points else None,
        created_at=_iso_utc(assignment.created_at),
        points=rows,
        rows_truncated=len(points) > MAX_REPORT_ROWS,
        filename_hint=filename_hint(lv_label, assignment.created_at),
    )
