# path: asbuilt-gps/asbuilt/api/routes/gps.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, ValidationError as ModelValidationError

from asbuilt.config import DEFAULT_CRS, PROJECTS_ROOT
from asbuilt.errors import AssignmentExistsError, CrsResolutionError, GeometryError, IngestError
from asbuilt.models.assignment_models import Assignment, LvPosition, ProjectMeta, ReportManifest
from asbuilt.models.point_models import ImportOutcome
from asbuilt.services.assignment_store import now_ms
from asbuilt.services.crs_resolver import import_points
from asbuilt.services.persistence import FileAssignmentClient, safe_project_id
from asbuilt.services.report_manifest import build
from asbuilt.utils.projection import CRS_CANDIDATES, CrsCandidate

router = APIRouter(prefix="/api/gps", tags=["gps"])

_client = FileAssignmentClient(PROJECTS_ROOT)


def get_client() -> FileAssignmentClient:
    return _client


class ReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assignment: Assignment
    project: ProjectMeta = Field(default_factory=ProjectMeta)
    lv_position: Optional[LvPosition] = Field(default=None, alias="lvPosition")


def _dump(assignment: Assignment) -> Dict[str, Any]:
    return assignment.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/crs", response_model=List[CrsCandidate])
def list_crs() -> List[CrsCandidate]:
    return CRS_CANDIDATES


@router.post("/import", response_model=ImportOutcome)
async def import_file(
    request: Request,
    filename: str = Query(...),
    preferred_crs: str = Query(DEFAULT_CRS, alias="preferredCrs"),
) -> ImportOutcome:
    data = await request.body()
    try:
        # parsing and reprojection are CPU bound; keep them off the event loop
        return await run_in_threadpool(import_points, data, filename, preferred_crs)
    except (IngestError, GeometryError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CrsResolutionError as e:
        raise HTTPException(status_code=422, detail={"error": str(e), "diagnostics": e.diagnostics})


@router.get("/list")
async def list_assignments(
    project_id: str = Query("", alias="projectId"),
    client: FileAssignmentClient = Depends(get_client),
) -> Dict[str, Any]:
    project_id = safe_project_id(project_id)
    if not project_id:
        raise HTTPException(status_code=400, detail="projectId fehlt")
    items = await client.list(project_id)
    return {"ok": True, "items": [_dump(a) for a in items]}


@router.post("/assign")
async def assign(
    body: Dict[str, Any] = Body(...),
    client: FileAssignmentClient = Depends(get_client),
) -> Dict[str, Any]:
    project_id = safe_project_id(body.get("projectId"))
    if not project_id:
        raise HTTPException(status_code=400, detail="projectId fehlt")
    if not body.get("id"):
        raise HTTPException(status_code=400, detail="id fehlt")
    if not body.get("lvPosId"):
        raise HTTPException(status_code=400, detail="lvPosId fehlt")
    if not isinstance(body.get("points"), list) or not body["points"]:
        raise HTTPException(status_code=400, detail="points fehlen")

    try:
        assignment = Assignment.model_validate(
            {**body, "projectId": project_id, "createdAt": body.get("createdAt") or now_ms()}
        )
    except ModelValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        saved = await client.save(assignment)
    except AssignmentExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True, "item": _dump(saved)}


@router.delete("/delete")
async def delete_assignment(
    assignment_id: str = Query("", alias="id"),
    project_id: str = Query("", alias="projectId"),
    client: FileAssignmentClient = Depends(get_client),
) -> Dict[str, Any]:
    project_id = safe_project_id(project_id)
    if not project_id:
        raise HTTPException(status_code=400, detail="projectId fehlt")
    if not assignment_id.strip():
        raise HTTPException(status_code=400, detail="id fehlt")
    await client.delete(assignment_id.strip(), project_id)
    return {"ok": True}


@router.post("/report", response_model=ReportManifest)
def report(req: ReportRequest) -> ReportManifest:
    return build(req.assignment, req.project, req.lv_position)
